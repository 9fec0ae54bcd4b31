from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Shopify
    shopify_store: str = Field("", env="SHOPIFY_STORE")
    shopify_access_token: str = Field("", env="SHOPIFY_ACCESS_TOKEN")
    shopify_api_version: str = Field("2025-07", env="SHOPIFY_API_VERSION")
    shopify_location_id: Optional[str] = Field(None, env="SHOPIFY_LOCATION_ID")
    shopify_api_mode: str = Field("graphql", env="SHOPIFY_API_MODE")

    # Rate limiting
    request_delay: float = Field(0.55, env="REQUEST_DELAY")
    max_retries: int = Field(6, env="MAX_RETRIES")
    request_timeout: float = Field(60.0, env="REQUEST_TIMEOUT")

    # Catalogue rules
    vat_rate: float = Field(0.23, env="VAT_RATE")
    allowed_brands: List[str] = Field(
        ["AJAX", "AJAXCCTV", "AJAXVIVIENDAVACÍA", "AQARA", "REOLINK", "YALE"],
        env="ALLOWED_BRANDS",
    )
    output_dir: str = Field("csv-output", env="OUTPUT_DIR")

    # API
    api_host: str = Field("0.0.0.0", env="API_HOST")
    api_port: int = Field(8000, env="API_PORT")
    debug: bool = Field(False, env="DEBUG")
    log_level: str = Field("INFO", env="LOG_LEVEL")

    # App
    app_name: str = Field("Visiotech to Shopify Sync", env="APP_NAME")
    version: str = Field("1.0.0", env="VERSION")

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def shop_url(self) -> str:
        """Store base URL; accepts either a bare myshopify domain or a full URL."""
        store = self.shopify_store.strip().rstrip('/')
        if not store:
            return ''
        if store.startswith('http://') or store.startswith('https://'):
            return store
        return f"https://{store}"


settings = Settings()
