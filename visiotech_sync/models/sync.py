from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any

from visiotech_sync.models.shopify import ShopifyProduct


class TransformRequest(BaseModel):
    input_path: str = Field(..., description="Path to the supplier CSV/TSV file")
    output_path: Optional[str] = Field(default=None, description="Where to write the Shopify import CSV")


class SyncRequest(BaseModel):
    input_path: str = Field(..., description="Path to the supplier CSV/TSV file, or a Shopify CSV when from_shopify_csv is set")
    output_path: Optional[str] = Field(default=None, description="Where to write the Shopify import CSV")
    dry_run: bool = Field(default=False, description="If true, transform and export only; nothing is sent to Shopify")
    upload: bool = Field(default=True, description="Push products to Shopify after exporting the CSV")
    api_mode: Optional[str] = Field(default=None, description="'graphql' or 'rest'; defaults to SHOPIFY_API_MODE")
    from_shopify_csv: bool = Field(default=False, description="Input is an already generated Shopify import CSV")


class RowError(BaseModel):
    line: Optional[int] = None
    sku: Optional[str] = None
    error: str


class TransformReport(BaseModel):
    products: List[ShopifyProduct] = []
    skipped: List[Dict[str, Any]] = []
    errors: List[RowError] = []


class SyncResponse(BaseModel):
    status: str
    message: str
    total_products: int
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    partial: int = 0
    output_path: Optional[str] = None
    execution_time: float
    results: List[Dict[str, Any]] = []
