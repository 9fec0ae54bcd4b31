from pydantic import BaseModel
from typing import Dict, List, Optional


class ShopifyVariant(BaseModel):
    price: str
    sku: str
    barcode: Optional[str] = None
    inventory_quantity: int = 0
    inventory_management: Optional[str] = "shopify"
    inventory_policy: Optional[str] = "deny"
    compare_at_price: Optional[str] = None
    cost: Optional[str] = None
    weight: float = 0.0
    weight_unit: str = "kg"


class ShopifyImage(BaseModel):
    src: str
    position: Optional[int] = None
    alt: Optional[str] = None


class ShopifyProduct(BaseModel):
    title: str
    handle: str
    body_html: str = ""
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    tags: List[str] = []
    status: str = "active"
    variants: List[ShopifyVariant]
    images: List[ShopifyImage] = []

    @property
    def sku(self) -> Optional[str]:
        if self.variants and self.variants[0].sku:
            return self.variants[0].sku
        return None

    @property
    def key(self) -> str:
        """Natural key: SKU when present, otherwise the handle."""
        return self.sku or self.handle


class ExistingProduct(BaseModel):
    """A product already in the store, as found by the SKU index query."""
    product_id: str
    variant_id: Optional[str] = None
    inventory_item_id: Optional[str] = None
    handle: Optional[str] = None
    sku: Optional[str] = None


class ProductIndex(BaseModel):
    """In-memory SKU -> product and handle -> product lookup, built once per run."""
    by_sku: Dict[str, ExistingProduct] = {}
    by_handle: Dict[str, ExistingProduct] = {}

    def add(self, existing: ExistingProduct) -> None:
        if existing.sku:
            self.by_sku.setdefault(existing.sku, existing)
        if existing.handle:
            self.by_handle.setdefault(existing.handle, existing)

    def find(self, product: ShopifyProduct) -> Optional[ExistingProduct]:
        if product.sku and product.sku in self.by_sku:
            return self.by_sku[product.sku]
        by_handle = self.by_handle.get(product.handle)
        # A handle match only counts when it does not belong to another SKU
        if by_handle and (not by_handle.sku or by_handle.sku == product.sku):
            return by_handle
        return None

    def __len__(self) -> int:
        return len(self.by_sku)
