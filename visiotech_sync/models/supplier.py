from typing import Any, Dict

from pydantic import BaseModel, ConfigDict


SUPPLIER_COLUMNS = [
    "name", "short_description", "description", "specifications", "brand",
    "category", "category_parent", "precio_neto_compra", "precio_venta_cliente_final",
    "PVP", "msrp", "stock", "ean", "image_path", "extra_images_paths",
    "weight", "width", "height", "depth", "datasheet_path", "warranty",
    "status", "updated_at",
]

_COLUMN_LOOKUP = {c.lower(): c for c in SUPPLIER_COLUMNS}


def canonical_column(name: str) -> str:
    """Header spelling as found in the file -> the column name used here (``Name`` -> ``name``)."""
    key = (name or "").strip()
    return _COLUMN_LOOKUP.get(key.lower(), key)


class SupplierRow(BaseModel):
    """One line of the supplier export. ``name`` is the supplier SKU."""

    model_config = ConfigDict(extra='ignore', populate_by_name=True)

    name: str = ""
    short_description: str = ""
    description: str = ""
    specifications: str = ""
    brand: str = ""
    category: str = ""
    category_parent: str = ""
    precio_neto_compra: str = ""
    precio_venta_cliente_final: str = ""
    PVP: str = ""
    msrp: str = ""
    stock: str = ""
    ean: str = ""
    image_path: str = ""
    extra_images_paths: str = ""
    weight: str = ""
    width: str = ""
    height: str = ""
    depth: str = ""
    datasheet_path: str = ""
    warranty: str = ""
    status: str = ""
    updated_at: str = ""

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "SupplierRow":
        """Build a row from a raw csv record; None values become empty strings."""
        clean = {}
        for key, value in record.items():
            if key is None:
                continue
            clean[canonical_column(key)] = "" if value is None else str(value).strip()
        return cls(**{k: v for k, v in clean.items() if k in cls.model_fields})

    @property
    def sku(self) -> str:
        return self.name.strip()
