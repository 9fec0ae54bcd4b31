import csv
import logging
from pathlib import Path
from typing import Dict, List, Union

from visiotech_sync.core.exceptions import InputFileError
from visiotech_sync.models.shopify import ShopifyImage, ShopifyProduct, ShopifyVariant


logger = logging.getLogger(__name__)


SHOPIFY_CSV_COLUMNS = [
    "Handle", "Title", "Body (HTML)", "Vendor", "Product Category", "Type", "Tags", "Published",
    "Option1 Name", "Option1 Value", "Option2 Name", "Option2 Value", "Option3 Name", "Option3 Value",
    "Variant SKU", "Variant Grams", "Variant Inventory Tracker", "Variant Inventory Qty",
    "Variant Inventory Policy", "Variant Fulfillment Service", "Variant Price",
    "Variant Compare At Price", "Variant Requires Shipping", "Variant Taxable", "Variant Barcode",
    "Image Src", "Image Position", "Image Alt Text", "Gift Card", "SEO Title", "SEO Description",
    "Google Shopping / Google Product Category", "Google Shopping / Gender",
    "Google Shopping / Age Group", "Google Shopping / MPN", "Google Shopping / AdWords Grouping",
    "Google Shopping / AdWords Labels", "Google Shopping / Condition",
    "Google Shopping / Custom Product", "Google Shopping / Custom Label 0",
    "Google Shopping / Custom Label 1", "Google Shopping / Custom Label 2",
    "Google Shopping / Custom Label 3", "Google Shopping / Custom Label 4",
    "Variant Image", "Variant Weight Unit", "Variant Tax Code", "Cost per item", "Status",
]


class CsvExportService:
    """Writes and reads the Shopify product import CSV."""

    def product_to_rows(self, product: ShopifyProduct) -> List[Dict[str, str]]:
        variant = product.variants[0]
        first_image = product.images[0] if product.images else None
        row = {col: "" for col in SHOPIFY_CSV_COLUMNS}
        row.update({
            "Handle": product.handle,
            "Title": product.title,
            "Body (HTML)": product.body_html,
            "Vendor": product.vendor or "",
            "Type": product.product_type or "",
            "Tags": ", ".join(product.tags),
            "Published": "TRUE" if product.status == 'active' else "FALSE",
            "Option1 Name": "Title",
            "Option1 Value": "Default Title",
            "Variant SKU": variant.sku,
            "Variant Grams": str(int(round(variant.weight * 1000))) if variant.weight else "0",
            "Variant Inventory Tracker": variant.inventory_management or "",
            "Variant Inventory Qty": str(variant.inventory_quantity),
            "Variant Inventory Policy": variant.inventory_policy or "deny",
            "Variant Fulfillment Service": "manual",
            "Variant Price": variant.price,
            "Variant Compare At Price": variant.compare_at_price or "",
            "Variant Requires Shipping": "TRUE",
            "Variant Taxable": "TRUE",
            "Variant Barcode": variant.barcode or "",
            "Image Src": first_image.src if first_image else "",
            "Image Position": str(first_image.position or 1) if first_image else "",
            "Image Alt Text": (first_image.alt or "") if first_image else "",
            "Gift Card": "FALSE",
            "SEO Title": product.title,
            "Google Shopping / Condition": "new",
            "Google Shopping / MPN": variant.sku,
            "Variant Weight Unit": variant.weight_unit,
            "Cost per item": variant.cost or "",
            "Status": product.status,
        })
        rows = [row]
        for position, image in enumerate(product.images[1:], start=2):
            extra = {col: "" for col in SHOPIFY_CSV_COLUMNS}
            extra["Handle"] = product.handle
            extra["Image Src"] = image.src
            extra["Image Position"] = str(image.position or position)
            extra["Image Alt Text"] = image.alt or ""
            rows.append(extra)
        return rows

    def write_products_csv(self, products: List[ShopifyProduct], path: Union[str, Path]) -> int:
        """Write products to ``path``; returns the number of data lines written."""
        out = Path(path)
        out.parent.mkdir(parents=True, exist_ok=True)
        written = 0
        with out.open('w', newline='', encoding='utf-8') as f:
            writer = csv.DictWriter(f, fieldnames=SHOPIFY_CSV_COLUMNS, quoting=csv.QUOTE_MINIMAL)
            writer.writeheader()
            for product in products:
                for row in self.product_to_rows(product):
                    writer.writerow(row)
                    written += 1
        logger.info(f"Wrote {len(products)} products ({written} lines) to {out}")
        return written

    def read_products_csv(self, path: Union[str, Path]) -> List[ShopifyProduct]:
        """Rebuild products from a Shopify import CSV, grouping image rows by Handle."""
        src = Path(path)
        if not src.is_file():
            raise InputFileError(f"Shopify CSV not found: {src}")
        grouped: Dict[str, Dict] = {}
        with src.open('r', newline='', encoding='utf-8-sig') as f:
            reader = csv.DictReader(f)
            if not reader.fieldnames or "Handle" not in reader.fieldnames:
                raise InputFileError(f"{src} is not a Shopify product CSV (no Handle column)")
            for line_no, row in enumerate(reader, start=2):
                handle = (row.get("Handle") or "").strip()
                if not handle:
                    logger.warning(f"Line {line_no} has no Handle, skipping")
                    continue
                entry = grouped.setdefault(handle, {"row": None, "images": []})
                if (row.get("Title") or "").strip() and entry["row"] is None:
                    entry["row"] = row
                image_src = (row.get("Image Src") or "").strip()
                if image_src:
                    try:
                        position = int(row.get("Image Position") or 0) or None
                    except ValueError:
                        position = None
                    entry["images"].append(ShopifyImage(src=image_src, position=position,
                                                        alt=(row.get("Image Alt Text") or None)))

        products: List[ShopifyProduct] = []
        for handle, entry in grouped.items():
            row = entry["row"]
            if row is None:
                logger.warning(f"Handle {handle} has only image rows, skipping")
                continue
            try:
                products.append(self._row_to_product(handle, row, entry["images"]))
            except (ValueError, TypeError) as e:
                logger.error(f"Cannot rebuild product {handle} from CSV: {str(e)}")
                continue
        logger.info(f"Loaded {len(products)} products from {src}")
        return products

    def _row_to_product(self, handle: str, row: Dict[str, str], images: List[ShopifyImage]) -> ShopifyProduct:
        grams = (row.get("Variant Grams") or "0").strip() or "0"
        variant = ShopifyVariant(
            price=(row.get("Variant Price") or "0.00").strip(),
            sku=(row.get("Variant SKU") or handle).strip(),
            barcode=(row.get("Variant Barcode") or "").strip() or None,
            inventory_quantity=int(float(row.get("Variant Inventory Qty") or 0)),
            inventory_management=(row.get("Variant Inventory Tracker") or "").strip() or None,
            inventory_policy=(row.get("Variant Inventory Policy") or "deny").strip(),
            compare_at_price=(row.get("Variant Compare At Price") or "").strip() or None,
            cost=(row.get("Cost per item") or "").strip() or None,
            weight=float(grams) / 1000,
            weight_unit=(row.get("Variant Weight Unit") or "kg").strip(),
        )
        tags = [t.strip() for t in (row.get("Tags") or "").split(",") if t.strip()]
        images = sorted(images, key=lambda img: img.position or 0)
        return ShopifyProduct(
            title=row["Title"].strip(),
            handle=handle,
            body_html=row.get("Body (HTML)") or "",
            vendor=(row.get("Vendor") or "").strip() or None,
            product_type=(row.get("Type") or "").strip() or None,
            tags=tags,
            status=(row.get("Status") or "active").strip().lower(),
            variants=[variant],
            images=images,
        )


csv_export_service = CsvExportService()
