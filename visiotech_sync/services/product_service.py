import logging
from decimal import Decimal
from typing import Iterable, List, Optional

from visiotech_sync.core.config import settings
from visiotech_sync.core.exceptions import RowTransformError
from visiotech_sync.models.shopify import (
    ShopifyImage,
    ShopifyProduct,
    ShopifyVariant,
)
from visiotech_sync.models.supplier import SupplierRow
from visiotech_sync.models.sync import RowError, TransformReport
from visiotech_sync.services.transforms import (
    approve_brand,
    build_body_html,
    build_tags,
    categorize,
    format_price,
    is_excluded_category,
    parse_decimal,
    parse_extra_images,
    price_with_vat,
    repair_ean,
    slugify,
    stock_to_quantity,
    translate_text,
)

logger = logging.getLogger(__name__)

PRICE_FIELDS = ('PVP', 'precio_venta_cliente_final', 'msrp')


class ProductService:
    def __init__(self, allowed_brands: Optional[Iterable[str]] = None, vat_rate: Optional[float] = None):
        self.allowed_brands = list(allowed_brands if allowed_brands is not None else settings.allowed_brands)
        self.vat_rate = settings.vat_rate if vat_rate is None else vat_rate

    def _base_price(self, row: SupplierRow) -> Optional[Decimal]:
        for field in PRICE_FIELDS:
            value = parse_decimal(getattr(row, field))
            if value is not None and value > 0:
                return value
        return None

    def skip_reason(self, row: SupplierRow) -> Optional[str]:
        """Business rules that drop a row before it reaches Shopify."""
        if not approve_brand(row.brand, self.allowed_brands):
            return f"brand not approved: {row.brand or '(empty)'}"
        if is_excluded_category(row.category, row.category_parent):
            return f"excluded category: {row.category or row.category_parent}"
        if self._base_price(row) is None:
            return "no usable price"
        return None

    def _build_images(self, row: SupplierRow, title: str) -> List[ShopifyImage]:
        urls = []
        main = row.image_path.strip()
        if main:
            urls.append(main)
        for url in parse_extra_images(row.extra_images_paths):
            if url not in urls:
                urls.append(url)
        return [ShopifyImage(src=url, position=i, alt=title) for i, url in enumerate(urls, start=1)]

    def transform_row(self, row: SupplierRow) -> Optional[ShopifyProduct]:
        """Map one supplier row to a Shopify product. Returns None when the row is skipped."""
        sku = row.sku
        if not sku:
            raise RowTransformError('(empty)', "row has no name/SKU")

        reason = self.skip_reason(row)
        if reason:
            logger.debug(f"Skipping {sku}: {reason}")
            return None

        brand = approve_brand(row.brand, self.allowed_brands)
        title = translate_text(row.short_description) or translate_text(row.name) or sku
        product_type = categorize(row.category, row.category_parent)

        price = price_with_vat(self._base_price(row), self.vat_rate)
        compare_at = None
        msrp = parse_decimal(row.msrp)
        if msrp is not None and msrp > 0:
            msrp_gross = price_with_vat(msrp, self.vat_rate)
            if msrp_gross > price:
                compare_at = msrp_gross
        cost = parse_decimal(row.precio_neto_compra)

        weight = parse_decimal(row.weight)
        handle = slugify(sku)
        if not handle:
            raise RowTransformError(sku, "cannot derive a handle from the SKU")

        variant = ShopifyVariant(
            price=format_price(price),
            sku=sku,
            barcode=repair_ean(row.ean) or None,
            inventory_quantity=stock_to_quantity(row.stock),
            inventory_management='shopify',
            inventory_policy='deny',
            compare_at_price=format_price(compare_at),
            cost=format_price(cost) if cost is not None and cost > 0 else None,
            weight=float(weight) if weight is not None and weight > 0 else 0.0,
            weight_unit='kg',
        )

        return ShopifyProduct(
            title=title,
            handle=handle,
            body_html=build_body_html(translate_text(row.description), translate_text(row.specifications)),
            vendor=brand,
            product_type=product_type,
            tags=build_tags(brand, translate_text(row.category), translate_text(row.category_parent), product_type),
            status='active',
            variants=[variant],
            images=self._build_images(row, title),
        )

    @staticmethod
    def _unique_handle(handle: str, seen: set) -> str:
        """Suffix ``-2``, ``-3``... when another SKU in the file slugs to the same handle."""
        if handle not in seen:
            return handle
        n = 2
        while f"{handle}-{n}" in seen:
            n += 1
        logger.warning(f"Handle {handle} already used by another SKU, using {handle}-{n}")
        return f"{handle}-{n}"

    def process_rows(self, rows: List[SupplierRow]) -> TransformReport:
        """Transform every row; a failing row is logged and skipped."""
        report = TransformReport()
        seen_skus = set()
        seen_handles = set()
        for index, row in enumerate(rows, start=1):
            try:
                if row.sku in seen_skus:
                    report.skipped.append({'sku': row.sku, 'reason': 'duplicate SKU in input'})
                    logger.warning(f"Duplicate SKU {row.sku} in input, keeping the first occurrence")
                    continue
                product = self.transform_row(row)
                if product is None:
                    report.skipped.append({'sku': row.sku, 'reason': self.skip_reason(row)})
                    continue
                seen_skus.add(row.sku)
                product.handle = self._unique_handle(product.handle, seen_handles)
                seen_handles.add(product.handle)
                report.products.append(product)
            except Exception as e:
                logger.error(f"Error transforming row {index} ({row.sku}): {str(e)}")
                report.errors.append(RowError(line=index, sku=row.sku or None, error=str(e)))
                continue

        logger.info(
            f"Transformed {len(report.products)} products, "
            f"skipped {len(report.skipped)}, errors {len(report.errors)}"
        )
        return report


product_service = ProductService()
