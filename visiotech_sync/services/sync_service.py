import logging
import time
from collections import Counter
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from visiotech_sync.core.config import settings
from visiotech_sync.core.exceptions import ConfigurationError
from visiotech_sync.models.shopify import ShopifyProduct
from visiotech_sync.models.sync import SyncResponse, TransformReport
from visiotech_sync.services.csv_export_service import CsvExportService, csv_export_service
from visiotech_sync.services.product_service import ProductService, product_service
from visiotech_sync.services.shopify_service import ShopifyService, shopify_service
from visiotech_sync.services.supplier_service import SupplierService, supplier_service

logger = logging.getLogger(__name__)

API_MODES = ("graphql", "rest")


def default_output_path(today: Optional[date] = None) -> str:
    today = today or date.today()
    return str(Path(settings.output_dir) / f"shopify_products_{today.isoformat()}.csv")


class SyncService:
    """Supplier file -> Shopify CSV -> Shopify store, one product at a time."""

    def __init__(self, supplier: Optional[SupplierService] = None,
                 products: Optional[ProductService] = None,
                 csv: Optional[CsvExportService] = None,
                 shopify: Optional[ShopifyService] = None):
        self.supplier = supplier or supplier_service
        self.products = products or product_service
        self.csv = csv or csv_export_service
        self.shopify = shopify or shopify_service

    def transform(self, input_path: Union[str, Path], output_path: Optional[Union[str, Path]] = None) -> TransformReport:
        """Parse and transform the supplier file, writing the Shopify CSV when a path is given."""
        rows, parse_errors = self.supplier.read_file(input_path)
        report = self.products.process_rows(rows)
        report.errors = parse_errors + report.errors
        if output_path:
            self.csv.write_products_csv(report.products, output_path)
        return report

    async def run(self, input_path: Union[str, Path], output_path: Optional[Union[str, Path]] = None,
                  dry_run: bool = False, upload: bool = True, api_mode: Optional[str] = None,
                  from_shopify_csv: bool = False) -> SyncResponse:
        start_time = time.time()
        mode = (api_mode or settings.shopify_api_mode).lower()
        if mode not in API_MODES:
            raise ConfigurationError(f"Unknown api mode {mode!r}, expected one of {API_MODES}")

        will_upload = upload and not dry_run
        # Fail fast on credentials before spending time on the file
        if will_upload:
            self.shopify.ensure_configured()

        skipped: List[Dict[str, Any]] = []
        error_count = 0
        if from_shopify_csv:
            products: List[ShopifyProduct] = self.csv.read_products_csv(input_path)
            out_path = None
        else:
            out_path = str(output_path or default_output_path())
            report = self.transform(input_path, out_path)
            products = report.products
            skipped = report.skipped
            error_count = len(report.errors)

        results: List[Dict[str, Any]] = []
        if will_upload and products:
            logger.info(f"Uploading {len(products)} products to Shopify ({mode})")
            results = await self.shopify.sync_products(products, api_mode=mode)
        elif dry_run:
            logger.info(f"Dry run: {len(products)} products ready, nothing sent to Shopify")

        counts = Counter(r.get('status') for r in results)
        failed = counts.get('error', 0) + error_count
        response = SyncResponse(
            status="completed" if will_upload else "dry_run" if dry_run else "exported",
            message=self._summary(len(products), counts, len(skipped), failed),
            total_products=len(products),
            created=counts.get('created', 0),
            updated=counts.get('updated', 0),
            partial=counts.get('partial', 0),
            skipped=len(skipped),
            failed=failed,
            output_path=out_path,
            execution_time=time.time() - start_time,
            results=results if will_upload else [{"sku": p.sku, "handle": p.handle, "price": p.variants[0].price}
                                                 for p in products],
        )
        logger.info(response.message)
        return response

    @staticmethod
    def _summary(total: int, counts: Counter, skipped: int, failed: int) -> str:
        return (
            f"{total} products: {counts.get('created', 0)} created, {counts.get('updated', 0)} updated, "
            f"{counts.get('partial', 0)} partial, {skipped} skipped, {failed} failed"
        )


sync_service = SyncService()
