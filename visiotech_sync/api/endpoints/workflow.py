from fastapi import APIRouter, Depends, HTTPException
from visiotech_sync.core.exceptions import ConfigurationError, InputFileError
from visiotech_sync.models.sync import SyncRequest, SyncResponse, TransformRequest
from visiotech_sync.services.sync_service import SyncService, default_output_path
from visiotech_sync.api.deps import get_sync_service
import time
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/transform",
             response_model=SyncResponse,
             summary="Transform Supplier File",
             description="Parse a Visiotech export, transform every row and write the Shopify import CSV. Nothing is sent to Shopify.",
             response_description="Counts of exported, skipped and failed rows plus a preview of each product.")
async def transform_file(
    request: TransformRequest,
    sync_service: SyncService = Depends(get_sync_service)
):
    """
    Transform a supplier file into a Shopify import CSV.

    This endpoint:
    1. Reads the supplier file (pipe, semicolon, tab or comma delimited)
    2. Drops rows with unapproved brands, excluded categories or no price
    3. Writes the 49-column Shopify CSV

    Parameters:
    - input_path: supplier file on the server
    - output_path: CSV to write (defaults to csv-output/shopify_products_<date>.csv)
    """
    start_time = time.time()
    try:
        output_path = request.output_path or default_output_path()
        report = sync_service.transform(request.input_path, output_path)
        for error in report.errors:
            logger.warning(f"Line {error.line} ({error.sku or '-'}): {error.error}")
        return SyncResponse(
            status="exported",
            message=f"{len(report.products)} products exported, {len(report.skipped)} skipped, "
                    f"{len(report.errors)} failed",
            total_products=len(report.products),
            skipped=len(report.skipped),
            failed=len(report.errors),
            output_path=output_path,
            execution_time=time.time() - start_time,
            results=[{"sku": p.sku, "handle": p.handle, "title": p.title, "price": p.variants[0].price}
                     for p in report.products],
        )
    except InputFileError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Transform failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Transform failed: {str(e)}")


@router.post("/sync",
             response_model=SyncResponse,
             summary="Sync Supplier File to Shopify",
             description="Full run: parse, transform, export the CSV and create or update every product in Shopify by SKU.",
             response_description="Created/updated/partial/failed counts and per-product results.")
async def sync_file(
    request: SyncRequest,
    sync_service: SyncService = Depends(get_sync_service)
):
    """
    Run the whole pipeline for one file.

    Products are matched against the store by SKU (Handle as fallback) and
    sent one at a time. A product whose create succeeded but a later step
    (variant, inventory, media) failed is reported as partial.

    Parameters:
    - dry_run: transform and export only
    - upload: set to false to only write the CSV
    - api_mode: 'graphql' (default) or 'rest'
    - from_shopify_csv: input is an already generated Shopify CSV
    """
    try:
        logger.info(f"Starting sync for {request.input_path}")
        return await sync_service.run(
            request.input_path,
            request.output_path,
            dry_run=request.dry_run,
            upload=request.upload,
            api_mode=request.api_mode,
            from_shopify_csv=request.from_shopify_csv,
        )
    except InputFileError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Sync failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Sync failed: {str(e)}")
