"""
Command line entry point.

Usage:
    visiotech2shopify csv-input/visiotech.csv
    visiotech2shopify csv-input/visiotech.csv csv-output/shopify.csv --dry-run
    visiotech2shopify csv-output/shopify.csv --from-shopify-csv --api rest

Exit code is 0 when the run completes (individual product failures are
reported in the summary) and 1 on fatal errors: missing credentials, an
unreadable input file.
"""
import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from visiotech_sync.core.config import settings
from visiotech_sync.core.exceptions import ConfigurationError, InputFileError
from visiotech_sync.core.logging_config import setup_logging
from visiotech_sync.services.sync_service import API_MODES, SyncService, sync_service

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="visiotech2shopify",
        description="Transform a Visiotech product export into Shopify products and sync them.",
    )
    parser.add_argument("input", help="Supplier CSV/TSV file (pipe, semicolon, tab or comma delimited)")
    parser.add_argument("output", nargs="?", default=None,
                        help="Shopify import CSV to write (default: csv-output/shopify_products_<date>.csv)")
    parser.add_argument("--dry-run", action="store_true", help="Transform and export only, never call Shopify")
    parser.add_argument("--no-upload", action="store_true", help="Write the Shopify CSV without uploading it")
    parser.add_argument("--api", choices=API_MODES, default=None,
                        help=f"Shopify API flavour (default: {settings.shopify_api_mode})")
    parser.add_argument("--from-shopify-csv", action="store_true",
                        help="INPUT is an already generated Shopify import CSV; upload it as is")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level (default: %(default)s)")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file")
    return parser


def main(argv: Optional[List[str]] = None, service: Optional[SyncService] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    service = service or sync_service
    logger.info(f"Processing file: {args.input}")
    try:
        result = asyncio.run(service.run(
            args.input,
            args.output,
            dry_run=args.dry_run,
            upload=not args.no_upload,
            api_mode=args.api,
            from_shopify_csv=args.from_shopify_csv,
        ))
    except (ConfigurationError, InputFileError) as e:
        logger.error(str(e))
        return 1
    except Exception as e:
        logger.exception(f"Processing failed: {str(e)}")
        return 1

    if result.output_path:
        logger.info(f"Shopify CSV: {result.output_path}")
    logger.info(f"Done in {result.execution_time:.1f}s - {result.message}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
