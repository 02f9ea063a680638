"""Indexer CLI Entry Point

Command-line interface for the catalog indexer. Handles argument parsing,
logging configuration, and runs the resumable bulk indexing of the
upstream product API into the Typesense collection.

Connection settings come from the environment (see
``src.catalog_indexer.config``).

Usage:
    python -m src.run_indexer --pages 10 --batch-size 100
    python -m src.run_indexer --resume
"""

import argparse
import logging
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from src.catalog_indexer.config import IndexerOptions, Settings
from src.catalog_indexer.jsonlog import JsonLinesFormatter
from src.catalog_indexer.pipeline import STATUS_INTERRUPTED, build_run_paths, run_indexer


def configure_logging(log_file: Path) -> None:
    """Configure logging with both console and file output.

    Sets up:
      - Root logger at DEBUG level
      - Console handler at INFO level for user-facing messages
      - File handler at DEBUG level writing one JSON object per line
      - Reduced verbosity for httpx loggers
    """
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
    )

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(JsonLinesFormatter())

    # Clear existing handlers to avoid duplicates if run multiple times
    logger.handlers.clear()
    logger.addHandler(console_handler)
    logger.addHandler(file_handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Resumable bulk indexer: product API -> Typesense"
    )
    parser.add_argument(
        "--pages",
        type=int,
        default=0,
        help="Maximum number of pages to process (default: 0 = all)",
    )
    parser.add_argument(
        "--start-page",
        type=int,
        default=1,
        help="First upstream page to fetch (default: 1)",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=50,
        help="Documents per upsert batch, 1-250 (default: 50)",
    )
    parser.add_argument(
        "--resume",
        action="store_true",
        help="Continue from the last checkpoint of this collection",
    )
    parser.add_argument(
        "--checkpoint-interval",
        type=int,
        default=25,
        help="Save a checkpoint every N pages (default: 25)",
    )
    parser.add_argument(
        "--debug-errors",
        action="store_true",
        help="Capture failing products to an error-samples file",
    )
    parser.add_argument(
        "--stop-on-errors",
        action="store_true",
        help="Stop after the first batch with a failure",
    )
    parser.add_argument(
        "--max-consecutive-errors",
        type=int,
        default=10,
        help="Stop after this many consecutive failures (default: 10)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch and transform without contacting the search engine",
    )
    parser.add_argument(
        "--validate-upsert",
        action="store_true",
        help="Check upsert semantics with a canary document before indexing",
    )
    return parser


def main(argv=None) -> int:
    """
    CLI entrypoint for the catalog indexer.

    Returns 0 when the run completed or was interrupted cleanly, 1 on a
    fatal error (after the checkpoint and report have been written).
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        options = IndexerOptions(
            pages=args.pages,
            start_page=args.start_page,
            batch_size=args.batch_size,
            resume=args.resume,
            checkpoint_interval=args.checkpoint_interval,
            debug_errors=args.debug_errors,
            stop_on_errors=args.stop_on_errors,
            max_consecutive_errors=args.max_consecutive_errors,
            dry_run=args.dry_run,
            validate_upsert=args.validate_upsert,
        )
    except ValidationError as e:
        parser.error(str(e))

    settings = Settings.from_env()
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    paths = build_run_paths(settings.log_dir, settings.collection_name, timestamp)

    configure_logging(paths["log"])
    logger = logging.getLogger(__name__)

    logger.info("=== Starting catalog indexer ===")
    logger.info("Products API: %s", settings.products_api_url)
    logger.info("Search engine: %s (collection %s)", settings.typesense_url, settings.collection_name)
    logger.info("Pages: %s", args.pages if args.pages else "all")
    logger.info("Batch size: %d", args.batch_size)
    logger.info("Resume: %s", args.resume)
    if args.dry_run:
        logger.info("DRY RUN MODE: Will not contact the search engine")

    try:
        report, output_paths = run_indexer(settings, options, paths)
    except Exception as e:
        logger.exception(f"Indexer failed with an unhandled exception: {e}")
        logger.info("Checkpoint: %s", paths["checkpoint"])
        logger.info("Report:     %s", paths["report"])
        return 1

    summary = report["summary"]
    logger.info("=" * 70)
    logger.info("Indexer %s in %s", summary["status"].lower(), summary["formatted_duration"])
    logger.info("")
    logger.info("Summary:")
    logger.info("  Processed:  %d", summary["processed"])
    logger.info("  Indexed:    %d", summary["indexed"])
    logger.info("  Failed:     %d", summary["failed"])
    logger.info("  Throughput: %.2f products/s", summary["throughput_per_second"])
    logger.info("  Success:    %.2f%%", summary["success_rate"])
    logger.info("  Last page:  %d", summary["last_successful_page"])
    logger.info("")
    logger.info("Output files:")
    for name, path in output_paths.items():
        logger.info("  %-14s %s", f"{name}:", path)
    if summary["status"] == STATUS_INTERRUPTED:
        logger.info("")
        logger.info("To continue: python -m src.run_indexer --resume")
    logger.info("=" * 70)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
