"""
Catalog Indexing Pipeline

Resumable bulk indexer that pages through the upstream product API and
upserts every product into a Typesense collection.

Pipeline per page:
1. Fetch the page (retried by the fetcher)
2. Split products into batches
3. Transform each product into an index document
4. Upsert the batch keyed by ``id``
5. Advance the checkpoint when the page finished without failures

Features:
- Resume from ``logs/checkpoint-{collection}.json``
- Graceful stop on SIGINT / SIGTERM at the next batch or page boundary
- Page limit, consecutive-error limit and stop-on-errors termination
- Startup validation of engine health, collection schema and upsert
- Error samples, NDJSON run log and a final JSON report
"""

from pathlib import Path
import json
import logging
import signal
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from .checkpoint import CheckpointStore
from .config import (
    BATCH_PAUSE_S,
    PAGE_ERROR_PAUSE_S,
    PAGE_PAUSE_S,
    IndexerOptions,
    Settings,
)
from .errors import FetchError, SearchEngineError, StartupValidationError, TransformError
from .fetcher import ProductFetcher
from .models import Checkpoint, RunStats
from .samples import ErrorSampleStore
from .search_client import SearchClient, id_filter
from .transformers import to_index_document
from .typesense_config import (
    AUTO_SCHEMA_FIELD,
    PRIMARY_KEY_FIELD,
    PRIMARY_KEY_TYPE,
    REQUIRED_SCHEMA_FIELDS,
)
from .uploader import BatchUploader, UploadOutcome, chunked

logger = logging.getLogger(__name__)

STATUS_COMPLETED = "COMPLETED"
STATUS_INTERRUPTED = "INTERRUPTED"

PROGRESS_EVERY_PAGES = 10
OVERALL_PROGRESS_EVERY_PAGES = 50
MAX_TRACKED_ERRORS = 1000
CANARY_SETTLE_S = 0.5


def build_run_paths(log_dir: Path | str, collection_name: str, timestamp: str) -> Dict[str, Path]:
    """Locations of every file a run writes."""
    log_dir = Path(log_dir)
    return {
        "log": log_dir / f"run-{timestamp}.log",
        "checkpoint": log_dir / f"checkpoint-{collection_name}.json",
        "error_samples": log_dir / f"error-samples-{timestamp}.json",
        "report": log_dir / f"report-{timestamp}.json",
    }


def format_duration(seconds: float) -> str:
    hours, rem = divmod(int(seconds), 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def verify_collection_schema(collection: Dict[str, Any]) -> List[str]:
    """
    Check that a collection can hold the documents this indexer writes.

    The primary key must be ``id`` of type string: a collection that keys
    documents on anything else silently duplicates products on re-runs.

    Returns:
        Names of expected fields that are not declared (empty when the
        schema has an auto ``.*`` field)

    Raises:
        StartupValidationError: if ``id`` is declared with a non-string type
    """
    fields = [f for f in (collection.get("fields") or []) if isinstance(f, dict)]
    by_name = {f.get("name"): f for f in fields}

    pk = by_name.get(PRIMARY_KEY_FIELD)
    if pk is not None and pk.get("type") != PRIMARY_KEY_TYPE:
        raise StartupValidationError(
            f"collection field '{PRIMARY_KEY_FIELD}' has type {pk.get('type')!r}; "
            f"the primary key must be a {PRIMARY_KEY_TYPE}"
        )

    if AUTO_SCHEMA_FIELD in by_name:
        return []
    return [name for name in REQUIRED_SCHEMA_FIELDS if name not in by_name]


class _Timer:
    """Running average of a timed phase, in milliseconds."""

    def __init__(self) -> None:
        self.count = 0
        self.total_ms = 0.0

    def add(self, ms: float) -> None:
        self.count += 1
        self.total_ms += ms

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0


class IndexerRun:
    """
    Run controller: owns the page loop, the counters and the stop flag.

    Counters, the consecutive-error counter and the stop flag are only
    mutated here; the fetcher, transformer and uploader report outcomes.
    """

    def __init__(
        self,
        options: IndexerOptions,
        fetcher: ProductFetcher,
        search_client: Optional[SearchClient],
        paths: Dict[str, Path],
        collection_name: str = "products",
        sleep: Callable[[float], None] = time.sleep,
        batch_pause: float = BATCH_PAUSE_S,
        page_pause: float = PAGE_PAUSE_S,
        page_error_pause: float = PAGE_ERROR_PAUSE_S,
    ):
        self.options = options
        self.fetcher = fetcher
        self.search_client = search_client
        self.paths = paths
        self.collection_name = collection_name
        self._sleep = sleep
        self.batch_pause = batch_pause
        self.page_pause = page_pause
        self.page_error_pause = page_error_pause

        self.stats = RunStats()
        self.start_page = options.start_page
        self.checkpoints = CheckpointStore(paths["checkpoint"])
        self.samples = ErrorSampleStore(paths["error_samples"], enabled=options.debug_errors)
        self.uploader = BatchUploader(
            search_client,
            samples=self.samples,
            batch_size=options.batch_size,
            dry_run=options.dry_run,
        )

        self.stop_requested = False
        self.interrupted = False
        self.stop_reason: Optional[str] = None
        self.fatal_error: Optional[str] = None
        self.pages_run = 0

        self._fetch_timer = _Timer()
        self._transform_timer = _Timer()
        self._index_timer = _Timer()
        self._started_at = time.perf_counter()
        self._previous_handlers: Dict[int, Any] = {}

    @classmethod
    def from_settings(
        cls, settings: Settings, options: IndexerOptions, paths: Dict[str, Path]
    ) -> "IndexerRun":
        fetcher = ProductFetcher(settings.products_api_url, page_size=settings.page_size)
        client = None
        if not options.dry_run:
            client = SearchClient(
                settings.typesense_url,
                settings.typesense_api_key,
                settings.collection_name,
            )
        return cls(options, fetcher, client, paths, collection_name=settings.collection_name)

    # ========== SIGNALS ==========

    def request_stop(self, signum: Optional[int] = None, frame: Any = None) -> None:
        """Ask the loop to stop at the next batch or page boundary."""
        if signum is not None:
            logger.warning(
                "Received %s; stopping after the current batch", signal.Signals(signum).name
            )
        self.stop_requested = True
        self.interrupted = True
        self.stop_reason = self.stop_reason or "interrupted"

    def _install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        for sig in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[sig] = signal.signal(sig, self.request_stop)

    def _restore_signal_handlers(self) -> None:
        for sig, handler in self._previous_handlers.items():
            signal.signal(sig, handler)
        self._previous_handlers.clear()

    # ========== STARTUP ==========

    def startup(self) -> None:
        """Load the checkpoint if resuming, then validate the engine."""
        logger.info(
            "Indexer starting",
            extra={"data": {"configuration": self.options.snapshot(), "collection": self.collection_name}},
        )

        if self.options.resume:
            self._resume_from_checkpoint()

        if self.options.dry_run:
            logger.info("DRY RUN: skipping engine validation; nothing will be indexed")
            return

        self._check_engine()
        if self.options.validate_upsert:
            self._validate_upsert()

    def _resume_from_checkpoint(self) -> None:
        checkpoint = self.checkpoints.load()
        if checkpoint is None:
            logger.info("No checkpoint found; starting at page %d", self.start_page)
            return

        self.start_page = checkpoint.last_successful_page + 1
        counters = checkpoint.stats.model_dump()
        counters["last_successful_page"] = checkpoint.last_successful_page
        # An auto-stop must not immediately re-trigger on the resumed run.
        counters["consecutive_errors"] = 0
        for key, value in counters.items():
            setattr(self.stats, key, value)

        logger.info(
            "Checkpoint loaded: resuming at page %d (indexed=%d, failed=%d, saved %s)",
            self.start_page,
            self.stats.indexed,
            self.stats.failed,
            checkpoint.timestamp,
            extra={"data": {"resume_from_page": self.start_page, "previous_stats": counters}},
        )

    def _check_engine(self) -> None:
        try:
            healthy = self.search_client.health()
        except SearchEngineError as e:
            raise StartupValidationError(f"cannot reach search engine: {e}") from e
        if not healthy:
            raise StartupValidationError("search engine reports unhealthy")
        logger.info("Search engine connection established")

        try:
            collection = self.search_client.retrieve_collection()
        except SearchEngineError as e:
            raise StartupValidationError(f"cannot read collection schema: {e}") from e
        if collection is None:
            raise StartupValidationError(f"collection '{self.collection_name}' does not exist")

        missing = verify_collection_schema(collection)
        if missing:
            raise StartupValidationError(
                f"collection '{self.collection_name}' is missing fields: {', '.join(missing)}"
            )

        logger.info(
            "Schema validated: %d fields, %s documents, sorting by %s",
            len(collection.get("fields") or []),
            collection.get("num_documents"),
            collection.get("default_sorting_field"),
            extra={"data": {
                "total_fields": len(collection.get("fields") or []),
                "current_documents": collection.get("num_documents"),
                "default_sorting_field": collection.get("default_sorting_field"),
            }},
        )

    def _validate_upsert(self) -> None:
        """
        Import a canary document twice under the same id and check the engine
        still holds exactly one copy, carrying the second title.
        """
        canary_id = f"upsert-canary-{int(time.time())}"
        canary = {
            "id": canary_id,
            "title": "Upsert canary",
            "stock": 1,
            "is_active": True,
            "pricing": {"sales_price": 100.0},
            "categories": [[{"id": 0, "name": "canary", "level": 2}]],
        }
        client = self.search_client

        try:
            for attempt, title in enumerate(("Upsert canary", "Upsert canary updated"), start=1):
                canary["title"] = title
                result = client.import_documents([to_index_document(canary)], action="upsert")
                if not result or result[0].get("success") is not True:
                    raise StartupValidationError(
                        f"canary import {attempt} failed: {(result or [{}])[0].get('error')}"
                    )
                self._sleep(CANARY_SETTLE_S)
                found = client.count_by_id(canary_id)
                if found != 1:
                    raise StartupValidationError(
                        f"upsert canary found {found} documents for id {canary_id}, expected 1"
                    )

            hits = client.search({"filter_by": id_filter(canary_id), "per_page": 1}).get("hits") or []
            stored_title = ((hits[0] if hits else {}).get("document") or {}).get("title")
            if stored_title != "Upsert canary updated":
                raise StartupValidationError("upsert canary was not updated in place")

            self.stats.upsert_validated = True
            logger.info("Upsert validation passed")
        except (StartupValidationError, SearchEngineError) as e:
            logger.error("Upsert validation failed: %s", e, extra={"data": {"error": str(e)}})
            if self.options.stop_on_errors:
                raise StartupValidationError(f"upsert validation failed: {e}") from e
        finally:
            try:
                client.delete_document(canary_id)
            except SearchEngineError as e:
                logger.warning("Could not delete upsert canary %s: %s", canary_id, e)

    # ========== PAGE LOOP ==========

    def run(self) -> RunStats:
        page = self.start_page
        pages_processed = 0
        has_more = True

        logger.info("Starting indexing at page %d", page)

        while has_more and not self.stop_requested:
            if self.options.pages and pages_processed >= self.options.pages:
                logger.info("Page limit reached (%d pages)", self.options.pages)
                self.stop_reason = "page_limit"
                break

            if self.stats.consecutive_errors >= self.options.max_consecutive_errors:
                logger.error(
                    "Stopping after %d consecutive errors", self.stats.consecutive_errors
                )
                self.stop_reason = "max_consecutive_errors"
                break

            self.pages_run += 1
            fetch_start = time.perf_counter()
            try:
                result = self.fetcher.fetch(page)
            except FetchError as e:
                logger.error(
                    "Error processing page %d: %s", page, e, extra={"data": {"page": page, "error": str(e)}}
                )
                self._track_error({"page": page, "error": str(e), "phase": "fetch"})
                self.stats.consecutive_errors += 1
                page += 1
                pages_processed += 1
                self._sleep(self.page_error_pause)
                continue
            self._fetch_timer.add((time.perf_counter() - fetch_start) * 1000)

            if not result.products:
                logger.info("No more products after page %d", page - 1)
                self.stop_reason = "exhausted"
                break

            logger.info("Processing %d products from page %d", len(result.products), page)
            if self._process_page(page, result.products):
                self.stats.last_successful_page = max(self.stats.last_successful_page, page)

            if page % self.options.checkpoint_interval == 0:
                logger.info("Periodic checkpoint at page %d", page)
                self.save_checkpoint()

            if page % PROGRESS_EVERY_PAGES == 0:
                self.log_progress()

            if result.pagination is not None:
                self.stats.total_products = result.pagination.total_item_count or 0
                page_count = result.pagination.page_count or 0
                has_more = page < page_count
                if page % OVERALL_PROGRESS_EVERY_PAGES == 0 and page_count:
                    logger.info(
                        "Overall progress: %.1f%% (%d/%d pages)",
                        page / page_count * 100,
                        page,
                        page_count,
                    )
            else:
                has_more = False

            page += 1
            pages_processed += 1
            if has_more and not self.stop_requested:
                self._sleep(self.page_pause)

        if has_more is False and self.stop_reason is None:
            self.stop_reason = "exhausted"
        return self.stats

    def _process_page(self, page: int, products: List[Any]) -> bool:
        """
        Run every batch of a page.

        Returns:
            True only if every batch ran and none had a failure
        """
        batches = list(chunked(products, self.options.batch_size))
        page_failed = False

        for i, batch in enumerate(batches, start=1):
            if self.stop_requested:
                logger.info("Stop requested; page %d left incomplete at batch %d/%d", page, i, len(batches))
                return False

            batch_start = time.perf_counter()
            outcome, failed = self._process_batch(batch)
            batch_s = time.perf_counter() - batch_start

            logger.info(
                "Batch %d/%d of page %d: %d indexed, %d failed in %.2fs (%.2f p/s)",
                i,
                len(batches),
                page,
                outcome.indexed,
                failed,
                batch_s,
                len(batch) / batch_s if batch_s > 0 else 0.0,
            )

            if failed:
                page_failed = True
                if self.options.stop_on_errors:
                    logger.warning("Stopping: batch had failures and stop-on-errors is set")
                    self.stop_requested = True
                    self.stop_reason = "stop_on_errors"
                    return False

            self._sleep(self.batch_pause)

        return not page_failed

    def _process_batch(self, products: List[Any]) -> Tuple[UploadOutcome, int]:
        """Transform and upload one batch. Returns the upload outcome and total failures."""
        documents: List[Dict[str, Any]] = []
        transform_failed = 0

        for product in products:
            t0 = time.perf_counter()
            try:
                documents.append(to_index_document(product))
            except TransformError as e:
                transform_failed += 1
                self._track_error(
                    {"product_id": str(e.product_id), "error": str(e), "phase": "transformation"}
                )
                self.samples.record(product, e, "transformation")
                logger.debug("Transform rejected product: %s", e)
            finally:
                self._transform_timer.add((time.perf_counter() - t0) * 1000)

        outcome = self.uploader.upload_batch(documents) if documents else UploadOutcome()
        if documents and not self.options.dry_run:
            self._index_timer.add(outcome.elapsed_ms)

        failed = outcome.failed + transform_failed
        self.stats.processed += len(products)
        self.stats.indexed += outcome.indexed
        self.stats.failed += failed
        self.stats.batches += 1
        for error in outcome.errors:
            self._track_error(error)

        if outcome.transport_error is not None:
            self.stats.consecutive_errors += 1
        else:
            for success in outcome.outcomes:
                self.stats.consecutive_errors = 0 if success else self.stats.consecutive_errors + 1

        return outcome, failed

    def _track_error(self, error: Dict[str, Any]) -> None:
        self.stats.errors.append(error)
        if len(self.stats.errors) > MAX_TRACKED_ERRORS:
            del self.stats.errors[: len(self.stats.errors) - MAX_TRACKED_ERRORS]

    # ========== PERSISTENCE & REPORTING ==========

    def save_checkpoint(self) -> None:
        checkpoint = Checkpoint(
            timestamp=datetime.now(timezone.utc).isoformat(),
            last_successful_page=self.stats.last_successful_page,
            stats=self.stats.counters(),
            configuration={**self.options.snapshot(), "collection": self.collection_name},
        )
        try:
            self.checkpoints.save(checkpoint)
        except OSError:
            logger.exception("Failed to save checkpoint to %s", self.checkpoints.path)

    def log_progress(self) -> None:
        elapsed = time.perf_counter() - self._started_at
        logger.info(
            "Progress: %s elapsed, %d processed, %d indexed, %d failed, %.2f p/s, %.1f%% success, last page %d",
            format_duration(elapsed),
            self.stats.processed,
            self.stats.indexed,
            self.stats.failed,
            self.stats.processed / elapsed if elapsed > 0 else 0.0,
            self.stats.indexed / (self.stats.processed or 1) * 100,
            self.stats.last_successful_page,
        )

    def generate_report(self, status: str) -> Dict[str, Any]:
        """Build the final report, write it to disk and return it."""
        duration = time.perf_counter() - self._started_at
        throughput = self.stats.processed / duration if duration > 0 else 0.0

        report = {
            "summary": {
                "status": status,
                "stop_reason": self.stop_reason,
                "duration_seconds": round(duration, 2),
                "formatted_duration": format_duration(duration),
                "total_products": self.stats.total_products,
                "processed": self.stats.processed,
                "indexed": self.stats.indexed,
                "failed": self.stats.failed,
                "batches": self.stats.batches,
                "throughput_per_second": round(throughput, 2),
                "success_rate": round(self.stats.indexed / (self.stats.processed or 1) * 100, 2),
                "last_successful_page": self.stats.last_successful_page,
                "consecutive_errors": self.stats.consecutive_errors,
                "upsert_validated": self.stats.upsert_validated,
                "fatal_error": self.fatal_error,
            },
            "performance": {
                "avg_fetch_ms": round(self._fetch_timer.avg_ms, 2),
                "avg_transform_ms": round(self._transform_timer.avg_ms, 2),
                "avg_index_ms": round(self._index_timer.avg_ms, 2),
                "fetches": self._fetch_timer.count,
                "transforms": self._transform_timer.count,
                "index_calls": self._index_timer.count,
            },
            "configuration": {**self.options.snapshot(), "start_page": self.start_page},
            "errors": {
                "total_errors": len(self.stats.errors),
                "last_errors": self.stats.errors[-20:],
                "error_samples_count": len(self.samples),
            },
            "files": {name: str(path) for name, path in self.paths.items()},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        report_path = self.paths["report"]
        try:
            report_path.parent.mkdir(parents=True, exist_ok=True)
            with report_path.open("w", encoding="utf-8") as f:
                json.dump(report, f, ensure_ascii=False, indent=2, default=str)
        except OSError:
            logger.exception("Failed to write report to %s", report_path)

        logger.info("Final report generated", extra={"data": report["summary"]})
        return report

    def _finish(self, status: str) -> Dict[str, Any]:
        # keep the previous checkpoint when no page ran
        if self.pages_run:
            self.save_checkpoint()
        else:
            logger.info("No page was processed; leaving checkpoint %s untouched", self.checkpoints.path)
        try:
            if self.samples.flush():
                logger.info("%d error samples saved to %s", len(self.samples), self.samples.path)
        except OSError:
            logger.exception("Failed to write error samples to %s", self.samples.path)
        return self.generate_report(status)

    def execute(self) -> Dict[str, Any]:
        """
        Run startup, the page loop and the final checkpoint/report.

        Returns:
            The final report

        Raises:
            StartupValidationError: on fatal startup failures (after the
                checkpoint and report have been written)
        """
        self._install_signal_handlers()
        try:
            self.startup()
            self.run()
        except Exception as e:
            logger.exception("Fatal error: %s", e)
            self.fatal_error = str(e)
            self._finish(STATUS_INTERRUPTED)
            raise
        finally:
            self._restore_signal_handlers()

        status = STATUS_INTERRUPTED if self.interrupted else STATUS_COMPLETED
        return self._finish(status)


def run_indexer(
    settings: Settings,
    options: IndexerOptions,
    paths: Optional[Dict[str, Path]] = None,
) -> Tuple[Dict[str, Any], Dict[str, Path]]:
    """
    Run the indexer end to end against real endpoints.

    Returns:
        Tuple of (final report, output paths)
    """
    if paths is None:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        paths = build_run_paths(settings.log_dir, settings.collection_name, timestamp)

    run = IndexerRun.from_settings(settings, options, paths)
    try:
        report = run.execute()
    finally:
        run.fetcher.close()
        if run.search_client is not None:
            run.search_client.close()
    return report, paths
