"""Batch Uploader

Sends index documents to the search engine in size-bounded batches using
``action=upsert``, so a document whose ``id`` already exists is replaced in
place and re-running the indexer never creates duplicates.

Per-document failures reported by the engine are counted and sampled, never
raised. A transport failure for a whole batch counts every document of the
batch as failed.
"""

import logging
import time
from typing import Any, Dict, Iterator, List, Optional, Sequence

from .errors import SearchEngineError
from .models import BatchResult
from .samples import ErrorSampleStore
from .search_client import SearchClient

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50


def chunked(items: Sequence[Any], size: int) -> Iterator[List[Any]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size < 1:
        raise ValueError("batch size must be >= 1")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


class UploadOutcome(BatchResult):
    """BatchResult plus the ordered success flags the controller replays."""

    outcomes: List[bool] = []
    transport_error: Optional[str] = None
    elapsed_ms: float = 0.0


class BatchUploader:
    def __init__(
        self,
        client: Optional[SearchClient],
        samples: Optional[ErrorSampleStore] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        dry_run: bool = False,
    ):
        if client is None and not dry_run:
            raise ValueError("a search client is required unless dry_run is set")
        self.client = client
        self.samples = samples
        self.batch_size = batch_size
        self.dry_run = dry_run

    def upload(self, documents: Sequence[Dict[str, Any]]) -> UploadOutcome:
        """Upload any number of documents, batching by ``batch_size``."""
        total = UploadOutcome()
        for batch in chunked(documents, self.batch_size):
            result = self.upload_batch(batch)
            total.indexed += result.indexed
            total.failed += result.failed
            total.errors.extend(result.errors)
            total.outcomes.extend(result.outcomes)
            total.elapsed_ms += result.elapsed_ms
        return total

    def upload_batch(self, documents: List[Dict[str, Any]]) -> UploadOutcome:
        """
        Upsert one batch and account for each document.

        Returns:
            UploadOutcome with indexed/failed counts, error records and one
            success flag per document (empty on transport failure)
        """
        if not documents:
            return UploadOutcome()

        if self.dry_run:
            logger.info("[DRY-RUN] Would index %d documents", len(documents))
            return UploadOutcome(indexed=len(documents), outcomes=[True] * len(documents))

        start = time.perf_counter()
        try:
            results = self.client.import_documents(documents, action="upsert")
        except SearchEngineError as e:
            elapsed_ms = (time.perf_counter() - start) * 1000
            logger.error(
                "Batch of %d documents failed at transport level: %s",
                len(documents),
                e,
                extra={"data": {"error": str(e), "documents": len(documents)}},
            )
            if self.samples is not None:
                self.samples.record(documents[0], e, "batch_processing")
            return UploadOutcome(
                failed=len(documents),
                errors=[{"error": str(e), "products": len(documents), "phase": "batch_processing"}],
                transport_error=str(e),
                elapsed_ms=elapsed_ms,
            )
        elapsed_ms = (time.perf_counter() - start) * 1000

        outcome = UploadOutcome(elapsed_ms=elapsed_ms)
        for doc, result in zip(documents, results):
            if isinstance(result, dict) and result.get("success") is True:
                outcome.indexed += 1
                outcome.outcomes.append(True)
                continue

            result = result if isinstance(result, dict) else {}
            error = result.get("error") or "Unknown indexing error"
            outcome.failed += 1
            outcome.outcomes.append(False)
            outcome.errors.append(
                {"product_id": doc.get("id"), "error": error, "code": result.get("code"), "phase": "indexing"}
            )
            if self.samples is not None:
                self.samples.record(doc, error, "indexing", {"code": result.get("code")})
            logger.debug(
                "Failed to index product %s: %s",
                doc.get("id"),
                error,
                extra={"data": {"title": doc.get("title"), "result": result}},
            )

        logger.info(
            "Batch indexed: %d succeeded, %d failed (%.0fms)",
            outcome.indexed,
            outcome.failed,
            elapsed_ms,
        )
        return outcome
