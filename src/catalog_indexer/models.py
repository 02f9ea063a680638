"""Data Models Module

Defines Pydantic models for the values that move between the stages of
the indexer: fetched pages, batch outcomes, run counters, the durable
checkpoint and captured error samples.

Upstream products and index documents stay plain dictionaries: the
upstream shape is weakly typed and the index document is whatever the
transformer emits for the collection schema.
"""

from typing import List, Optional, Dict, Any, Literal
from pydantic import BaseModel, ConfigDict, Field


class Pagination(BaseModel):
    """Pagination block of the upstream envelope."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    page_count: Optional[int] = Field(default=None, alias="pageCount")
    total_item_count: Optional[int] = Field(default=None, alias="totalItemCount")


class FetchResult(BaseModel):
    """One upstream page: its products and pagination metadata."""

    products: List[Any] = []
    pagination: Optional[Pagination] = None


class BatchResult(BaseModel):
    """Outcome of uploading one batch of documents."""

    indexed: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = []


class RunCounters(BaseModel):
    """Cumulative counters persisted inside a checkpoint."""

    processed: int = 0
    indexed: int = 0
    failed: int = 0
    batches: int = 0
    consecutive_errors: int = 0
    last_successful_page: int = 0


class RunStats(RunCounters):
    """In-memory run state: checkpointed counters plus report-only values."""

    total_products: int = 0
    upsert_validated: bool = False
    errors: List[Dict[str, Any]] = []

    def counters(self) -> RunCounters:
        return RunCounters(**self.model_dump(include=set(RunCounters.model_fields)))


class Checkpoint(BaseModel):
    """Durable record of pipeline progress.

    ``last_successful_page`` is the resume anchor: a resumed run starts
    fetching at ``last_successful_page + 1``.
    """

    timestamp: str
    last_successful_page: int = 0
    stats: RunCounters = RunCounters()
    configuration: Dict[str, Any] = {}


Phase = Literal["transformation", "indexing", "batch_processing"]


class ErrorSample(BaseModel):
    """One captured failing input, kept for offline debugging."""

    timestamp: str
    product_id: Optional[str] = None
    product_title: Optional[str] = None
    error: str
    phase: Phase
    context: Dict[str, Any] = {}
    product_sample: Dict[str, Any] = {}
