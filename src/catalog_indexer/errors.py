"""Indexer Exceptions

Exception hierarchy shared by the fetcher, the search-engine client,
the transformer and the run controller.
"""

from typing import Any, Optional


class IndexerError(Exception):
    """Base class for every error raised by the indexer."""


class TransientError(IndexerError):
    """A failure that may succeed if retried (timeouts, 5xx, error envelopes)."""


class PermanentError(IndexerError):
    """A failure that retrying will not fix."""


class FetchError(PermanentError):
    """The upstream product API could not deliver a page after all retries."""

    def __init__(self, page: int, message: str):
        super().__init__(f"Failed to fetch page {page}: {message}")
        self.page = page


class TransformError(IndexerError):
    """A single upstream product could not be turned into an index document."""

    def __init__(self, product_id: Any, reason: str):
        super().__init__(f"Error transforming product {product_id}: {reason}")
        self.product_id = product_id
        self.reason = reason


class SearchEngineError(TransientError):
    """Transport-level failure talking to the search engine."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StartupValidationError(IndexerError):
    """Fatal: the engine is unreachable or the collection is misconfigured."""
