"""Upstream Product Fetcher

Pulls one page of products from the upstream paginated product API.

The upstream wraps every response in an envelope::

    {"metadata": {"is_error": false, "message": "..."},
     "data": [...products...],
     "pagination": {"pageCount": 120, "totalItemCount": 11934}}

Anything other than ``metadata.is_error == false`` is an error. Transport
errors, non-2xx statuses and error envelopes are retried with a linear
backoff (``retry_delay * attempt``); once the attempts are exhausted the
failure is raised as ``FetchError`` and the caller decides what to do with
the page.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx
from pydantic import ValidationError

from .config import FETCH_MAX_RETRIES, FETCH_RETRY_DELAY_S, UPSTREAM_TIMEOUT_S
from .errors import FetchError, TransientError
from .models import FetchResult, Pagination

logger = logging.getLogger(__name__)

USER_AGENT = "CatalogIndexer/1.0"


class ProductFetcher:
    def __init__(
        self,
        base_url: str,
        page_size: int = 100,
        max_retries: int = FETCH_MAX_RETRIES,
        retry_delay: float = FETCH_RETRY_DELAY_S,
        timeout: float = UPSTREAM_TIMEOUT_S,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url
        self.page_size = page_size
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)
        self._sleep = sleep

    def close(self) -> None:
        self._client.close()

    def fetch(self, page: int) -> FetchResult:
        """Fetch one page, retrying transient failures.

        Raises:
            FetchError: after ``max_retries`` failed attempts
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                logger.debug("Fetching page %d (attempt %d/%d)", page, attempt, self.max_retries)
                return self._fetch_once(page)
            except TransientError as e:
                if attempt >= self.max_retries:
                    logger.error(
                        "Page %d failed after %d attempts: %s", page, self.max_retries, e
                    )
                    raise FetchError(page, f"failed after {self.max_retries} attempts: {e}") from e

                wait_time = self.retry_delay * attempt
                logger.warning(
                    "Attempt %d/%d for page %d failed (%s). Retrying in %.1fs",
                    attempt,
                    self.max_retries,
                    page,
                    e,
                    wait_time,
                )
                self._sleep(wait_time)

    def _fetch_once(self, page: int) -> FetchResult:
        try:
            response = self._client.get(
                self.base_url,
                params={"page_size": self.page_size, "page": page},
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise TransientError(f"transport error: {e}") from e

        if not response.is_success:
            raise TransientError(f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise TransientError(f"invalid JSON body: {e}") from e

        return parse_envelope(body)


def parse_envelope(body: Any) -> FetchResult:
    """Turn an upstream envelope into a ``FetchResult``.

    Raises:
        TransientError: if the envelope does not signal success
    """
    metadata = body.get("metadata") if isinstance(body, dict) else None
    if not isinstance(metadata, dict) or metadata.get("is_error") is not False:
        message = metadata.get("message") if isinstance(metadata, dict) else None
        raise TransientError(f"API error: {message or 'Unknown error'}")

    data = body.get("data")
    products = list(data) if isinstance(data, list) else []

    raw_pagination: Dict[str, Any] = body.get("pagination") or {}
    pagination = None
    if isinstance(raw_pagination, dict) and raw_pagination:
        try:
            pagination = Pagination.model_validate(raw_pagination)
        except ValidationError:
            logger.warning("Ignoring malformed pagination block: %r", raw_pagination)

    return FetchResult(products=products, pagination=pagination)
