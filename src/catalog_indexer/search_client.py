"""Search Engine Client

Thin HTTP client for the Typesense REST API, built on httpx.

Endpoints used:
  GET    /health
  GET    /collections/{name}
  POST   /collections/{name}/documents/import?action=upsert   (NDJSON body)
  GET    /collections/{name}/documents/search
  GET    /collections/{name}/documents/export                 (NDJSON body)
  DELETE /collections/{name}/documents/{id}

Every request carries the ``X-TYPESENSE-API-KEY`` header and a per-request
timeout (default 60s). Transport failures and non-2xx statuses surface as
``SearchEngineError``; per-document import failures are returned, not
raised.
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from .config import ENGINE_TIMEOUT_S
from .errors import SearchEngineError
from .typesense_config import QUERY_BY_FIELDS

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-TYPESENSE-API-KEY"


def id_filter(doc_id: str) -> str:
    """Exact-match ``filter_by`` on the primary key; backticks keep operators in the id literal."""
    return f"id:=`{doc_id}`"


def _parse_json_lines(text: str) -> List[Dict[str, Any]]:
    """Parse a JSON array or NDJSON payload into a list of objects."""
    stripped = text.strip()
    if not stripped:
        return []
    if stripped.startswith("["):
        data = json.loads(stripped)
        return data if isinstance(data, list) else []
    return [json.loads(line) for line in stripped.splitlines() if line.strip()]


class SearchClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        collection_name: str,
        timeout: float = ENGINE_TIMEOUT_S,
        client: Optional[httpx.Client] = None,
    ):
        self.collection_name = collection_name
        self.timeout = timeout
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)
        self._headers = {API_KEY_HEADER: api_key}

    def close(self) -> None:
        self._client.close()

    @property
    def _collection_path(self) -> str:
        return f"/collections/{self.collection_name}"

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = {**self._headers, **kwargs.pop("headers", {})}
        try:
            response = self._client.request(
                method, path, headers=headers, timeout=self.timeout, **kwargs
            )
        except httpx.HTTPError as e:
            raise SearchEngineError(f"{method} {path} failed: {e}") from e

        if not response.is_success:
            raise SearchEngineError(
                f"{method} {path} returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    # ------------------------------------------------------------------
    # Cluster / collection metadata
    # ------------------------------------------------------------------

    def health(self) -> bool:
        body = self._request("GET", "/health").json()
        return isinstance(body, dict) and body.get("ok") is True

    def retrieve_collection(self) -> Optional[Dict[str, Any]]:
        """Return the collection schema, or None if the collection does not exist."""
        try:
            return self._request("GET", self._collection_path).json()
        except SearchEngineError as e:
            if e.status_code == 404:
                return None
            raise

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def import_documents(
        self,
        documents: Iterable[Dict[str, Any]],
        action: str = "upsert",
    ) -> List[Dict[str, Any]]:
        """
        Bulk import documents with the given action.

        Returns:
            One result per document, in request order: ``{"success": bool,
            "error"?: str, "code"?: int}``
        """
        docs = list(documents)
        if not docs:
            return []

        body = "\n".join(json.dumps(doc, ensure_ascii=False) for doc in docs)
        response = self._request(
            "POST",
            f"{self._collection_path}/documents/import",
            params={"action": action},
            content=body.encode("utf-8"),
            headers={"Content-Type": "text/plain"},
        )

        try:
            results = _parse_json_lines(response.text)
        except json.JSONDecodeError as e:
            raise SearchEngineError(f"unparseable import response: {e}") from e

        if len(results) != len(docs):
            raise SearchEngineError(
                f"import returned {len(results)} results for {len(docs)} documents"
            )
        return results

    def search(self, params: Dict[str, Any]) -> Dict[str, Any]:
        query = {"q": "*", "query_by": QUERY_BY_FIELDS, **params}
        return self._request(
            "GET", f"{self._collection_path}/documents/search", params=query
        ).json()

    def count_by_id(self, doc_id: str) -> int:
        result = self.search({"q": "*", "filter_by": id_filter(doc_id), "per_page": 1})
        return int(result.get("found") or 0)

    def delete_document(self, doc_id: str) -> None:
        self._request("DELETE", f"{self._collection_path}/documents/{doc_id}")

    def export_documents(self) -> List[Dict[str, Any]]:
        response = self._request("GET", f"{self._collection_path}/documents/export")
        return _parse_json_lines(response.text)
