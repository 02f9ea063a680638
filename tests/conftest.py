# tests/conftest.py

"""
Shared fakes for the indexer tests.

Both external services are replaced with in-memory fakes served through
``httpx.MockTransport``: a Typesense-like engine that honours upsert-by-id,
and a paginated upstream product API.
"""

import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import unquote

import httpx
import pytest

from src.catalog_indexer.config import IndexerOptions
from src.catalog_indexer.fetcher import ProductFetcher
from src.catalog_indexer.pipeline import IndexerRun, build_run_paths
from src.catalog_indexer.search_client import SearchClient

ENGINE_URL = "http://engine.test"
UPSTREAM_URL = "http://upstream.test/products/v1/products/"

DEFAULT_SCHEMA_FIELDS = [
    {"name": "id", "type": "string"},
    {"name": ".*", "type": "auto"},
]


class FakeTypesense:
    """In-memory engine keyed by document id (upsert replaces in place)."""

    def __init__(self, collection: str = "products"):
        self.collection = collection
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.healthy = True
        self.schema_fields: Optional[List[Dict[str, Any]]] = list(DEFAULT_SCHEMA_FIELDS)
        self.reject_ids: Dict[str, str] = {}
        self.scripted_results: List[List[Dict[str, Any]]] = []
        self.fail_imports = 0
        self.import_calls: List[List[Dict[str, Any]]] = []
        self.on_import: Optional[Callable[[int], None]] = None
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        base = f"/collections/{self.collection}"

        if path == "/health":
            return httpx.Response(200, json={"ok": self.healthy})

        if path == base and request.method == "GET":
            if self.schema_fields is None:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(
                200,
                json={
                    "name": self.collection,
                    "num_documents": len(self.documents),
                    "fields": self.schema_fields,
                    "default_sorting_field": "relevance_score",
                },
            )

        if path == f"{base}/documents/import":
            return self._import(request)

        if path == f"{base}/documents/search":
            return self._search(request)

        if path == f"{base}/documents/export":
            body = "\n".join(json.dumps(d) for d in self.documents.values())
            return httpx.Response(200, text=body)

        if path.startswith(f"{base}/documents/") and request.method == "DELETE":
            doc_id = unquote(path.rsplit("/", 1)[-1])
            doc = self.documents.pop(doc_id, None)
            if doc is None:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json=doc)

        return httpx.Response(404, json={"message": f"unexpected {request.method} {path}"})

    def _import(self, request: httpx.Request) -> httpx.Response:
        assert request.url.params.get("action") == "upsert"
        docs = [json.loads(line) for line in request.content.decode("utf-8").splitlines() if line]
        self.import_calls.append(docs)

        if self.on_import is not None:
            self.on_import(len(self.import_calls))

        if self.fail_imports > 0:
            self.fail_imports -= 1
            return httpx.Response(503, text="Service Unavailable")

        if self.scripted_results:
            results = self.scripted_results.pop(0)
            for doc, result in zip(docs, results):
                if result.get("success"):
                    self.documents[doc["id"]] = doc
        else:
            results = []
            for doc in docs:
                if doc["id"] in self.reject_ids:
                    results.append({"success": False, "error": self.reject_ids[doc["id"]], "code": 400})
                else:
                    self.documents[doc["id"]] = doc
                    results.append({"success": True})

        return httpx.Response(200, text="\n".join(json.dumps(r) for r in results))

    def _search(self, request: httpx.Request) -> httpx.Response:
        filter_by = request.url.params.get("filter_by", "")
        if filter_by.startswith("id:="):
            doc = self.documents.get(filter_by[len("id:="):].strip("`"))
            docs = [doc] if doc else []
        else:
            docs = list(self.documents.values())
        return httpx.Response(
            200,
            json={
                "found": len(docs),
                "hits": [{"document": d, "highlights": []} for d in docs],
                "page": int(request.url.params.get("page", 1)),
                "search_time_ms": 1,
            },
        )


def build_product(pid: Any, **fields: Any) -> Dict[str, Any]:
    product = {
        "id": pid,
        "title": f"Product {pid}",
        "brand": "Acme",
        "stock": 3,
        "is_active": True,
        "pricing": {"list_price": 200, "sales_price": 150, "percentage_discount": 25},
        "categories": [[
            {"id": 1, "name": "Hogar", "level": 2},
            {"id": 2, "name": "Cocina", "level": 1},
            {"id": 3, "name": "Sartenes", "level": 0},
        ]],
    }
    product.update(fields)
    return product


class FakeUpstream:
    """Paginated product API: ``pages[n]`` is the product list of page n."""

    def __init__(self, pages: Dict[int, List[Any]], with_pagination: bool = True):
        self.pages = pages
        self.with_pagination = with_pagination
        self.failing_pages: Dict[int, int] = {}
        self.requested_pages: List[int] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        self.requested_pages.append(page)

        remaining = self.failing_pages.get(page, 0)
        if remaining:
            if remaining > 0:
                self.failing_pages[page] = remaining - 1
            return httpx.Response(500, text="Internal Server Error")

        products = self.pages.get(page, [])
        body: Dict[str, Any] = {"metadata": {"is_error": False}, "data": products}
        if self.with_pagination:
            body["pagination"] = {
                "pageCount": max(self.pages) if self.pages else 0,
                "totalItemCount": sum(len(p) for p in self.pages.values()),
            }
        return httpx.Response(200, json=body)


@pytest.fixture
def engine() -> FakeTypesense:
    return FakeTypesense()


@pytest.fixture
def search_client(engine: FakeTypesense) -> SearchClient:
    http = httpx.Client(base_url=ENGINE_URL, transport=httpx.MockTransport(engine))
    return SearchClient(ENGINE_URL, "test-key", "products", client=http)


@pytest.fixture
def make_fetcher():
    def _make(upstream: Callable[[httpx.Request], httpx.Response], sleep=None, **kwargs) -> ProductFetcher:
        http = httpx.Client(transport=httpx.MockTransport(upstream))
        return ProductFetcher(
            UPSTREAM_URL,
            page_size=kwargs.pop("page_size", 10),
            client=http,
            sleep=sleep or (lambda seconds: None),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_run(tmp_path: Path, search_client: SearchClient, make_fetcher):
    """Build an IndexerRun wired to the fakes, with every pause recorded instead of slept."""

    def _make(upstream: FakeUpstream, timestamp: str = "test", **options: Any) -> IndexerRun:
        paths = build_run_paths(tmp_path / "logs", "products", timestamp)
        sleeps: List[float] = []
        run = IndexerRun(
            IndexerOptions(**options),
            make_fetcher(upstream),
            None if options.get("dry_run") else search_client,
            paths,
            collection_name="products",
            sleep=sleeps.append,
        )
        run.sleeps = sleeps
        return run

    return _make


@pytest.fixture
def make_product():
    return build_product


@pytest.fixture
def make_upstream():
    return FakeUpstream
