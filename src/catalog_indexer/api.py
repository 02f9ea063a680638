"""Algolia-compatible search endpoint backed by the Typesense collection.

Run locally with ``python -m src.catalog_indexer.api``.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import Body, FastAPI
from fastapi.responses import JSONResponse

from .algolia import empty_response, parse_params, to_protocol_response, to_search_params
from .config import Settings
from .errors import SearchEngineError
from .search_client import SearchClient

logger = logging.getLogger(__name__)


def _run_query(client: SearchClient, request: Any) -> Dict[str, Any]:
    request = request if isinstance(request, dict) else {}
    index_name = request.get("indexName") or client.collection_name
    query = parse_params(request.get("params"))
    try:
        result = client.search(to_search_params(query))
    except Exception:
        logger.exception("Search request for index %s failed", index_name)
        return empty_response(query, index_name)
    return to_protocol_response(result, query, index_name)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield

    # --- Shutdown ---
    if app.state.search_client is not None:
        app.state.search_client.close()


def create_app(search_client: Optional[SearchClient] = None) -> FastAPI:
    app = FastAPI(title="Catalog Search (Algolia-compatible)", lifespan=lifespan)
    app.state.search_client = search_client

    def get_client() -> SearchClient:
        if app.state.search_client is None:
            settings = Settings.from_env()
            app.state.search_client = SearchClient(
                settings.typesense_url, settings.typesense_api_key, settings.collection_name
            )
        return app.state.search_client

    @app.get("/health")
    def health():
        try:
            healthy = get_client().health()
        except SearchEngineError as e:
            logger.warning("Search engine health check failed: %s", e)
            healthy = False
        if not healthy:
            return JSONResponse(status_code=503, content={"status": "unhealthy", "engine": False})
        return {"status": "ok", "engine": True}

    @app.post("/1/indexes/*/queries")
    def multi_query(body: Dict[str, Any] = Body(...)):
        requests = body.get("requests")
        if not isinstance(requests, list):
            return JSONResponse(
                status_code=400, content={"message": "requests must be an array", "status": 400}
            )
        client = get_client()
        return {"results": [_run_query(client, r) for r in requests]}

    @app.post("/1/indexes/{index_name}/query")
    def single_query(index_name: str, body: Dict[str, Any] = Body(default={})):
        return _run_query(get_client(), {"indexName": index_name, "params": body.get("params")})

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "src.catalog_indexer.api:app",
        host=os.getenv("API_HOST", "127.0.0.1"),
        port=int(os.getenv("API_PORT", "8000")),
    )
