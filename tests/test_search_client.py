# tests/test_search_client.py

import json

import httpx
import pytest

from src.catalog_indexer.errors import SearchEngineError
from src.catalog_indexer.search_client import SearchClient, _parse_json_lines


def client_for(handler) -> SearchClient:
    http = httpx.Client(base_url="http://engine.test", transport=httpx.MockTransport(handler))
    return SearchClient("http://engine.test", "secret", "products", client=http)


def test_import_sends_ndjson_upsert_with_api_key():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["request"] = request
        return httpx.Response(200, text='{"success": true}\n{"success": false, "error": "bad", "code": 400}')

    results = client_for(handler).import_documents([{"id": "1"}, {"id": "2"}])

    request = captured["request"]
    assert request.method == "POST"
    assert request.url.path == "/collections/products/documents/import"
    assert request.url.params["action"] == "upsert"
    assert request.headers["X-TYPESENSE-API-KEY"] == "secret"
    lines = request.content.decode("utf-8").splitlines()
    assert [json.loads(line)["id"] for line in lines] == ["1", "2"]
    assert results == [{"success": True}, {"success": False, "error": "bad", "code": 400}]


def test_import_accepts_json_array_response():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"success": True}])

    assert client_for(handler).import_documents([{"id": "1"}]) == [{"success": True}]


def test_import_result_count_mismatch_is_an_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text='{"success": true}')

    with pytest.raises(SearchEngineError, match="1 results for 2 documents"):
        client_for(handler).import_documents([{"id": "1"}, {"id": "2"}])


def test_import_of_nothing_makes_no_request():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    assert client_for(handler).import_documents([]) == []


def test_non_2xx_raises_with_status_code():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="overloaded")

    with pytest.raises(SearchEngineError) as exc_info:
        client_for(handler).import_documents([{"id": "1"}])

    assert exc_info.value.status_code == 503


def test_transport_error_raises_search_engine_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(SearchEngineError):
        client_for(handler).health()


def test_health_and_missing_collection():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/health":
            return httpx.Response(200, json={"ok": True})
        return httpx.Response(404, json={"message": "Not Found"})

    client = client_for(handler)

    assert client.health() is True
    assert client.retrieve_collection() is None


def test_count_by_id_filters_on_primary_key():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        return httpx.Response(200, json={"found": 1, "hits": []})

    assert client_for(handler).count_by_id("abc") == 1
    assert seen["filter_by"] == "id:=`abc`"
    assert seen["q"] == "*"


def test_count_by_id_keeps_filter_operators_inside_the_literal(engine, search_client):
    engine.documents = {
        "a-b && c": {"id": "a-b && c", "title": "Odd id"},
        "other": {"id": "other", "title": "Other"},
    }

    assert search_client.count_by_id("a-b && c") == 1
    assert search_client.count_by_id("a-b") == 0
    assert engine.requests[-1].url.params["filter_by"] == "id:=`a-b`"


def test_parse_json_lines_handles_blank_lines():
    assert _parse_json_lines('{"a": 1}\n\n{"a": 2}\n') == [{"a": 1}, {"a": 2}]
    assert _parse_json_lines("   ") == []
