# tests/test_validate_documents.py

"""
Tests for the exported index document validator.
"""

import json
from datetime import datetime, timezone

import pytest

from src.catalog_indexer.scripts.validate_documents import (
    find_duplicate_ids,
    load_documents,
    main as validate_main,
    validate_document,
)
from src.catalog_indexer.transformers import to_index_document


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------


def make_valid_document(make_product, pid=1, **fields):
    doc = to_index_document(make_product(pid), now=datetime(2024, 5, 1, tzinfo=timezone.utc))
    doc.update(fields)
    return doc


def write_jsonl(path, docs):
    path.write_text("\n".join(json.dumps(d) for d in docs), encoding="utf-8")
    return path


# -------------------------------------------------------------------
# validate_document
# -------------------------------------------------------------------


def test_transformer_output_is_valid(make_product):
    errors, warnings = validate_document(make_valid_document(make_product), 0)

    assert errors == []
    assert warnings == []


@pytest.mark.parametrize(
    "fields, fragment",
    [
        ({"id": 5}, "'id' should be a string"),
        ({"id": ""}, "'id' is empty"),
        ({"relevance_score": 120}, "outside [0, 100]"),
        ({"relevance_score": float("nan")}, "not a finite number"),
        ({"warranties": [{"term": "1y"}]}, "'warranties' should be an object or null"),
        ({"pictures": {"source": "a.jpg"}}, "'pictures' should be a list"),
        ({"pricing": []}, "'pricing' should be an object"),
        ({"title_seo": "x" * 101}, "'title_seo' has 101 chars"),
    ],
)
def test_invalid_fields_are_reported(make_product, fields, fragment):
    errors, _ = validate_document(make_valid_document(make_product, **fields), 3)

    assert any(fragment in e for e in errors), errors
    assert all(e.startswith("[idx=3]") for e in errors)


def test_broken_category_chain_is_reported(make_product):
    doc = make_valid_document(
        make_product,
        hierarchical_category={"lvl0": "hogar", "lvl1": "jardin > palas", "lvl2": "jardin > palas"},
    )

    errors, _ = validate_document(doc, 0)

    assert any("lvl1" in e and "does not extend" in e for e in errors)


def test_uppercase_category_is_reported(make_product):
    doc = make_valid_document(
        make_product,
        hierarchical_category={"lvl0": "Hogar", "lvl1": "Hogar", "lvl2": "Hogar"},
    )

    errors, _ = validate_document(doc, 0)

    assert any("lowercase" in e for e in errors)


def test_missing_category_is_a_warning(make_product):
    doc = to_index_document({"id": 1, "title": "A"})

    errors, warnings = validate_document(doc, 0)

    assert errors == []
    assert any("no category" in w for w in warnings)


def test_duplicate_ids_are_found():
    assert find_duplicate_ids([{"id": "1"}, {"id": "2"}, {"id": "1"}, {"id": "1"}]) == ["1"]


# -------------------------------------------------------------------
# load_documents / main
# -------------------------------------------------------------------


def test_load_documents_json_array_and_jsonl(tmp_path):
    array_path = tmp_path / "docs.json"
    array_path.write_text(json.dumps([{"id": "1"}, {"id": "2"}]), encoding="utf-8")
    jsonl_path = write_jsonl(tmp_path / "docs.jsonl", [{"id": "1"}, {"id": "2"}])

    assert load_documents(array_path) == [{"id": "1"}, {"id": "2"}]
    assert load_documents(jsonl_path) == [{"id": "1"}, {"id": "2"}]


def test_load_documents_rejects_bad_lines(tmp_path):
    path = tmp_path / "bad.jsonl"
    path.write_text('{"id": "1"}\n{oops\n', encoding="utf-8")

    with pytest.raises(ValueError, match="line 2"):
        load_documents(path)


def test_main_passes_on_valid_export(make_product, tmp_path, capsys):
    path = write_jsonl(tmp_path / "export.jsonl", [make_valid_document(make_product, i) for i in (1, 2)])

    with pytest.raises(SystemExit) as exc_info:
        validate_main(["--path", str(path)])

    assert exc_info.value.code == 0
    assert "VALIDATION PASSED" in capsys.readouterr().out


def test_main_fails_on_duplicate_ids(make_product, tmp_path, capsys):
    doc = make_valid_document(make_product, 1)
    path = write_jsonl(tmp_path / "export.jsonl", [doc, doc])

    with pytest.raises(SystemExit) as exc_info:
        validate_main(["--path", str(path)])

    assert exc_info.value.code == 1
    assert "duplicate id '1'" in capsys.readouterr().out


def test_main_fails_on_missing_file(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc_info:
        validate_main(["--path", str(tmp_path / "missing.json")])

    assert exc_info.value.code == 1
    assert "FAILED TO LOAD FILE" in capsys.readouterr().out


def test_indexed_collection_export_validates(make_run, make_upstream, make_product, search_client, tmp_path, capsys):
    pages = {1: [make_product(1), make_product(2)], 2: [make_product(3)]}
    make_run(make_upstream(pages), batch_size=2).execute()

    exported = search_client.export_documents()
    path = write_jsonl(tmp_path / "export.jsonl", exported)

    with pytest.raises(SystemExit) as exc_info:
        validate_main(["--path", str(path)])

    assert sorted(d["id"] for d in exported) == ["1", "2", "3"]
    assert exc_info.value.code == 0
    assert "VALIDATION PASSED" in capsys.readouterr().out
