# tests/test_samples.py

import json

from src.catalog_indexer.samples import ErrorSampleStore


def test_disabled_store_records_nothing(tmp_path):
    store = ErrorSampleStore(tmp_path / "samples.json", enabled=False)

    store.record({"id": 1}, "boom", "transformation")

    assert len(store) == 0
    assert store.flush() is None
    assert not (tmp_path / "samples.json").exists()


def test_sample_projection_is_bounded(tmp_path):
    store = ErrorSampleStore(tmp_path / "samples.json")
    product = {
        "id": 9,
        "title": "x" * 500,
        "brand": "Acme",
        "pricing": {"sales_price": 10},
        "categories": [],
        "description": "not copied",
    }

    store.record(product, ValueError("bad price"), "indexing", {"code": 400})

    sample = store.samples[0]
    assert sample.product_id == "9"
    assert len(sample.product_title) == 100
    assert sample.error == "bad price"
    assert sample.context == {"code": 400}
    assert set(sample.product_sample) == {"id", "title", "brand", "pricing", "categories"}
    assert len(sample.product_sample["title"]) == 100


def test_flushes_every_ten_samples(tmp_path):
    path = tmp_path / "samples.json"
    store = ErrorSampleStore(path)

    for i in range(9):
        store.record({"id": i}, "err", "transformation")
    assert not path.exists()

    store.record({"id": 9}, "err", "transformation")
    assert len(json.loads(path.read_text(encoding="utf-8"))) == 10

    store.record({"id": 10}, "err", "transformation")
    store.flush()
    assert len(json.loads(path.read_text(encoding="utf-8"))) == 11


def test_non_object_product_is_sampled(tmp_path):
    store = ErrorSampleStore(tmp_path / "samples.json")

    store.record("junk", "not an object", "transformation")

    assert store.samples[0].product_id == "unknown"
    assert store.samples[0].product_sample == {"raw": "'junk'"}
