# tests/test_uploader.py

import pytest

from src.catalog_indexer.samples import ErrorSampleStore
from src.catalog_indexer.uploader import BatchUploader, chunked


def docs(*ids):
    return [{"id": str(i), "title": f"Doc {i}"} for i in ids]


def test_chunked_splits_in_order():
    assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
    assert list(chunked([], 3)) == []


def test_chunked_rejects_non_positive_size():
    with pytest.raises(ValueError):
        list(chunked([1], 0))


def test_mid_batch_document_failure(engine, search_client, tmp_path):
    """One rejected document is counted and sampled; its siblings still index."""
    engine.scripted_results.append(
        [{"success": True}, {"success": False, "error": "field X bad", "code": 400}, {"success": True}]
    )
    samples = ErrorSampleStore(tmp_path / "samples.json")
    uploader = BatchUploader(search_client, samples=samples, batch_size=3)

    outcome = uploader.upload_batch(docs(1, 2, 3))

    assert outcome.indexed == 2
    assert outcome.failed == 1
    assert outcome.outcomes == [True, False, True]
    assert outcome.transport_error is None
    assert set(engine.documents) == {"1", "3"}

    assert len(samples) == 1
    sample = samples.samples[0]
    assert sample.phase == "indexing"
    assert sample.error == "field X bad"
    assert sample.product_id == "2"
    assert sample.context == {"code": 400}


def test_transport_failure_fails_whole_batch(engine, search_client, tmp_path):
    engine.fail_imports = 1
    samples = ErrorSampleStore(tmp_path / "samples.json")
    uploader = BatchUploader(search_client, samples=samples)

    outcome = uploader.upload_batch(docs(1, 2, 3, 4))

    assert outcome.indexed == 0
    assert outcome.failed == 4
    assert outcome.outcomes == []
    assert outcome.transport_error is not None
    assert outcome.errors[0]["phase"] == "batch_processing"
    assert len(samples) == 1
    assert samples.samples[0].phase == "batch_processing"


def test_upload_batches_by_size(engine, search_client):
    uploader = BatchUploader(search_client, batch_size=2)

    outcome = uploader.upload(docs(1, 2, 3, 4, 5))

    assert [len(call) for call in engine.import_calls] == [2, 2, 1]
    assert outcome.indexed == 5
    assert len(outcome.outcomes) == 5


def test_upsert_twice_keeps_one_document_per_id(engine, search_client):
    uploader = BatchUploader(search_client)

    uploader.upload_batch(docs(1, 2))
    uploader.upload_batch([{"id": "1", "title": "Updated"}, {"id": "2", "title": "Doc 2"}])

    assert len(engine.documents) == 2
    assert engine.documents["1"]["title"] == "Updated"


def test_dry_run_needs_no_client_and_counts_everything_indexed():
    uploader = BatchUploader(None, dry_run=True)

    outcome = uploader.upload_batch(docs(1, 2, 3))

    assert outcome.indexed == 3
    assert outcome.failed == 0


def test_client_required_outside_dry_run():
    with pytest.raises(ValueError):
        BatchUploader(None)
