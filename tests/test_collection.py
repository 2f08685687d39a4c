import pytest

from copyguard.errors import FetchError


def test_add_and_fetch(collection):
    record = collection.add("cat.png", b"bytes", "image/png")

    assert record.id in collection
    assert len(collection) == 1
    assert collection.fetch(record.id).data == b"bytes"
    assert collection.fetch(record.id).mime_type == "image/png"
    assert record.needs_indexing and not record.indexing


def test_duplicate_id_rejected(collection):
    collection.add("a.png", b"a", "image/png", image_id="fixed")
    with pytest.raises(ValueError):
        collection.add("b.png", b"b", "image/png", image_id="fixed")


def test_records_keep_upload_order(collection):
    ids = [collection.add(f"{i}.png", b"x", "image/png").id for i in range(5)]
    collection.remove(ids[2])
    assert [r.id for r in collection.records()] == ids[:2] + ids[3:]


def test_fetch_missing_raises(collection):
    record = collection.add("gone.png", b"x", "image/png")
    collection.remove(record.id)

    with pytest.raises(FetchError):
        collection.fetch(record.id)
    assert collection.remove(record.id) is False


def test_indexing_flag_excludes_from_pending(collection):
    record = collection.add("a.png", b"x", "image/png")

    assert collection.begin_indexing(record.id).indexing
    assert collection.pending() == []
    assert collection.begin_indexing(record.id) is None

    collection.finish_indexing(record.id)
    assert [r.id for r in collection.pending()] == [record.id]


def test_fields_are_populated_at_most_once(collection):
    record = collection.add("a.png", b"x", "image/png")
    collection.begin_indexing(record.id)
    collection.finish_indexing(record.id, fingerprint="0" * 64, embedding=[1.0], description="first")

    collection.begin_indexing(record.id)
    updated = collection.finish_indexing(record.id, fingerprint="1" * 64, embedding=[2.0], description="second")

    assert updated.fingerprint == "0" * 64
    assert updated.embedding == [1.0]
    assert updated.description == "first"
    assert not updated.needs_indexing


def test_partial_indexing_stays_pending(collection):
    record = collection.add("a.png", b"x", "image/png")
    collection.begin_indexing(record.id)
    collection.finish_indexing(record.id, fingerprint="0" * 64)

    assert [r.id for r in collection.pending()] == [record.id]


def test_finish_after_remove_returns_none(collection):
    record = collection.add("a.png", b"x", "image/png")
    collection.begin_indexing(record.id)
    collection.remove(record.id)

    assert collection.finish_indexing(record.id, fingerprint="0" * 64) is None


def test_stats(collection):
    a = collection.add("a.png", b"x", "image/png")
    collection.add("b.png", b"x", "image/png")
    collection.finish_indexing(a.id, fingerprint="0" * 64, embedding=[1.0])

    assert collection.stats() == {"total": 2, "fingerprinted": 1, "embedded": 1, "indexing": 0}


def test_embedding_is_not_serialized(collection):
    record = collection.add("a.png", b"x", "image/png")
    collection.finish_indexing(record.id, embedding=[0.5, 0.5])

    dumped = collection.get(record.id).model_dump()
    assert "embedding" not in dumped
    assert dumped["has_embedding"] is True
