from copyguard.core.selector import rank_candidates, score_record, select_candidates
from conftest import add_indexed

FP_A = "0" * 64
FP_B = "1" * 64


def test_unindexed_collection_keeps_upload_order(collection):
    records = [collection.add(f"r{i}.png", b"x", "image/png") for i in range(4)]

    candidates = select_candidates(None, None, collection.records(), max_candidates=5)

    assert [c.record.id for c in candidates] == [r.id for r in records]
    assert all(c.vector_similarity == 0 and not c.fingerprint_match for c in candidates)


def test_cap_truncates(collection):
    for i in range(7):
        collection.add(f"r{i}.png", b"x", "image/png")

    assert len(select_candidates(None, None, collection.records(), max_candidates=5)) == 5
    assert len(select_candidates(None, None, collection.records()[:2], max_candidates=5)) == 2


def test_fingerprint_match_outranks_similarity(collection):
    add_indexed(collection, "r1", fingerprint=FP_B, embedding=[1.0, 0.0])
    r2 = add_indexed(collection, "r2", fingerprint=FP_A, embedding=[0.0, 1.0])
    add_indexed(collection, "r3", fingerprint=FP_B, embedding=[0.9, 0.1])

    candidates = select_candidates(FP_A, [1.0, 0.0], collection.records())

    assert candidates[0].record.id == r2.id
    assert candidates[0].fingerprint_match
    assert candidates[0].fingerprint_distance == 0
    assert [c.record.name for c in candidates] == ["r2", "r1", "r3"]


def test_threshold_is_inclusive(collection):
    near = "1" * 8 + "0" * 56
    too_far = "1" * 9 + "0" * 55
    add_indexed(collection, "near", fingerprint=near)
    add_indexed(collection, "far", fingerprint=too_far)

    matches = {c.record.name: c.fingerprint_match for c in select_candidates(FP_A, None, collection.records())}
    assert matches == {"near": True, "far": False}


def test_length_mismatch_counts_as_unknown(collection):
    record = add_indexed(collection, "short", fingerprint="0" * 16)

    candidate = score_record(record, FP_A, None)

    assert candidate.fingerprint_distance is None
    assert not candidate.fingerprint_match


def test_ranking_is_stable_for_ties(collection):
    for name in ["a", "b", "c"]:
        add_indexed(collection, name, embedding=[1.0, 1.0])

    ranked = rank_candidates(score_record(r, None, [2.0, 2.0]) for r in collection.records())
    assert [c.record.name for c in ranked] == ["a", "b", "c"]


def test_similarity_orders_non_matches(collection):
    add_indexed(collection, "low", embedding=[0.0, 1.0])
    add_indexed(collection, "high", embedding=[1.0, 0.1])

    candidates = select_candidates(None, [1.0, 0.0], collection.records())
    assert [c.record.name for c in candidates] == ["high", "low"]
    assert candidates[0].vector_similarity > 0.99
