"""
Test cases for the in-memory vector record store.
"""

from datetime import datetime

import numpy as np
import pytest

from kb_retrieval.core.errors import CapacityError, ValidationError
from kb_retrieval.vector.index import BruteForceIndex
from kb_retrieval.vector.record_store import IVectorStore, VectorRecordStore
from kb_retrieval.vector.types import DocumentMetadata, SearchFilters, SearchQuery, VectorDocument

DIM = 4


def make_doc(id, vector, audience=None, category="general", content=None):
    return VectorDocument(
        id=id,
        embedding=np.asarray(vector, dtype=np.float32),
        content=content or f"content for {id}",
        metadata=DocumentMetadata(category=category, audience=audience or [], timestamp=datetime(2024, 1, 1)),
    )


@pytest.fixture
def store():
    return VectorRecordStore(DIM, index=BruteForceIndex(DIM, max_elements=100))


def test_store_implements_interface(store):
    assert isinstance(store, IVectorStore)


def test_self_similarity_round_trip(store):
    """A document searched with its own embedding comes back first with score ~1."""
    store.upsert_batch([
        make_doc("a", [1.0, 0.2, 0.0, 0.0]),
        make_doc("b", [0.0, 1.0, 0.3, 0.0]),
        make_doc("c", [0.1, 0.0, 0.0, 1.0]),
    ])

    results = store.search(SearchQuery(embedding=np.array([0.0, 1.0, 0.3, 0.0]), top_k=2))

    assert results[0].document.id == "b"
    assert results[0].score == pytest.approx(1.0, abs=1e-6)
    assert results[0].distance == pytest.approx(0.0, abs=1e-6)


def test_upsert_is_idempotent(store):
    store.upsert(make_doc("a", [1.0, 0.0, 0.0, 0.0]))
    assert store.count() == 1

    store.upsert(make_doc("a", [1.0, 0.0, 0.0, 0.0]))

    assert store.count() == 1
    assert store.index.size == 1


def test_upsert_last_write_wins(store):
    store.upsert(make_doc("a", [1.0, 0.0, 0.0, 0.0], content="old"))
    store.upsert(make_doc("a", [0.0, 1.0, 0.0, 0.0], content="new"))

    assert store.count() == 1
    assert store.get("a").content == "new"
    # The replaced vector is tombstoned, not reused
    assert store.index.tombstone_count == 1
    results = store.search(SearchQuery(embedding=np.array([1.0, 0.0, 0.0, 0.0]), top_k=5))
    assert [r.document.id for r in results] == ["a"]
    assert results[0].score == pytest.approx(0.0, abs=1e-6)


def test_upsert_rejects_invalid_embedding(store):
    with pytest.raises(ValidationError):
        store.upsert(make_doc("bad", [1.0, 0.0, 0.0]))
    with pytest.raises(ValidationError):
        store.upsert(make_doc("nan", [1.0, float("nan"), 0.0, 0.0]))
    assert store.count() == 0


def test_batch_partial_success(store):
    """One malformed item is reported; the rest persist."""
    result = store.upsert_batch([
        make_doc("a", [1.0, 0.0, 0.0, 0.0]),
        make_doc("bad", [0.0, 0.0, 0.0, 0.0]),
        make_doc("c", [0.0, 0.0, 1.0, 0.0]),
    ])

    assert not result.success
    assert result.processed_count == 2
    assert result.failed_count == 1
    assert result.errors[0]["id"] == "bad"
    assert "all zeros" in result.errors[0]["error"]
    assert "a" in store and "c" in store and "bad" not in store


def test_batch_exceeding_capacity_persists_nothing():
    store = VectorRecordStore(DIM, index=BruteForceIndex(DIM, max_elements=2))
    with pytest.raises(CapacityError):
        store.upsert_batch([
            make_doc("a", [1.0, 0.0, 0.0, 0.0]),
            make_doc("b", [0.0, 1.0, 0.0, 0.0]),
            make_doc("c", [0.0, 0.0, 1.0, 0.0]),
        ])
    assert store.count() == 0
    assert store.index.size == 0


def test_delete_is_idempotent(store):
    store.upsert(make_doc("a", [1.0, 0.0, 0.0, 0.0]))
    store.delete("a")
    store.delete("a")
    store.delete("never-existed")

    assert store.count() == 0
    assert store.get("a") is None
    assert store.search(SearchQuery(embedding=np.array([1.0, 0.0, 0.0, 0.0]), top_k=1)) == []


def test_delete_batch(store):
    store.upsert_batch([make_doc("a", [1.0, 0.0, 0.0, 0.0]), make_doc("b", [0.0, 1.0, 0.0, 0.0])])
    result = store.delete_batch(["a", "b", "missing"])
    assert result.success
    assert store.count() == 0


def test_filtered_search_excludes_other_audience(store):
    store.upsert_batch([
        make_doc("guardians", [1.0, 0.0, 0.0, 0.0], audience=["guardians"]),
        make_doc("donors", [0.9, 0.1, 0.0, 0.0], audience=["donors"]),
        make_doc("everyone", [0.8, 0.2, 0.0, 0.0], audience=["all"]),
    ])

    results = store.search(SearchQuery(
        embedding=np.array([1.0, 0.0, 0.0, 0.0]),
        top_k=3,
        filters=SearchFilters(audience=["donors"]),
    ))

    assert {r.document.id for r in results} == {"donors", "everyone"}


def test_filtered_search_expands_candidate_pool(store):
    """Matches ranked far below the overfetched window are still found."""
    docs = [make_doc(f"n{i}", [1.0, 0.01 * i, 0.0, 0.0], category="noise") for i in range(20)]
    docs.append(make_doc("target", [0.0, 0.0, 1.0, 0.0], category="wanted"))
    store.upsert_batch(docs)

    results = store.search(SearchQuery(
        embedding=np.array([1.0, 0.0, 0.0, 0.0]),
        top_k=1,
        filters=SearchFilters(category="wanted"),
    ))

    assert [r.document.id for r in results] == ["target"]


def test_min_score_cut_off(store):
    store.upsert_batch([make_doc("close", [1.0, 0.1, 0.0, 0.0]), make_doc("far", [0.0, 1.0, 0.0, 0.0])])
    results = store.search(SearchQuery(embedding=np.array([1.0, 0.0, 0.0, 0.0]), top_k=5, min_score=0.5))
    assert [r.document.id for r in results] == ["close"]


def test_search_rejects_invalid_query(store):
    store.upsert(make_doc("a", [1.0, 0.0, 0.0, 0.0]))
    with pytest.raises(ValidationError):
        store.search(SearchQuery(embedding=np.array([1.0, 0.0]), top_k=1))


def test_count_with_filters(store):
    store.upsert_batch([
        make_doc("a", [1.0, 0.0, 0.0, 0.0], category="adoption"),
        make_doc("b", [0.0, 1.0, 0.0, 0.0], category="events"),
    ])
    assert store.count(SearchFilters(category="adoption")) == 1
    assert store.count() == 2


def test_tombstone_compaction_policy():
    store = VectorRecordStore(DIM, index=BruteForceIndex(DIM), rebuild_ratio=0.5, rebuild_min=2)
    store.upsert_batch([make_doc(f"d{i}", [1.0, float(i), 0.0, 0.0]) for i in range(4)])

    store.delete("d0")
    assert store.index.tombstone_count == 1

    store.delete("d1")
    assert store.index.tombstone_count == 0
    assert store.index.size == 2


def test_clear_resets_everything(store):
    store.upsert(make_doc("a", [1.0, 0.0, 0.0, 0.0]))
    store.clear()
    assert store.count() == 0
    assert store.index.size == 0
    store.upsert(make_doc("a", [1.0, 0.0, 0.0, 0.0]))
    assert store.stats()["next_handle"] == 2


def test_dimension_mismatch_with_index():
    with pytest.raises(ValueError):
        VectorRecordStore(DIM, index=BruteForceIndex(8))


def test_large_components_keep_self_similarity(store):
    """Large but representable components are normalized without overflow."""
    store.upsert_batch([
        make_doc("big", [1e20, 1e20, 0.0, 0.0]),
        make_doc("other", [0.0, 0.0, 1.0, 0.0]),
    ])

    results = store.search(SearchQuery(embedding=np.array([1.0, 1.0, 0.0, 0.0]), top_k=2))

    assert results[0].document.id == "big"
    assert results[0].score == pytest.approx(1.0, abs=1e-6)
    assert np.all(np.isfinite(store.index.get_vector(store._handles["big"])))


def test_out_of_range_components_are_rejected(store):
    with pytest.raises(ValidationError):
        store.upsert(make_doc("huge", [1e39, 1.0, 0.0, 0.0]))
    result = store.upsert_batch([make_doc("huge", [1e39, 1.0, 0.0, 0.0])])
    assert result.failed_count == 1
    assert store.count() == 0
