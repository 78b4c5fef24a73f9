"""
Unit tests for the local fallback vector store and its persistence log.
"""

import json
import threading
from unittest.mock import patch
import pytest

from vector_resilience.domain.errors import StoreCorruption, ValidationFailure
from vector_resilience.domain.models import Embedding
from vector_resilience.infrastructure.local.rwlock import ReadWriteLock
from vector_resilience.infrastructure.local.store import (
    LocalCollections,
    LocalVectorStore,
    cosine_similarity,
)


@pytest.fixture
def store():
    s = LocalVectorStore()
    s.upsert("x", [1.0, 0.0, 0.0], {"axis": "x"})
    s.upsert("y", [0.0, 1.0, 0.0], {"axis": "y"})
    s.upsert("xy", [1.0, 1.0, 0.0], {"axis": "xy"})
    return s


class TestSearch:
    """Test brute-force cosine search."""

    def test_results_sorted_by_similarity(self, store):
        hits = store.search([1.0, 0.2, 0.0], 3)
        assert [h.id for h in hits] == ["x", "xy", "y"]
        scores = [h.score for h in hits]
        assert scores == sorted(scores, reverse=True)
        assert hits[0].metadata == {"axis": "x"}

    @pytest.mark.parametrize("k,expected", [(1, 1), (2, 2), (3, 3), (10, 3)])
    def test_length_is_min_of_k_and_size(self, store, k, expected):
        assert len(store.search([0.3, 0.3, 0.3], k)) == expected

    def test_self_similarity_round_trip(self, store):
        """Test an upserted vector finds itself first with similarity 1."""
        v = [0.2, -0.7, 3.1]
        store.upsert("new", v, {})
        top = store.search(v, 1)[0]
        assert top.id == "new"
        assert top.score == pytest.approx(1.0)

    def test_ties_broken_by_insertion_order(self):
        s = LocalVectorStore()
        s.upsert("first", [2.0, 0.0])
        s.upsert("second", [1.0, 0.0])
        s.upsert("third", [5.0, 0.0])
        assert [h.id for h in s.search([1.0, 0.0], 3)] == ["first", "second", "third"]

    def test_upsert_replaces_in_place(self):
        s = LocalVectorStore()
        s.upsert("a", [1.0, 0.0])
        s.upsert("b", [1.0, 0.0])
        s.upsert("a", [1.0, 0.0], {"v": 2})
        assert len(s) == 2
        hits = s.search([1.0, 0.0], 2)
        assert [h.id for h in hits] == ["a", "b"]
        assert hits[0].metadata == {"v": 2}

    def test_accepts_embedding_objects(self, store):
        hits = store.search(Embedding.of([0.0, 1.0, 0.0]), 1)
        assert hits[0].id == "y"

    def test_dimension_mismatch_is_validation_failure(self, store):
        with pytest.raises(ValidationFailure, match="dimension"):
            store.search([1.0, 0.0], 1)

    def test_zero_norm_query_rejected(self, store):
        with pytest.raises(ValidationFailure, match="zero norm"):
            store.search([0.0, 0.0, 0.0], 1)

    @pytest.mark.parametrize("k", [0, -3])
    def test_non_positive_k_rejected(self, store, k):
        with pytest.raises(ValidationFailure):
            store.search([1.0, 0.0, 0.0], k)

    def test_empty_store_returns_nothing(self):
        assert LocalVectorStore().search([1.0], 5) == []

    def test_cosine_similarity_helper(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
        assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(-1.0)


class TestUpsertValidation:
    """Test invalid entries are rejected."""

    @pytest.mark.parametrize("vec", [[], [0.0, 0.0], [float("nan"), 1.0], [float("inf")], ["a", "b"]])
    def test_bad_vectors_rejected(self, vec):
        s = LocalVectorStore()
        with pytest.raises(ValidationFailure):
            s.upsert("bad", vec)
        assert len(s) == 0

    def test_empty_id_rejected(self):
        with pytest.raises(ValidationFailure):
            LocalVectorStore().upsert("", [1.0])

    def test_unserializable_metadata_rejected(self, tmp_path):
        s = LocalVectorStore(tmp_path / "v.jsonl")
        with pytest.raises(ValidationFailure):
            s.upsert("a", [1.0], {"obj": object()})
        assert "a" not in s

    def test_different_lengths_allowed_across_ids(self):
        s = LocalVectorStore()
        s.upsert("a", [1.0, 0.0])
        s.upsert("b", [1.0, 0.0, 0.0])
        assert len(s) == 2


class TestDeleteAndAccessors:
    def test_delete(self, store):
        assert store.delete("x") is True
        assert store.delete("x") is False
        assert "x" not in store
        assert store.ids() == ["y", "xy"]

    def test_get(self, store):
        assert store.get("y").metadata == {"axis": "y"}
        assert store.get("missing") is None


class TestPersistence:
    """Test the JSON Lines log: replay, corruption, compaction."""

    def test_reload_reproduces_state(self, tmp_path):
        path = tmp_path / "store.jsonl"
        s = LocalVectorStore(path)
        s.upsert("a", [1.0, 0.0], {"content": "alpha"})
        s.upsert("b", [0.0, 1.0], {"content": "beta"})
        s.upsert("a", [1.0, 0.1], {"content": "alpha v2"})
        s.delete("b")

        reloaded = LocalVectorStore(path)
        assert reloaded.ids() == ["a"]
        assert reloaded.get("a").metadata == {"content": "alpha v2"}
        assert reloaded.search([1.0, 0.1], 1)[0].score == pytest.approx(1.0)

    def test_one_record_per_mutation(self, tmp_path):
        path = tmp_path / "store.jsonl"
        s = LocalVectorStore(path)
        s.upsert("a", [1.0])
        s.upsert("b", [2.0])
        s.delete("a")
        records = [json.loads(line) for line in path.read_text().splitlines()]
        assert [r["op"] for r in records] == ["upsert", "upsert", "delete"]
        assert records[0] == {"op": "upsert", "id": "a", "embedding": [1.0], "metadata": {}}

    def test_missing_file_starts_empty(self, tmp_path):
        s = LocalVectorStore(tmp_path / "nested" / "store.jsonl")
        assert len(s) == 0
        s.upsert("a", [1.0])
        assert (tmp_path / "nested" / "store.jsonl").exists()

    @pytest.mark.parametrize("content", [
        '{"op": "upsert", "id": "a", "embedding": [1.0], "metadata": {}}\n{"op": "ups',
        '{"op": "upsert", "id": "a", "embedding": [1.0]}\nnot json\n',
        '{"op": "rename", "id": "a"}\n',
        '{"op": "upsert", "id": "a", "embedding": [0.0]}\n',
        '{"op": "upsert", "embedding": [1.0]}\n',
        '[1, 2, 3]\n',
    ])
    def test_corruption_is_fatal(self, tmp_path, content):
        path = tmp_path / "store.jsonl"
        path.write_text(content)
        with pytest.raises(StoreCorruption):
            LocalVectorStore(path)

    def test_failed_write_rolls_back_memory(self, tmp_path):
        s = LocalVectorStore(tmp_path / "store.jsonl")
        s.upsert("a", [1.0], {"v": 1})
        with patch("builtins.open", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                s.upsert("a", [2.0], {"v": 2})
            with pytest.raises(OSError):
                s.upsert("b", [1.0])
        assert s.get("a").metadata == {"v": 1}
        assert "b" not in s

    def test_memory_matches_log_after_caller_mutation(self, tmp_path):
        """Test mutating the caller payload or returned hits never changes stored metadata."""
        path = tmp_path / "store.jsonl"
        s = LocalVectorStore(path)
        payload = {"content": "alpha", "metadata": {"k": 1}}
        s.upsert("a", [1.0, 0.0], payload)
        payload["metadata"]["k"] = 2
        s.search([1.0, 0.0], 1)[0].metadata["metadata"]["k"] = 3
        s.get("a").metadata["metadata"]["k"] = 4

        in_memory = s.search([1.0, 0.0], 1)[0].metadata
        assert in_memory == {"content": "alpha", "metadata": {"k": 1}}
        assert LocalVectorStore(path).get("a").metadata == in_memory

    def test_metadata_normalized_as_on_reload(self, tmp_path):
        path = tmp_path / "store.jsonl"
        s = LocalVectorStore(path)
        s.upsert("a", [1.0], {"tags": ("x", "y"), "nested": {1: "one"}})
        expected = {"tags": ["x", "y"], "nested": {"1": "one"}}
        assert s.get("a").metadata == expected
        assert LocalVectorStore(path).get("a").metadata == expected

    def test_compact_keeps_live_entries_only(self, tmp_path):
        path = tmp_path / "store.jsonl"
        s = LocalVectorStore(path)
        for i in range(5):
            s.upsert("a", [1.0, float(i)])
        s.upsert("b", [0.0, 1.0])
        s.delete("b")
        s.compact()
        assert len(path.read_text().splitlines()) == 1
        assert LocalVectorStore(path).ids() == ["a"]


class TestLocalCollections:
    def test_one_store_per_collection(self, tmp_path):
        cols = LocalCollections(tmp_path)
        cols.get("docs").upsert("a", [1.0])
        assert cols.get("docs") is cols.get("docs")
        assert len(cols.get("other")) == 0
        assert (tmp_path / "docs.jsonl").exists()
        assert "docs" in cols.names()

    @pytest.mark.parametrize("name", ["", "../etc", ".hidden", "a/b"])
    def test_invalid_names(self, name):
        with pytest.raises(ValidationFailure):
            LocalCollections().get(name)


class TestReadWriteLock:
    """Test reader-shared, writer-exclusive locking."""

    def test_readers_share(self):
        lock = ReadWriteLock()
        inside = threading.Barrier(2, timeout=2)
        met = []

        def reader():
            with lock.read():
                try:
                    inside.wait()
                    met.append(True)
                except threading.BrokenBarrierError:
                    met.append(False)

        threads = [threading.Thread(target=reader) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)
        assert met == [True, True]

    def test_writer_excludes_readers(self):
        lock = ReadWriteLock()
        events = []
        writer_in = threading.Event()
        release = threading.Event()

        def writer():
            with lock.write():
                writer_in.set()
                release.wait(timeout=2)
                events.append("writer done")

        def reader():
            with lock.read():
                events.append("reader")

        w = threading.Thread(target=writer)
        w.start()
        writer_in.wait(timeout=2)
        r = threading.Thread(target=reader)
        r.start()
        r.join(timeout=0.2)
        assert events == []
        release.set()
        w.join(timeout=2)
        r.join(timeout=2)
        assert events == ["writer done", "reader"]
