"""Tests for the exact cosine-similarity vector engine."""

import asyncio
import pytest
import numpy as np

from hybrid_retrieval.adapters.base import NotInitializedError, RetrievalTimeoutError
from hybrid_retrieval.adapters.vector_adapter import VectorAdapter, cosine_similarity, normalize_vector
from hybrid_retrieval.models.core import Document
from hybrid_retrieval.utils.error_handling import EmptyCollectionError, ErrorHandler, MalformedVectorError


def make_doc(doc_id, vector, collection="activities", text=""):
    return Document(doc_id=doc_id, collection=collection, text=text or f"doc {doc_id}",
                    vector=np.asarray(vector, dtype=float) if vector is not None else None)


class TestCosineSimilarity:
    """Test cases for cosine similarity helpers."""

    def test_identical_vectors(self):
        assert cosine_similarity([0.6, 0.8], [0.6, 0.8]) == pytest.approx(1.0)

    def test_symmetric_and_bounded(self):
        rng = np.random.default_rng(7)
        for _ in range(20):
            a, b = rng.normal(size=5), rng.normal(size=5)
            forward = cosine_similarity(a, b)
            assert forward == pytest.approx(cosine_similarity(b, a))
            assert -1.0 <= forward <= 1.0

    def test_opposite_vectors(self):
        assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)

    def test_zero_and_mismatched_vectors(self):
        assert cosine_similarity([0, 0], [1, 0]) == 0.0
        assert cosine_similarity([1, 0, 0], [1, 0]) == 0.0

    def test_normalize_vector(self):
        unit = normalize_vector([3, 4])
        assert np.linalg.norm(unit) == pytest.approx(1.0)
        assert not np.any(normalize_vector([0, 0]))

    def test_normalize_vector_rejects_bad_input(self):
        with pytest.raises(MalformedVectorError):
            normalize_vector([1, 2, 3], dimension=2)
        with pytest.raises(MalformedVectorError):
            normalize_vector([[1, 2], [3, 4]])
        with pytest.raises(MalformedVectorError):
            normalize_vector([1, float("nan")])
        with pytest.raises(MalformedVectorError):
            normalize_vector(["a", "b"])


class TestVectorAdapter:
    """Test cases for VectorAdapter."""

    def setup_method(self):
        """Set up test fixtures."""
        self.adapter = VectorAdapter()
        self.documents = [
            make_doc("doc1", [1.0, 0.0]),
            make_doc("doc2", [0.0, 1.0]),
            make_doc("doc3", [0.9, 0.1]),
        ]
        self.adapter.load_collection("activities", self.documents)

    def test_search_before_load_raises(self):
        adapter = VectorAdapter()
        with pytest.raises(NotInitializedError):
            adapter.search_sync([1.0, 0.0], "activities")

    def test_three_document_scenario(self):
        hits = self.adapter.search_sync([1.0, 0.0], "activities", top_k=3, threshold=0.5)

        assert [hit.document.doc_id for hit in hits] == ["doc1", "doc3"]
        assert hits[0].score == pytest.approx(1.0)
        assert hits[1].score == pytest.approx(0.9 / np.sqrt(0.82), abs=1e-6)
        assert hits[1].score == pytest.approx(0.994, abs=1e-3)
        assert all(hit.engine == "vector" for hit in hits)

    def test_query_is_normalized(self):
        hits = self.adapter.search_sync([5.0, 0.0], "activities", top_k=1, threshold=0.5)
        assert hits[0].score == pytest.approx(1.0)

    def test_ties_keep_insertion_order(self):
        adapter = VectorAdapter()
        adapter.load_collection("c", [make_doc("b", [1, 0], "c"), make_doc("a", [2, 0], "c"), make_doc("z", [1, 0], "c")])

        hits = adapter.search_sync([1, 0], "c", top_k=3, threshold=0.0)
        assert [hit.document.doc_id for hit in hits] == ["b", "a", "z"]

    def test_zero_vectors_never_match(self):
        adapter = VectorAdapter()
        adapter.load_collection("c", [make_doc("zero", [0, 0], "c"), make_doc("one", [1, 0], "c")])

        hits = adapter.search_sync([1, 0], "c", top_k=5, threshold=-1.0)
        assert [hit.document.doc_id for hit in hits] == ["one"]
        assert adapter.search_sync([0, 0], "c", top_k=5, threshold=-1.0) == []

    def test_unknown_collection_returns_empty(self):
        assert self.adapter.search_sync([1, 0], "missing") == []

    def test_empty_collection_raises(self):
        """Test that a collection without indexed vectors is reported as empty."""
        self.adapter.load_collection("decision104", [make_doc("novector", None, "decision104")])
        with pytest.raises(EmptyCollectionError) as exc_info:
            self.adapter.search_sync([1, 0], "decision104")
        assert exc_info.value.collection == "decision104"

    def test_multi_collection_search_skips_empty_collection(self):
        error_handler = ErrorHandler()
        self.adapter.error_handler = error_handler
        self.adapter.load_collection("decision104", [])

        hits = self.adapter.multi_collection_search([1, 0], ["decision104", "activities"], top_k=3, threshold=0.5)

        assert [hit.document.doc_id for hit in hits] == ["doc1", "doc3"]
        counts = error_handler.get_error_statistics()["error_counts_by_type"]
        assert counts["VectorAdapter:DATA_EMPTY_COLLECTION"] == 1

    def test_malformed_document_is_skipped(self):
        adapter = VectorAdapter()
        indexed = adapter.load_collection("c", [
            make_doc("good", [1, 0], "c"),
            make_doc("bad", [1, 0, 0], "c"),
            make_doc("novector", None, "c"),
        ])

        assert indexed == 1
        assert adapter.get_document("c", "good") is not None
        assert adapter.get_document("c", "bad") is None

    def test_configured_dimension_is_enforced(self):
        adapter = VectorAdapter(config={"dimension": 3})
        assert adapter.load_collection("c", [make_doc("two", [1, 0], "c"), make_doc("three", [1, 0, 0], "c")]) == 1

    def test_incremental_add_update_remove(self):
        self.adapter.add_document(make_doc("doc4", [0.7, 0.7]))
        hits = self.adapter.search_sync([0.0, 1.0], "activities", top_k=2, threshold=0.5)
        assert [hit.document.doc_id for hit in hits] == ["doc2", "doc4"]

        self.adapter.update_document(make_doc("doc2", [1.0, 0.0]))
        hits = self.adapter.search_sync([0.0, 1.0], "activities", top_k=5, threshold=0.5)
        assert [hit.document.doc_id for hit in hits] == ["doc4"]

        assert self.adapter.remove_document("activities", "doc4") is True
        assert self.adapter.remove_document("activities", "doc4") is False
        assert self.adapter.search_sync([0.0, 1.0], "activities", top_k=5, threshold=0.5) == []

    def test_find_similar_excludes_self(self):
        hits = self.adapter.find_similar("activities", "doc1", top_k=5, threshold=0.5)
        assert [hit.document.doc_id for hit in hits] == ["doc3"]

    def test_find_top_k_and_multi_collection(self):
        self.adapter.load_collection("industrial", [make_doc("zone1", [0.8, 0.2], "industrial")])

        assert len(self.adapter.find_top_k([1, 0], "activities", k=2)) == 2

        hits = self.adapter.multi_collection_search([1, 0], ["activities", "industrial"], top_k=3, threshold=0.5)
        assert [hit.document.doc_id for hit in hits] == ["doc1", "doc3", "zone1"]

    def test_batch_search(self):
        results = self.adapter.batch_search([[1.0, 0.0], [0.0, 1.0]], "activities", top_k=5, threshold=0.5)
        assert [[hit.document.doc_id for hit in hits] for hits in results] == [["doc1", "doc3"], ["doc2"]]

    def test_is_initialized(self):
        assert self.adapter.is_initialized is True
        assert VectorAdapter().is_initialized is False

    def test_export_import_round_trip(self):
        exported = self.adapter.export_index("activities")
        assert exported["dimension"] == 2
        assert [item["id"] for item in exported["documents"]] == ["doc1", "doc2", "doc3"]

        other = VectorAdapter()
        assert other.import_index(exported) == 3
        assert np.allclose(other.get_vector("activities", "doc3"), self.adapter.get_vector("activities", "doc3"))

    def test_stats(self):
        self.adapter.search_sync([1, 0], "activities")
        stats = self.adapter.get_stats()
        assert stats["total_searches"] == 1
        assert stats["collections"] == ["activities"]

    @pytest.mark.asyncio
    async def test_async_search(self):
        hits = await self.adapter.search([1.0, 0.0], "activities", 1, threshold=0.5)
        assert hits[0].document.doc_id == "doc1"

    @pytest.mark.asyncio
    async def test_search_with_timeout(self):
        async def slow_search(*args, **kwargs):
            await asyncio.sleep(1)
            return []

        self.adapter.search = slow_search
        with pytest.raises(RetrievalTimeoutError):
            await self.adapter.search_with_timeout([1.0, 0.0], "activities", 1, timeout=0.01)
