"""BM25 lexical retrieval engine with a fuzzy fallback."""

import math
import threading
import time
from collections import Counter
from typing import Any, Dict, List, Optional

from .base import RetrievalEngine
from ..models.core import Document, RetrievalHit
from ..utils.error_handling import EmptyCollectionError
from ..utils.logging import get_logger
from ..utils.text import levenshtein_similarity, normalize_text, tokenize

logger = get_logger(__name__)


class BM25Index:
    """BM25 (Best Matching 25) index over the documents of one collection."""

    def __init__(self, k1: float = 1.5, b: float = 0.75, use_ngrams: bool = True, ngram_size: int = 3):
        """Initialize BM25 index.

        Args:
            k1: Controls term frequency saturation (default: 1.5)
            b: Controls length normalization (default: 0.75)
            use_ngrams: Index character n-grams next to words
            ngram_size: Length of the character n-grams
        """
        self.k1 = k1
        self.b = b
        self.use_ngrams = use_ngrams
        self.ngram_size = ngram_size
        self.documents: List[Document] = []
        self.processed_texts: List[str] = []
        self.doc_term_counts: List[Counter] = []
        self.doc_lengths: List[int] = []
        self.doc_frequencies: Counter = Counter()
        self.avg_doc_length: float = 0.0
        self.positions: Dict[str, int] = {}

    def _terms(self, text: str) -> List[str]:
        return tokenize(text, self.use_ngrams, self.ngram_size)

    def __len__(self) -> int:
        return len(self.documents)

    def add_documents(self, documents: List[Document]) -> None:
        """Replace the index contents with ``documents``.

        A later document with the same identity replaces an earlier one in
        its position, so each identity is indexed once.
        """
        self.documents = []
        self.processed_texts = []
        self.doc_term_counts = []
        self.doc_lengths = []
        self.doc_frequencies = Counter()
        self.positions = {}

        unique: Dict[str, Document] = {}
        for document in documents:
            unique[document.identity] = document
        for document in unique.values():
            self._append(document)

        self._update_avg_length()

    def _append(self, document: Document) -> None:
        processed = normalize_text(document.searchable_text())
        term_counts = Counter(self._terms(processed))

        self.positions[document.identity] = len(self.documents)
        self.documents.append(document)
        self.processed_texts.append(processed)
        self.doc_term_counts.append(term_counts)
        self.doc_lengths.append(sum(term_counts.values()))
        self.doc_frequencies.update(term_counts.keys())

    def _update_avg_length(self) -> None:
        self.avg_doc_length = sum(self.doc_lengths) / len(self.doc_lengths) if self.doc_lengths else 0.0

    def add_document(self, document: Document) -> None:
        """Add or replace one document, updating df and average length."""
        if document.identity in self.positions:
            self.remove_document(document.identity)
        self._append(document)
        self._update_avg_length()

    def remove_document(self, key: str) -> bool:
        position = self.positions.pop(key, None)
        if position is None:
            return False

        self.doc_frequencies.subtract(self.doc_term_counts[position].keys())
        self.doc_frequencies = +self.doc_frequencies

        del self.documents[position]
        del self.processed_texts[position]
        del self.doc_term_counts[position]
        del self.doc_lengths[position]
        self.positions = {document.identity: i for i, document in enumerate(self.documents)}
        self._update_avg_length()
        return True

    def idf(self, term: str) -> float:
        """ln((N - df + 0.5) / (df + 0.5) + 1), always positive for indexed terms."""
        df = self.doc_frequencies.get(term, 0)
        n = len(self.documents)
        return math.log((n - df + 0.5) / (df + 0.5) + 1)

    def score(self, query_terms: List[str], position: int) -> float:
        """Unnormalized BM25 score of one document."""
        term_counts = self.doc_term_counts[position]
        doc_length = self.doc_lengths[position]
        avg_length = self.avg_doc_length or 1.0

        total = 0.0
        for term in query_terms:
            tf = term_counts.get(term, 0)
            if tf == 0:
                continue
            numerator = tf * (self.k1 + 1)
            denominator = tf + self.k1 * (1 - self.b + self.b * (doc_length / avg_length))
            total += self.idf(term) * (numerator / denominator)
        return total

    def search(self, query_terms: List[str], limit: int = 10) -> List[tuple]:
        """Search documents using BM25 scoring.

        Returns:
            List of (doc_index, score) tuples sorted by score descending,
            score divided by the number of query terms
        """
        if not query_terms or not self.documents:
            return []

        doc_scores = []
        for position in range(len(self.documents)):
            raw = self.score(query_terms, position)
            if raw > 0:
                doc_scores.append((position, raw / len(query_terms)))

        doc_scores.sort(key=lambda item: item[1], reverse=True)
        return doc_scores[:limit]


class BM25Adapter(RetrievalEngine):
    """Per-collection BM25 lexical engine."""

    def __init__(self, engine_id: str = "text", config: Optional[Dict[str, Any]] = None, timeout: float = 10.0):
        """Initialize BM25 adapter.

        Args:
            engine_id: Unique identifier for this engine
            config: Configuration dictionary containing:
                - k1: BM25 k1 parameter (optional, default: 1.5)
                - b: BM25 b parameter (optional, default: 0.75)
                - min_score: Post-filter on final scores (default: 0.0)
                - use_fuzzy / fuzzy_threshold / fuzzy_window / fuzzy_top_k:
                  Edit-distance fallback when BM25 returns fewer than 3 hits
                - use_ngrams / ngram_size: Character n-gram indexing
            timeout: Search timeout in seconds
        """
        super().__init__(engine_id, config, timeout)

        self.k1 = self.config.get("k1", 1.5)
        self.b = self.config.get("b", 0.75)
        self.min_score = self.config.get("min_score", 0.0)
        self.use_fuzzy = self.config.get("use_fuzzy", True)
        self.fuzzy_threshold = self.config.get("fuzzy_threshold", 0.7)
        self.fuzzy_window = self.config.get("fuzzy_window", 200)
        self.fuzzy_top_k = self.config.get("fuzzy_top_k", 5)
        self.fuzzy_penalty = self.config.get("fuzzy_penalty", 0.8)
        self.fuzzy_trigger = self.config.get("fuzzy_trigger", 3)
        self.use_ngrams = self.config.get("use_ngrams", True)
        self.ngram_size = self.config.get("ngram_size", 3)

        self._indexes: Dict[str, BM25Index] = {}
        self._lock = threading.RLock()

    def _new_index(self) -> BM25Index:
        return BM25Index(k1=self.k1, b=self.b, use_ngrams=self.use_ngrams, ngram_size=self.ngram_size)

    def load_collection(self, collection: str, documents: List[Document]) -> int:
        index = self._new_index()
        index.add_documents(documents)

        with self._lock:
            self._indexes[collection] = index
            self._initialized = True

        logger.info(f"BM25 index '{collection}' built with {len(documents)} documents, "
                    f"avg length: {index.avg_doc_length:.1f} tokens")
        return len(index)

    def add_document(self, document: Document) -> bool:
        with self._lock:
            index = self._indexes.setdefault(document.collection, self._new_index())
            index.add_document(document)
            self._initialized = True
        return True

    def remove_document(self, collection: str, doc_id: str) -> bool:
        with self._lock:
            index = self._indexes.get(collection)
            if index is None:
                return False
            return index.remove_document(str(doc_id))

    def collections(self) -> List[str]:
        return list(self._indexes.keys())

    def query_terms(self, query: str) -> List[str]:
        return tokenize(normalize_text(query), self.use_ngrams, self.ngram_size)

    def search_sync(self, query: Any, collection: str, top_k: int = 10, **kwargs) -> List[RetrievalHit]:
        """BM25 search with fuzzy fallback.

        Args:
            query: Query text
            collection: Collection to search
            top_k: Maximum number of BM25 hits

        Returns:
            Hits sorted by descending score

        Raises:
            NotInitializedError: If no collection has been loaded
            EmptyCollectionError: If the collection has no documents
        """
        self._ensure_initialized()
        started = time.perf_counter()

        with self._lock:
            index = self._indexes.get(collection)
            if index is None:
                logger.warning(f"Text collection '{collection}' not found")
                return []
            if len(index) == 0:
                raise EmptyCollectionError(collection)

            query_terms = self.query_terms(str(query))
            hits = []
            for position, score in index.search(query_terms, top_k):
                term_counts = index.doc_term_counts[position]
                hits.append(RetrievalHit(
                    document=index.documents[position],
                    score=score,
                    engine=self.engine_id,
                    collection=collection,
                    matched_terms=[term for term in dict.fromkeys(query_terms) if term in term_counts]
                ))

            if len(hits) < self.fuzzy_trigger and self.use_fuzzy:
                hits = self._merge(hits, self._fuzzy_search(index, str(query), collection))

        hits = [hit for hit in hits if hit.score >= self.min_score]

        self._record_search(started)
        return hits

    def _fuzzy_search(self, index: BM25Index, query: str, collection: str) -> List[RetrievalHit]:
        """Edit-distance matches of the whole query against each document."""
        processed_query = normalize_text(query)
        hits = []

        for position, processed_text in enumerate(index.processed_texts):
            similarity = levenshtein_similarity(processed_query, processed_text, self.fuzzy_window)
            if similarity >= self.fuzzy_threshold:
                hits.append(RetrievalHit(
                    document=index.documents[position],
                    score=similarity * self.fuzzy_penalty,
                    engine=self.engine_id,
                    collection=collection,
                    fuzzy=True
                ))

        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:self.fuzzy_top_k]

    @staticmethod
    def _merge(primary: List[RetrievalHit], secondary: List[RetrievalHit]) -> List[RetrievalHit]:
        """Union by document identity, first occurrence kept."""
        merged: Dict[str, RetrievalHit] = {}
        for hit in primary + secondary:
            merged.setdefault(hit.document.identity, hit)
        return sorted(merged.values(), key=lambda hit: hit.score, reverse=True)

    def score_document(self, query: str, collection: str, doc_id: str) -> float:
        """Normalized BM25 score of one document for diagnostics (0.0 if absent)."""
        with self._lock:
            index = self._indexes.get(collection)
            if index is None or str(doc_id) not in index.positions:
                return 0.0
            query_terms = self.query_terms(query)
            if not query_terms:
                return 0.0
            return index.score(query_terms, index.positions[str(doc_id)]) / len(query_terms)

    def get_stats(self) -> Dict[str, Any]:
        stats = super().get_stats()
        with self._lock:
            stats["collection_stats"] = {
                name: {"total_docs": len(index), "avg_doc_length": index.avg_doc_length}
                for name, index in self._indexes.items()
            }
        return stats

    def get_configuration(self) -> Dict[str, Any]:
        """Get adapter configuration."""
        return {
            "engine_type": "bm25",
            "engine_id": self.engine_id,
            "k1": self.k1,
            "b": self.b,
            "min_score": self.min_score,
            "use_fuzzy": self.use_fuzzy,
            "fuzzy_threshold": self.fuzzy_threshold,
            "use_ngrams": self.use_ngrams,
            "ngram_size": self.ngram_size,
            "document_counts": {name: len(index) for name, index in self._indexes.items()},
        }
