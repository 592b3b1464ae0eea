"""Exact cosine-similarity vector retrieval engine."""

import threading
import time
from typing import Any, Dict, List, Optional, Sequence
import numpy as np

from .base import RetrievalEngine
from ..models.core import Document, RetrievalHit
from ..utils.error_handling import EmptyCollectionError, ErrorContext, MalformedVectorError
from ..utils.logging import get_logger

logger = get_logger(__name__)


def normalize_vector(vector: Any, dimension: Optional[int] = None, document_id: Optional[str] = None) -> np.ndarray:
    """Validate a vector and scale it to unit length.

    Zero-magnitude vectors are returned unchanged (all zeros) so that they
    never match anything.

    Raises:
        MalformedVectorError: If the vector is not a finite 1-D array of the
            expected dimension
    """
    try:
        array = np.asarray(vector, dtype=float)
    except (TypeError, ValueError) as e:
        raise MalformedVectorError(f"Vector is not numeric: {e}", document_id=document_id) from e

    if array.ndim != 1 or array.size == 0:
        raise MalformedVectorError(f"Expected a 1-D vector, got shape {array.shape}", document_id=document_id)
    if dimension is not None and array.size != dimension:
        raise MalformedVectorError(
            f"Expected dimension {dimension}, got {array.size}", document_id=document_id
        )
    if not np.all(np.isfinite(array)):
        raise MalformedVectorError("Vector contains NaN or infinite values", document_id=document_id)

    norm = np.linalg.norm(array)
    if norm == 0:
        return array
    return array / norm


def cosine_similarity(a: Any, b: Any) -> float:
    """Cosine similarity in [-1, 1]; 0.0 on length mismatch or zero magnitude."""
    first = np.asarray(a, dtype=float).ravel()
    second = np.asarray(b, dtype=float).ravel()

    if first.size != second.size or first.size == 0:
        return 0.0

    norm_product = np.linalg.norm(first) * np.linalg.norm(second)
    if norm_product == 0:
        return 0.0

    return float(np.clip(np.dot(first, second) / norm_product, -1.0, 1.0))


class _CollectionIndex:
    """Row-major matrix of unit vectors with tombstoned deletes.

    Rows keep insertion order; updates overwrite a row in place so a
    document keeps its tie-breaking position.
    """

    def __init__(self, dimension: int, initial_capacity: int = 64):
        self.dimension = dimension
        self.matrix = np.zeros((initial_capacity, dimension), dtype=float)
        self.alive = np.zeros(initial_capacity, dtype=bool)
        self.documents: List[Optional[Document]] = []
        self.rows: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self.rows)

    @property
    def used(self) -> int:
        return len(self.documents)

    def _grow(self) -> None:
        capacity = self.matrix.shape[0] * 2
        matrix = np.zeros((capacity, self.dimension), dtype=float)
        matrix[:self.used] = self.matrix[:self.used]
        alive = np.zeros(capacity, dtype=bool)
        alive[:self.used] = self.alive[:self.used]
        self.matrix = matrix
        self.alive = alive

    def put(self, document: Document, unit_vector: np.ndarray) -> None:
        key = document.identity
        row = self.rows.get(key)
        if row is None:
            if self.used >= self.matrix.shape[0]:
                self._grow()
            row = self.used
            self.documents.append(document)
            self.rows[key] = row
        else:
            self.documents[row] = document
        self.matrix[row] = unit_vector
        self.alive[row] = bool(np.any(unit_vector))

    def delete(self, key: str) -> bool:
        row = self.rows.pop(key, None)
        if row is None:
            return False
        self.documents[row] = None
        self.alive[row] = False
        self.matrix[row] = 0.0
        return True

    def vector(self, key: str) -> Optional[np.ndarray]:
        row = self.rows.get(key)
        if row is None:
            return None
        return self.matrix[row].copy()

    def scores(self, unit_query: np.ndarray) -> np.ndarray:
        similarities = self.matrix[:self.used] @ unit_query
        similarities = np.clip(similarities, -1.0, 1.0)
        similarities[~self.alive[:self.used]] = -np.inf
        return similarities


class VectorAdapter(RetrievalEngine):
    """Exhaustive cosine scan over normalized vectors, one matrix per collection."""

    def __init__(self, engine_id: str = "vector", config: Optional[Dict[str, Any]] = None, timeout: float = 10.0):
        """Initialize vector adapter.

        Args:
            engine_id: Unique identifier for this engine
            config: Configuration dictionary containing:
                - dimension: Expected vector dimension (None infers it per
                  collection from the first valid vector)
                - default_threshold: Similarity threshold when none is given
            timeout: Search timeout in seconds
        """
        super().__init__(engine_id, config, timeout)

        self.dimension = self.config.get("dimension")
        self.default_threshold = self.config.get("default_threshold", 0.6)
        self._indexes: Dict[str, _CollectionIndex] = {}
        self._lock = threading.RLock()

    def _new_index(self, dimension: int) -> _CollectionIndex:
        return _CollectionIndex(dimension)

    def _index_document(self, index: Optional[_CollectionIndex], document: Document) -> Optional[_CollectionIndex]:
        """Normalize and store one document, isolating vector failures."""
        if document.vector is None:
            return index

        try:
            expected = index.dimension if index is not None else self.dimension
            unit_vector = normalize_vector(document.vector, expected, document.doc_id)
        except MalformedVectorError as e:
            self.error_handler.handle_error(e, ErrorContext(
                component="VectorAdapter",
                operation="index_document",
                engine_id=self.engine_id,
                collection=document.collection,
                document_id=document.doc_id
            ))
            return index

        if index is None:
            index = self._new_index(unit_vector.size)
        index.put(document, unit_vector)
        return index

    def load_collection(self, collection: str, documents: List[Document]) -> int:
        index = None
        for document in documents:
            index = self._index_document(index, document)

        with self._lock:
            self._indexes[collection] = index if index is not None else self._new_index(self.dimension or 1)
            self._initialized = True

        indexed = len(self._indexes[collection])
        logger.info(f"Vector index '{collection}' built with {indexed} of {len(documents)} documents")
        return indexed

    def add_document(self, document: Document) -> bool:
        with self._lock:
            index = self._indexes.get(document.collection)
            if index is not None and len(index) == 0 and self.dimension is None:
                index = None
            updated = self._index_document(index, document)
            if updated is None:
                return False
            self._indexes[document.collection] = updated
            self._initialized = True
            return document.identity in updated.rows

    def update_document(self, document: Document) -> bool:
        # put() overwrites in place and keeps the row position
        return self.add_document(document)

    def remove_document(self, collection: str, doc_id: str) -> bool:
        with self._lock:
            index = self._indexes.get(collection)
            if index is None:
                return False
            return index.delete(str(doc_id))

    def collections(self) -> List[str]:
        return list(self._indexes.keys())

    def search_sync(self, query: Any, collection: str, top_k: int = 10,
                    threshold: Optional[float] = None, **kwargs) -> List[RetrievalHit]:
        """Return the top ``top_k`` documents with similarity >= ``threshold``.

        Ties keep insertion order.

        Args:
            query: Query vector
            collection: Collection to scan
            top_k: Maximum number of hits
            threshold: Minimum cosine similarity (engine default when None)

        Returns:
            Hits sorted by descending similarity

        Raises:
            NotInitializedError: If no collection has been loaded
            EmptyCollectionError: If the collection has no indexed vectors
            MalformedVectorError: If the query vector does not match the index
        """
        self._ensure_initialized()
        started = time.perf_counter()
        threshold = self.default_threshold if threshold is None else threshold

        with self._lock:
            index = self._indexes.get(collection)
            if index is None:
                logger.warning(f"Vector collection '{collection}' not found")
                return []
            if len(index) == 0:
                raise EmptyCollectionError(collection)

            unit_query = normalize_vector(query, index.dimension)
            if not np.any(unit_query):
                return []

            similarities = index.scores(unit_query)
            documents = list(index.documents)

        candidates = np.nonzero(similarities >= threshold)[0]
        order = candidates[np.argsort(-similarities[candidates], kind="stable")][:top_k]

        hits = [
            RetrievalHit(
                document=documents[row],
                score=float(similarities[row]),
                engine=self.engine_id,
                collection=collection
            )
            for row in order
        ]

        self._record_search(started)
        return hits

    def similarity(self, a: Any, b: Any) -> float:
        return cosine_similarity(a, b)

    def multi_collection_search(self, query: Any, collections: Sequence[str], top_k: int = 10,
                                threshold: Optional[float] = None) -> List[RetrievalHit]:
        """Search several collections and merge the hits by similarity.

        Empty collections are logged and contribute no hits.
        """
        hits: List[RetrievalHit] = []
        for collection in collections:
            try:
                hits.extend(self.search_sync(query, collection, top_k, threshold=threshold))
            except EmptyCollectionError as e:
                self.error_handler.handle_error(e, ErrorContext(
                    component="VectorAdapter",
                    operation="multi_collection_search",
                    engine_id=self.engine_id,
                    collection=collection
                ))
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:top_k]

    def batch_search(self, queries: Sequence[Any], collection: str, top_k: int = 10,
                     threshold: Optional[float] = None) -> List[List[RetrievalHit]]:
        return [self.search_sync(query, collection, top_k, threshold=threshold) for query in queries]

    def find_top_k(self, query: Any, collection: str, k: int = 10) -> List[RetrievalHit]:
        """Nearest ``k`` documents with non-negative similarity."""
        return self.search_sync(query, collection, k, threshold=0.0)

    def find_similar(self, collection: str, doc_id: str, top_k: int = 10,
                     threshold: float = 0.7) -> List[RetrievalHit]:
        """Documents similar to an indexed document, excluding itself."""
        vector = self.get_vector(collection, doc_id)
        if vector is None or not np.any(vector):
            return []
        hits = self.search_sync(vector, collection, top_k + 1, threshold=threshold)
        return [hit for hit in hits if hit.document.identity != str(doc_id)][:top_k]

    def get_vector(self, collection: str, doc_id: str) -> Optional[np.ndarray]:
        """Stored unit vector of a document, or None."""
        with self._lock:
            index = self._indexes.get(collection)
            if index is None:
                return None
            return index.vector(str(doc_id))

    def get_document(self, collection: str, doc_id: str) -> Optional[Document]:
        with self._lock:
            index = self._indexes.get(collection)
            if index is None or str(doc_id) not in index.rows:
                return None
            return index.documents[index.rows[str(doc_id)]]

    def export_index(self, collection: str) -> Dict[str, Any]:
        """Serializable snapshot of one collection index."""
        with self._lock:
            index = self._indexes.get(collection)
            if index is None:
                return {"collection": collection, "dimension": self.dimension, "documents": []}
            entries = []
            for key, row in index.rows.items():
                data = index.documents[row].to_dict()
                data["vector"] = index.matrix[row].tolist()
                entries.append((row, data))
            dimension = index.dimension

        entries.sort(key=lambda entry: entry[0])
        return {
            "collection": collection,
            "dimension": dimension,
            "documents": [data for _, data in entries],
        }

    def import_index(self, data: Dict[str, Any]) -> int:
        """Rebuild a collection from ``export_index`` output."""
        collection = data["collection"]
        documents = [Document.from_dict(item, collection) for item in data.get("documents", [])]
        return self.load_collection(collection, documents)

    def get_configuration(self) -> Dict[str, Any]:
        """Get adapter configuration."""
        with self._lock:
            sizes = {name: len(index) for name, index in self._indexes.items()}
        return {
            "engine_type": "vector",
            "engine_id": self.engine_id,
            "dimension": self.dimension,
            "default_threshold": self.default_threshold,
            "document_counts": sizes,
        }
