# Retrieval engine adapters package

from .base import (
    RetrievalEngine,
    RetrievalError,
    RetrievalTimeoutError,
    NotInitializedError,
    EmptyCollectionError,
    MalformedVectorError,
    InsufficientDataError,
)
from .vector_adapter import VectorAdapter, cosine_similarity, normalize_vector
from .bm25_adapter import BM25Adapter, BM25Index
from .registry import CollectionRegistry

__all__ = [
    "RetrievalEngine",
    "RetrievalError",
    "RetrievalTimeoutError",
    "NotInitializedError",
    "EmptyCollectionError",
    "MalformedVectorError",
    "InsufficientDataError",
    "VectorAdapter",
    "cosine_similarity",
    "normalize_vector",
    "BM25Adapter",
    "BM25Index",
    "CollectionRegistry",
]
