"""Abstract base class for retrieval engines."""

import asyncio
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import logging

from ..models.core import Document, RetrievalHit
from ..utils.error_handling import (
    EmptyCollectionError,
    ErrorContext,
    InsufficientDataError,
    MalformedVectorError,
    NotInitializedError,
    RetrievalError,
    get_error_handler,
)


logger = logging.getLogger(__name__)


class RetrievalTimeoutError(RetrievalError):
    """Exception raised when a retrieval branch exceeds its timeout."""
    pass


class RetrievalEngine(ABC):
    """Abstract base class for per-collection retrieval engines.

    Subclasses own their index and implement the CPU-bound ``search_sync``;
    ``search`` runs it off the event loop so several engines and collections
    can be scanned concurrently. Any index (exact scan, approximate graph,
    lexical) can be substituted behind this interface.
    """

    def __init__(self, engine_id: str, config: Optional[Dict[str, Any]] = None, timeout: float = 10.0):
        """Initialize the retrieval engine.

        Args:
            engine_id: Name of this engine, recorded as the hit source
            config: Configuration dictionary for the engine
            timeout: Default timeout for search operations in seconds
        """
        self.engine_id = engine_id
        self.config = config or {}
        self.timeout = timeout
        self.error_handler = get_error_handler()
        self._initialized = False
        self._stats_lock = threading.Lock()
        self._total_searches = 0
        self._total_search_time = 0.0

    @abstractmethod
    def load_collection(self, collection: str, documents: List[Document]) -> int:
        """(Re)build the index for one collection.

        Args:
            collection: Collection name
            documents: Documents belonging to the collection

        Returns:
            Number of documents indexed
        """
        pass

    @abstractmethod
    def add_document(self, document: Document) -> bool:
        """Index a single document incrementally."""
        pass

    @abstractmethod
    def remove_document(self, collection: str, doc_id: str) -> bool:
        """Remove a document from the index; False when it was not indexed."""
        pass

    @abstractmethod
    def search_sync(self, query: Any, collection: str, top_k: int = 10, **kwargs) -> List[RetrievalHit]:
        """Run a blocking search against one collection.

        Raises:
            NotInitializedError: If no collection has been loaded yet
        """
        pass

    @abstractmethod
    def collections(self) -> List[str]:
        """Names of the collections currently indexed."""
        pass

    @abstractmethod
    def get_configuration(self) -> Dict[str, Any]:
        """Get the current configuration of the engine.

        Returns:
            Dictionary containing the engine configuration
        """
        pass

    def update_document(self, document: Document) -> bool:
        """Replace an indexed document; defaults to remove then add."""
        if document.doc_id:
            self.remove_document(document.collection, document.doc_id)
        return self.add_document(document)

    def has_collection(self, collection: str) -> bool:
        return collection in self.collections()

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError(f"{self.__class__.__name__} '{self.engine_id}' has no collections loaded")

    async def search(self, query: Any, collection: str, top_k: int = 10, **kwargs) -> List[RetrievalHit]:
        """Execute a search in a worker thread.

        Args:
            query: Engine-specific query (vector or text)
            collection: Collection to search
            top_k: Maximum number of hits to return
            **kwargs: Additional engine-specific parameters

        Returns:
            Ranked list of hits
        """
        return await asyncio.to_thread(self.search_sync, query, collection, top_k, **kwargs)

    async def search_with_timeout(self, query: Any, collection: str, top_k: int = 10,
                                  timeout: Optional[float] = None, **kwargs) -> List[RetrievalHit]:
        """Execute a search with timeout handling.

        Args:
            query: Engine-specific query (vector or text)
            collection: Collection to search
            top_k: Maximum number of hits to return
            timeout: Timeout in seconds (uses default if None)
            **kwargs: Additional engine-specific parameters

        Returns:
            Ranked list of hits

        Raises:
            RetrievalTimeoutError: If the operation times out
            RetrievalError: If the search operation fails
        """
        timeout = timeout or self.timeout

        try:
            return await asyncio.wait_for(
                self.search(query, collection, top_k, **kwargs),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            error_context = ErrorContext(
                component="RetrievalEngine",
                operation="search_with_timeout",
                engine_id=self.engine_id,
                query=query if isinstance(query, str) else None,
                collection=collection
            )
            timeout_error = RetrievalTimeoutError(
                f"Search on '{collection}' timed out after {timeout} seconds"
            )
            self.error_handler.handle_error(timeout_error, error_context)
            raise timeout_error
        except RetrievalError:
            raise
        except Exception as e:
            error_context = ErrorContext(
                component="RetrievalEngine",
                operation="search_with_timeout",
                engine_id=self.engine_id,
                query=query if isinstance(query, str) else None,
                collection=collection
            )
            search_error = RetrievalError(f"Search operation failed: {str(e)}")
            self.error_handler.handle_error(search_error, error_context)
            raise search_error from e

    def _record_search(self, started: float) -> None:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        with self._stats_lock:
            self._total_searches += 1
            self._total_search_time += elapsed_ms

    def get_stats(self) -> Dict[str, Any]:
        """Search count and mean latency for this engine."""
        with self._stats_lock:
            searches = self._total_searches
            total_time = self._total_search_time
        return {
            "engine_id": self.engine_id,
            "total_searches": searches,
            "avg_search_time_ms": total_time / searches if searches else 0.0,
            "collections": self.collections(),
        }

    def __str__(self) -> str:
        """String representation of the engine."""
        return f"{self.__class__.__name__}(engine_id='{self.engine_id}')"

    def __repr__(self) -> str:
        """Detailed string representation of the engine."""
        return (f"{self.__class__.__name__}(engine_id='{self.engine_id}', "
                f"initialized={self._initialized}, timeout={self.timeout})")


__all__ = [
    "RetrievalEngine",
    "RetrievalError",
    "RetrievalTimeoutError",
    "NotInitializedError",
    "EmptyCollectionError",
    "MalformedVectorError",
    "InsufficientDataError",
]
