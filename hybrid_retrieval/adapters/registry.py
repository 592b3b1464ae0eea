"""Collection registry: the versioned document store behind the retrieval engines."""

import logging
import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .base import RetrievalEngine
from ..models.core import Document
from ..utils.error_handling import ErrorContext, get_error_handler


logger = logging.getLogger(__name__)


class CollectionRegistry:
    """Registry of named collections and the engines that index them.

    Every document change is applied to all registered engines so that a
    hit always references a document that is live in its collection.
    """

    def __init__(self, engines: Optional[Iterable[RetrievalEngine]] = None):
        """Initialize the collection registry.

        Args:
            engines: Retrieval engines to keep in sync with the documents
        """
        self._engines: Dict[str, RetrievalEngine] = {}
        self._documents: Dict[str, Dict[str, Document]] = {}
        self._versions: Dict[str, int] = {}
        self._lock = threading.RLock()
        self.error_handler = get_error_handler()

        for engine in engines or []:
            self.register_engine(engine)

    def register_engine(self, engine: RetrievalEngine) -> None:
        """Register an engine and index every known collection into it.

        Raises:
            ValueError: If the object is not a RetrievalEngine
        """
        if not isinstance(engine, RetrievalEngine):
            raise ValueError(f"Engine must extend RetrievalEngine: {engine!r}")

        with self._lock:
            if engine.engine_id in self._engines:
                logger.warning(f"Overriding existing engine registration for '{engine.engine_id}'")
            self._engines[engine.engine_id] = engine
            for collection, documents in self._documents.items():
                engine.load_collection(collection, list(documents.values()))

        logger.info(f"Registered engine '{engine.engine_id}': {engine.__class__.__name__}")

    def get_engine(self, engine_id: str) -> Optional[RetrievalEngine]:
        return self._engines.get(engine_id)

    @property
    def engines(self) -> Dict[str, RetrievalEngine]:
        return dict(self._engines)

    def _build_documents(self, collection: str, records: Iterable[Mapping[str, Any]]) -> List[Document]:
        documents = []
        for position, record in enumerate(records):
            try:
                documents.append(Document.from_dict(dict(record), collection))
            except (TypeError, ValueError) as e:
                self.error_handler.handle_error(e, ErrorContext(
                    component="CollectionRegistry",
                    operation="load_collection",
                    collection=collection,
                    additional_data={"position": position}
                ))
        return documents

    def load_collection(self, collection: str, records: Iterable[Mapping[str, Any]]) -> int:
        """Replace a collection with the given loader records.

        Args:
            collection: Collection name
            records: Document dictionaries from the collection loader

        Returns:
            Number of documents loaded
        """
        documents = self._build_documents(collection, records)
        live = {document.identity: document for document in documents}
        if len(live) < len(documents):
            logger.warning(f"Collection '{collection}': {len(documents) - len(live)} records share an identity "
                           f"with a later record and were replaced")

        with self._lock:
            self._documents[collection] = live
            self._versions[collection] = self._versions.get(collection, 0) + 1
            for engine in self._engines.values():
                engine.load_collection(collection, list(live.values()))

        logger.info(f"Loaded collection '{collection}' with {len(live)} documents "
                    f"(version {self._versions[collection]})")
        return len(live)

    def load_collections(self, data: Mapping[str, Iterable[Mapping[str, Any]]]) -> Dict[str, int]:
        """Load several collections from a name -> records mapping."""
        return {name: self.load_collection(name, records) for name, records in data.items()}

    def add_document(self, collection: str, record: Mapping[str, Any]) -> Document:
        """Add or replace one document in a collection and in every engine."""
        document = Document.from_dict(dict(record), collection)

        with self._lock:
            documents = self._documents.setdefault(collection, {})
            replacing = document.identity in documents
            documents[document.identity] = document
            self._versions[collection] = self._versions.get(collection, 0) + 1
            for engine in self._engines.values():
                if replacing:
                    engine.update_document(document)
                else:
                    engine.add_document(document)

        return document

    def remove_document(self, collection: str, doc_id: str) -> bool:
        """Remove a document from a collection and from every engine."""
        with self._lock:
            documents = self._documents.get(collection)
            if documents is None or str(doc_id) not in documents:
                return False
            del documents[str(doc_id)]
            self._versions[collection] += 1
            for engine in self._engines.values():
                engine.remove_document(collection, str(doc_id))

        return True

    def get_document(self, collection: str, doc_id: str) -> Optional[Document]:
        with self._lock:
            return self._documents.get(collection, {}).get(str(doc_id))

    def get_documents(self, collection: str) -> List[Document]:
        """All live documents of a collection in load order."""
        with self._lock:
            return list(self._documents.get(collection, {}).values())

    def version(self, collection: str) -> int:
        return self._versions.get(collection, 0)

    def collections(self) -> List[str]:
        return list(self._documents.keys())

    def has_collection(self, collection: str) -> bool:
        return collection in self._documents

    def get_registry_status(self) -> Dict[str, Any]:
        """Get overall registry status."""
        with self._lock:
            return {
                "collections": {
                    name: {"documents": len(documents), "version": self._versions.get(name, 0)}
                    for name, documents in self._documents.items()
                },
                "engines": {engine_id: engine.get_configuration() for engine_id, engine in self._engines.items()},
            }
