"""Strategy selection and the per-strategy retrieval executors."""

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set, runtime_checkable

from ..adapters.base import EmptyCollectionError, RetrievalEngine, RetrievalError, NotInitializedError
from ..adapters.registry import CollectionRegistry
from ..config.settings import get_search_config
from ..models.core import (
    AnalyzedQuery,
    Document,
    FusedResult,
    FusionSource,
    LearnedParameters,
    ResultKind,
    RetrievalHit,
    SearchStrategy,
    StatisticalSummary,
    StatisticType,
)
from ..utils.cache import ResultCache
from ..utils.error_handling import ErrorContext, ErrorHandler, get_error_handler
from ..utils.logging import get_logger
from .fusion import RankFusion, context_relevance
from .query_analysis import detect_statistic_type

logger = get_logger(__name__)


@runtime_checkable
class QueryEmbedder(Protocol):
    """External embedding model turning text into a query vector."""

    def embed(self, text: str) -> Any:
        ...


@dataclass
class SearchRun:
    """Per-search state shared by the executors of one strategy."""
    query: AnalyzedQuery
    params: LearnedParameters
    query_vector: Optional[Any] = None
    engines_used: Set[str] = field(default_factory=set)


@dataclass
class StrategyOutcome:
    """Fused candidates produced by a strategy executor."""
    strategy: SearchStrategy
    results: List[FusedResult]
    statistics: Optional[StatisticalSummary] = None


FILTER_FIELDS = {
    "governorate": ("governorate", "المحافظة"),
    "dependency": ("dependency", "التبعية"),
}


class StrategyDispatcher:
    """Chooses a retrieval strategy and runs it against the retrieval engines.

    Vector and lexical branches run concurrently with ``asyncio.gather``;
    each branch is bounded by ``branch_timeout`` and a failed branch only
    removes its own hits.
    """

    def __init__(self, registry: CollectionRegistry, vector_engine: Optional[RetrievalEngine] = None,
                 text_engine: Optional[RetrievalEngine] = None, embedder: Optional[QueryEmbedder] = None,
                 search_config: Optional[Dict[str, Any]] = None, fusion: Optional[RankFusion] = None,
                 error_handler: Optional[ErrorHandler] = None, embedding_cache: Optional[ResultCache] = None):
        """Initialize the dispatcher.

        Args:
            registry: Collection registry holding the live documents
            vector_engine: Vector retrieval engine
            text_engine: Lexical retrieval engine
            embedder: Optional query embedder for the vector branch
            search_config: Search configuration (defaults to the ``search`` section)
            fusion: Rank fusion implementation
            error_handler: Optional error handler instance
            embedding_cache: Cache of query embeddings keyed by text
        """
        self.registry = registry
        self.vector_engine = vector_engine
        self.text_engine = text_engine
        self.embedder = embedder
        self.embedding_cache = embedding_cache
        self.search_config = search_config or get_search_config()
        self.fusion = fusion or RankFusion()
        self.error_handler = error_handler or get_error_handler()

        self.top_k = self.search_config.get("top_k", 10)
        self.branch_timeout = self.search_config.get("branch_timeout", 10.0)
        self.deep_search_enabled = self.search_config.get("deep_search_enabled", True)
        self.max_concurrent_branches = self.search_config.get("max_concurrent_branches", 8)
        self.default_collection = self.search_config.get("default_collection", "activities")
        self._semaphore = None

        self._executors = {
            SearchStrategy.SIMPLE: self._simple_search,
            SearchStrategy.COMPLEX: self._complex_search,
            SearchStrategy.STATISTICAL: self._statistical_search,
            SearchStrategy.COMPARISON: self._comparison_search,
            SearchStrategy.SEQUENTIAL: self._sequential_search,
            SearchStrategy.DEEP: self._deep_search,
            SearchStrategy.DEFAULT: self._default_search,
        }

    @property
    def semaphore(self):
        """Get or create the semaphore for the current event loop."""
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent_branches)
        return self._semaphore

    @staticmethod
    def select(query: AnalyzedQuery) -> SearchStrategy:
        """Priority cascade; the first matching rule wins."""
        intent_type = query.intent.type.upper()

        if intent_type == "STATISTICAL" or query.question_type.is_statistical:
            return SearchStrategy.STATISTICAL
        if intent_type == "COMPARISON" or query.question_type.is_comparison:
            return SearchStrategy.COMPARISON
        if intent_type == "FOLLOWUP" or not query.context.is_empty:
            return SearchStrategy.SEQUENTIAL
        if query.complexity > 7 or len(query.sub_questions) > 2:
            return SearchStrategy.DEEP
        if query.complexity > 4 or len(query.collections) > 1:
            return SearchStrategy.COMPLEX
        return SearchStrategy.SIMPLE

    async def execute(self, strategy: SearchStrategy, run: SearchRun) -> StrategyOutcome:
        """Run the executor for ``strategy``."""
        logger.debug(f"Executing {strategy.value} strategy for '{run.query.original[:50]}'")
        return await self._executors[strategy](run)

    def _primary_collection(self, query: AnalyzedQuery) -> str:
        return query.primary_collection or self.default_collection

    async def _query_vector(self, run: SearchRun, text: str) -> Optional[Any]:
        if run.query_vector is not None and text == run.query.resolved:
            return run.query_vector
        if self.embedder is None:
            return None
        if self.embedding_cache is not None:
            cached = self.embedding_cache.get(text)
            if cached is not None:
                return cached
        vector = self.embedder.embed(text)
        if inspect.isawaitable(vector):
            vector = await vector
        if self.embedding_cache is not None and vector is not None:
            self.embedding_cache.set(text, vector)
        return vector

    async def _branch(self, engine: Optional[RetrievalEngine], query: Any, collection: str,
                      top_k: int, run: SearchRun, **kwargs) -> List[RetrievalHit]:
        """One engine over one collection; failures other than a missing index yield no hits."""
        if engine is None or query is None:
            return []

        async with self.semaphore:
            try:
                hits = await engine.search_with_timeout(query, collection, top_k, timeout=self.branch_timeout, **kwargs)
            except NotInitializedError:
                raise
            except EmptyCollectionError as e:
                self.error_handler.handle_error(e, ErrorContext(
                    component="StrategyDispatcher",
                    operation="branch",
                    engine_id=engine.engine_id,
                    collection=collection
                ))
                return []
            except RetrievalError as e:
                logger.warning(f"Branch {engine.engine_id}/{collection} failed: {e}")
                return []
            except Exception as e:
                self.error_handler.handle_error(e, ErrorContext(
                    component="StrategyDispatcher",
                    operation="branch",
                    engine_id=engine.engine_id,
                    query=query if isinstance(query, str) else None,
                    collection=collection
                ))
                return []

        if hits:
            run.engines_used.add(engine.engine_id)
        return hits

    async def _hybrid(self, run: SearchRun, text: str, collection: str, top_k: int,
                      threshold: float) -> List[FusedResult]:
        """Vector and lexical branches on one collection, fused with the snapshot weights."""
        query_vector = await self._query_vector(run, text)
        vector_hits, text_hits = await asyncio.gather(
            self._branch(self.vector_engine, query_vector, collection, top_k, run, threshold=threshold),
            self._branch(self.text_engine, text, collection, top_k, run)
        )

        return self.fusion.fuse([
            FusionSource(engine=self._engine_name(self.vector_engine, "vector"), hits=vector_hits,
                         weight=run.params.vector_weight),
            FusionSource(engine=self._engine_name(self.text_engine, "text"), hits=text_hits,
                         weight=run.params.text_weight),
        ], top_k)

    @staticmethod
    def _engine_name(engine: Optional[RetrievalEngine], default: str) -> str:
        return engine.engine_id if engine is not None else default

    async def _simple_search(self, run: SearchRun) -> StrategyOutcome:
        results = await self._hybrid(
            run, run.query.resolved, self._primary_collection(run.query), 5, run.params.base_threshold
        )
        return StrategyOutcome(SearchStrategy.SIMPLE, results)

    async def _complex_search(self, run: SearchRun, strategy: SearchStrategy = SearchStrategy.COMPLEX) -> StrategyOutcome:
        collections = list(run.query.collections) or [self.default_collection]
        threshold = run.params.base_threshold - 0.05

        fused_lists = await asyncio.gather(*[
            self._hybrid(run, run.query.resolved, collection, 8, threshold)
            for collection in collections
        ])

        results = self.fusion.merge_collections(dict(zip(collections, fused_lists)), self.top_k)
        return StrategyOutcome(strategy, results)

    async def _statistical_search(self, run: SearchRun) -> StrategyOutcome:
        entities = run.query.entities
        statistic = detect_statistic_type(run.query.original)
        collections = list(run.query.collections) or [self.default_collection]

        documents: List[Document] = []
        for collection in collections:
            documents.extend(self.registry.get_documents(collection))

        filters = {name: entities[name] for name in FILTER_FIELDS if entities.get(name)}
        for name, expected in filters.items():
            documents = [
                document for document in documents
                if document.get_field(*FILTER_FIELDS[name]) == expected
            ]

        summary = self._summarize(statistic, documents, entities, filters)
        results = [
            FusedResult(
                document=document,
                score=1.0,
                sources=["statistics"],
                collection=document.collection,
                kind=ResultKind.STATISTICAL,
                tags={"statistic": statistic.value}
            )
            for document in documents
        ]

        logger.info(f"Statistical {statistic.value} over {collections}: {len(documents)} matching documents")
        return StrategyOutcome(SearchStrategy.STATISTICAL, results, summary)

    @staticmethod
    def _summarize(statistic: StatisticType, documents: List[Document], entities: Dict[str, Any],
                   filters: Dict[str, Any]) -> StatisticalSummary:
        if statistic == StatisticType.LIST:
            value: Any = [document.doc_id or document.identity for document in documents]
            return StatisticalSummary(statistic, value, len(documents), filters)

        if statistic == StatisticType.GROUP_BY:
            group_field = entities.get("group_field") or "dependency"
            aliases = FILTER_FIELDS.get(group_field, (group_field,))
            groups: Dict[str, int] = {}
            for document in documents:
                key = str(document.get_field(*aliases, default="غير محدد"))
                groups[key] = groups.get(key, 0) + 1
            return StatisticalSummary(statistic, len(groups), len(documents), filters, groups)

        if statistic == StatisticType.AGGREGATE:
            aggregate_field = entities.get("aggregate_field")
            numbers = []
            if aggregate_field:
                for document in documents:
                    value = document.get_field(aggregate_field)
                    if isinstance(value, (int, float)) and not isinstance(value, bool):
                        numbers.append(float(value))
            if numbers:
                value = {"sum": sum(numbers), "mean": sum(numbers) / len(numbers), "count": len(numbers)}
            else:
                value = {"count": len(documents)}
            return StatisticalSummary(statistic, value, len(documents), filters)

        return StatisticalSummary(StatisticType.COUNT, len(documents), len(documents), filters)

    @staticmethod
    def comparison_items(query: AnalyzedQuery) -> List[str]:
        """Items to compare: the ``compare`` entity, else every string entity value."""
        compare = query.entities.get("compare")
        if isinstance(compare, (list, tuple)):
            return [str(item) for item in compare if item]

        items = []
        for value in query.entities.values():
            values = value if isinstance(value, (list, tuple)) else [value]
            items.extend(str(item) for item in values if isinstance(item, str) and item)
        return list(dict.fromkeys(items))

    async def _comparison_search(self, run: SearchRun) -> StrategyOutcome:
        items = self.comparison_items(run.query)
        if len(items) < 2:
            logger.debug("Fewer than two comparison items, falling back to complex search")
            return await self._complex_search(run, SearchStrategy.COMPARISON)

        collection = self._primary_collection(run.query)
        per_item = await asyncio.gather(*[
            self._hybrid(run, item, collection, self.top_k, run.params.base_threshold)
            for item in items
        ])

        for item, results in zip(items, per_item):
            for result in results:
                result.kind = ResultKind.COMPARISON
                result.tags["comparison_item"] = item

        return StrategyOutcome(SearchStrategy.COMPARISON, self.fusion.fuse_by_identity(per_item))

    async def _sequential_search(self, run: SearchRun) -> StrategyOutcome:
        query = run.query
        focus = query.context.focus_entity
        text = query.resolved
        if focus and focus not in text:
            text = f"{text} {focus}"

        results = await self._hybrid(
            run, text, self._primary_collection(query), self.top_k, run.params.base_threshold
        )

        for result in results:
            relevance = context_relevance(result, query.context)
            result.score *= 1 + relevance * run.params.context_boost
            result.tags["context_relevance"] = relevance

        results.sort(key=lambda result: result.score, reverse=True)
        return StrategyOutcome(SearchStrategy.SEQUENTIAL, results)

    async def _deep_search(self, run: SearchRun) -> StrategyOutcome:
        if not self.deep_search_enabled:
            return await self._complex_search(run, SearchStrategy.DEEP)

        query = run.query
        sub_questions: Sequence[str] = query.sub_questions if len(query.sub_questions) > 1 else (query.resolved,)
        collection = self._primary_collection(query)
        logger.info(f"Deep search over {len(sub_questions)} sub-questions")

        sub_results = await asyncio.gather(*[
            self._hybrid(run, sub_question, collection, self.top_k, run.params.base_threshold)
            for sub_question in sub_questions
        ])

        return StrategyOutcome(SearchStrategy.DEEP, self.fusion.fuse_by_identity(sub_results))

    async def _default_search(self, run: SearchRun) -> StrategyOutcome:
        results = await self._hybrid(
            run, run.query.resolved, self._primary_collection(run.query), self.top_k, run.params.base_threshold
        )
        return StrategyOutcome(SearchStrategy.DEFAULT, results)
