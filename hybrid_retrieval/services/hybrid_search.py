"""Hybrid search orchestrator tying retrieval, ranking, confidence and learning together."""

import asyncio
import inspect
import time
from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable

from ..adapters.base import RetrievalEngine
from ..adapters.bm25_adapter import BM25Adapter
from ..adapters.registry import CollectionRegistry
from ..adapters.vector_adapter import VectorAdapter
from ..config.settings import (
    get_cache_config,
    get_collections_config,
    get_filter_config,
    get_lexical_config,
    get_rerank_config,
    get_search_config,
    get_threshold_optimizer_config,
    get_vector_config,
)
from ..models.confidence import ConfidenceScorer
from ..models.core import (
    AnalyzedQuery,
    InteractionRecord,
    LearnedParameters,
    SearchResponse,
    SearchStrategy,
)
from ..models.learning_engine import LearningEngine
from ..models.threshold_optimizer import ThresholdOptimizer
from ..utils.cache import ResultCache, make_cache_key
from ..utils.error_handling import ErrorContext, get_error_handler
from ..utils.logging import get_logger
from ..utils.monitoring import MetricsCollector
from .dispatcher import QueryEmbedder, SearchRun, StrategyDispatcher
from .fusion import DynamicFilter, Reranker, apply_context_boost, assign_confidence
from .parameter_store import ParameterStore
from .query_analysis import ContextProvider, IntentProvider, QueryAnalyzer

logger = get_logger(__name__)


@runtime_checkable
class InteractionLogger(Protocol):
    """Receives one InteractionRecord per completed search."""

    def log(self, record: InteractionRecord) -> Any:
        ...


class HybridSearchEngine:
    """Top-level owner of one independent search session.

    Owns the collections, both retrieval engines, the result cache and the
    learning state. Several instances can run side by side without sharing
    any mutable state.
    """

    def __init__(self, registry: Optional[CollectionRegistry] = None,
                 vector_engine: Optional[RetrievalEngine] = None,
                 text_engine: Optional[RetrievalEngine] = None,
                 intent_provider: Optional[IntentProvider] = None,
                 context_provider: Optional[ContextProvider] = None,
                 embedder: Optional[QueryEmbedder] = None,
                 parameter_store: Optional[ParameterStore] = None,
                 interaction_logger: Optional[InteractionLogger] = None,
                 search_config: Optional[Dict[str, Any]] = None,
                 learning_config: Optional[Dict[str, Any]] = None,
                 cache: Optional[ResultCache] = None,
                 metrics: Optional[MetricsCollector] = None):
        """Initialize the hybrid search engine.

        Args:
            registry: Collection registry (a new one is created when omitted)
            vector_engine: Vector engine, defaults to a VectorAdapter
            text_engine: Lexical engine, defaults to a BM25Adapter
            intent_provider: External intent classifier and entity extractor
            context_provider: External conversational memory
            embedder: Query embedder for the vector branch
            parameter_store: Store for learned parameters
            interaction_logger: Receiver of per-search interaction records
            search_config: Search configuration override
            learning_config: Learning configuration override
            cache: Result cache override
            metrics: Metrics collector override
        """
        self.search_config = search_config or get_search_config()
        self.error_handler = get_error_handler()

        self.vector_engine = vector_engine or VectorAdapter(config=get_vector_config())
        self.text_engine = text_engine or BM25Adapter(config=get_lexical_config())
        self.registry = registry or CollectionRegistry()
        for engine in (self.vector_engine, self.text_engine):
            if self.registry.get_engine(engine.engine_id) is not engine:
                self.registry.register_engine(engine)

        cache_config = get_cache_config()
        self.embedding_cache = ResultCache(
            max_size=cache_config.get("generic_max_size", 1000),
            eviction_policy=cache_config.get("eviction_policy", "fifo"),
            default_ttl=cache_config.get("default_ttl"),
            copy_values=False
        )

        collections_config = get_collections_config()
        self.analyzer = QueryAnalyzer(intent_provider, context_provider, collections_config)
        self.dispatcher = StrategyDispatcher(
            self.registry,
            vector_engine=self.vector_engine,
            text_engine=self.text_engine,
            embedder=embedder,
            search_config=self.search_config,
            error_handler=self.error_handler,
            embedding_cache=self.embedding_cache
        )

        rerank_config = get_rerank_config()
        self.reranker = Reranker(
            order=rerank_config.get("order", Reranker.DEFAULT_ORDER),
            intent_boost=rerank_config.get("intent_boost", 1.2),
            entity_weight=rerank_config.get("entity_weight", 0.3),
            completeness_weight=rerank_config.get("completeness_weight", 0.15),
            freshness_weight=rerank_config.get("freshness_weight", 0.1),
            multi_source_boost=rerank_config.get("multi_source_boost", 1.15),
            collections_config=collections_config
        )
        self.context_relevance_trigger = rerank_config.get("context_relevance_trigger", 0.3)

        filter_config = get_filter_config()
        self.filter = DynamicFilter(
            adaptive=filter_config.get("adaptive_threshold", True),
            spread_trigger=filter_config.get("spread_trigger", 0.3),
            relaxed_factor=filter_config.get("relaxed_factor", 0.85),
            fallback_count=filter_config.get("fallback_count", 3)
        )

        self.confidence_scorer = ConfidenceScorer(collections_config=collections_config)
        self.learning = LearningEngine(
            config=learning_config,
            store=parameter_store,
            initial_parameters=LearnedParameters.from_dict(self.search_config),
            vector_engine_id=self.vector_engine.engine_id,
            text_engine_id=self.text_engine.engine_id
        )

        optimizer_config = get_threshold_optimizer_config()
        self.threshold_optimizer = ThresholdOptimizer(optimizer_config)
        self.optimize_interval = optimizer_config.get("optimize_interval", 30)

        self.cache = cache or ResultCache(
            max_size=cache_config.get("hybrid_max_size", 100),
            eviction_policy=cache_config.get("eviction_policy", "fifo"),
            default_ttl=cache_config.get("default_ttl")
        )
        self.metrics = metrics or MetricsCollector()
        self.interaction_logger = interaction_logger

        self.top_k = self.search_config.get("top_k", 10)
        self.min_confidence = self.search_config.get("min_confidence", 0.5)
        self._completed_searches = 0

        logger.info(f"HybridSearchEngine initialized with engines "
                    f"'{self.vector_engine.engine_id}' and '{self.text_engine.engine_id}'")

    @property
    def parameters(self) -> LearnedParameters:
        return self.learning.parameters

    def load_collections(self, data: Mapping[str, Any]) -> Dict[str, int]:
        """Load collections and drop cached results computed on the old data."""
        counts = self.registry.load_collections(data)
        self.cache.clear()
        return counts

    def _select_strategy(self, query: AnalyzedQuery, options: Dict[str, Any]) -> SearchStrategy:
        forced = options.get("strategy")
        if forced:
            return forced if isinstance(forced, SearchStrategy) else SearchStrategy(str(forced).upper())
        return self.dispatcher.select(query)

    async def search(self, query: str, options: Optional[Dict[str, Any]] = None, *,
                     intent: Any = None, entities: Optional[Mapping[str, Any]] = None,
                     context: Any = None, query_vector: Any = None) -> SearchResponse:
        """Run one hybrid search.

        The learned parameters are read once at the start, so a concurrent
        learning update never affects a search in flight. A cancelled search
        leaves the cache and the learning history untouched.

        Args:
            query: Raw query text
            options: Search options (``top_k``, ``strategy``); part of the cache key
            intent: Pre-classified intent
            entities: Pre-extracted entities
            context: Conversation context
            query_vector: Pre-computed embedding of the query

        Returns:
            SearchResponse with the ranked results and a confidence report

        Raises:
            NotInitializedError: If the retrieval engines hold no collections
            ValueError: If the query is empty or a forced strategy is unknown
        """
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")

        options = dict(options or {})
        cache_key = make_cache_key(query, options)
        cached = self.cache.get(cache_key)
        if cached is not None:
            self.metrics.increment_counter("cache_hits")
            cached.from_cache = True
            logger.debug(f"Cache hit for '{query[:50]}'")
            return cached
        self.metrics.increment_counter("cache_misses")

        started = time.perf_counter()
        params = self.learning.parameters
        top_k = options.get("top_k", self.top_k)

        with self.metrics.time_operation("search"):
            analyzed = await self.analyzer.analyze(query, intent=intent, entities=entities, context=context)
            strategy = self._select_strategy(analyzed, options)
            run = SearchRun(query=analyzed, params=params, query_vector=query_vector)
            outcome = await self.dispatcher.execute(strategy, run)

            ranked = self.reranker.rerank(outcome.results, analyzed)
            ranked = apply_context_boost(ranked, analyzed, params.context_boost, self.context_relevance_trigger)
            final = self.filter.apply(ranked, params.base_threshold, top_k)
            assign_confidence(final, analyzed, self.min_confidence)
            report = self.confidence_scorer.calculate(analyzed.resolved, final, analyzed.context)

        response = SearchResponse(
            results=final,
            confidence=report,
            analyzed_query=analyzed,
            strategy=outcome.strategy,
            statistics=outcome.statistics,
            elapsed_ms=(time.perf_counter() - started) * 1000
        )

        # Nothing below awaits, so a cancellation can no longer leave partial writes
        record = self._record_outcome(response)
        self.cache.set(cache_key, response)

        if self.interaction_logger is not None:
            await self._log_interaction(record)

        logger.info(f"Search '{query[:50]}' ({outcome.strategy.value}): {len(final)} results, "
                    f"confidence {report.score:.2f} ({report.level}) in {response.elapsed_ms:.1f}ms")
        return response

    def _record_outcome(self, response: SearchResponse) -> InteractionRecord:
        analyzed = response.analyzed_query
        results = response.results
        strategy = response.strategy.value

        engines = []
        for result in results:
            for source in result.sources:
                if source not in engines:
                    engines.append(source)

        record = InteractionRecord(
            query=analyzed.original,
            confidence=response.confidence.score,
            success=LearningEngine.evaluate_success(response.confidence.score, len(results)),
            intent=analyzed.intent,
            entities=dict(analyzed.entities),
            collections=tuple(dict.fromkeys(result.collection or result.document.collection for result in results)),
            engines=tuple(engines),
            strategy=strategy,
            result_count=len(results),
            top_score=results[0].score if results else 0.0
        )

        self.learning.record_search(analyzed, results, strategy)
        self.learning.record_interaction(record)
        self.threshold_optimizer.record_performance({
            "results_count": len(results),
            "quality_score": response.confidence.breakdown["data_quality"].score,
            "has_answer": response.confidence.should_answer,
            "context_match": any(result.context_boosted for result in results) if not analyzed.context.is_empty else True,
            "classified_as_complex": response.strategy in (SearchStrategy.COMPLEX, SearchStrategy.DEEP),
            "score": response.confidence.score
        })

        self._completed_searches += 1
        if self._completed_searches % self.optimize_interval == 0:
            self.threshold_optimizer.optimize()

        self.metrics.increment_counter("searches")
        self.metrics.increment_counter(f"strategy_{strategy.lower()}")
        self.metrics.record_histogram("confidence", response.confidence.score)
        self.metrics.record_histogram("result_count", len(results))
        self.metrics.set_gauge("cache_hit_rate", self.cache.get_stats()["hit_rate"])
        return record

    async def _log_interaction(self, record: InteractionRecord) -> None:
        try:
            outcome = self.interaction_logger.log(record)
            if inspect.isawaitable(outcome):
                await outcome
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.error_handler.handle_error(e, ErrorContext(
                component="HybridSearchEngine",
                operation="log_interaction",
                query=record.query
            ))

    def search_sync(self, query: str, options: Optional[Dict[str, Any]] = None, **kwargs) -> SearchResponse:
        """Blocking wrapper around ``search`` for callers outside an event loop."""
        return asyncio.run(self.search(query, options, **kwargs))

    def submit_feedback(self, response: SearchResponse, feedback: str) -> None:
        """Record user feedback (``accurate``, ``helpful``, ``rejected``, ``irrelevant``) on a response."""
        self.threshold_optimizer.record_performance({
            "results_count": len(response.results),
            "quality_score": response.confidence.breakdown["data_quality"].score,
            "user_feedback": feedback,
            "has_answer": response.confidence.should_answer,
            "score": response.confidence.score
        })
        self.metrics.increment_counter(f"feedback_{feedback}")

    def clear_cache(self) -> None:
        self.cache.clear()
        self.embedding_cache.clear()
        logger.info("Result and embedding caches cleared")

    def save_parameters(self) -> bool:
        return self.learning.save()

    def get_metrics(self) -> Dict[str, Any]:
        """Snapshot of search metrics, cache, learning and engine statistics."""
        return {
            "metrics": self.metrics.get_all_metrics(),
            "cache": self.cache.get_stats(),
            "embedding_cache": self.embedding_cache.get_stats(),
            "learning": self.learning.get_stats(),
            "confidence": self.confidence_scorer.get_statistics(),
            "thresholds": self.threshold_optimizer.get_statistics(),
            "engines": {
                engine.engine_id: engine.get_stats() for engine in (self.vector_engine, self.text_engine)
            },
            "registry": self.registry.get_registry_status(),
        }
