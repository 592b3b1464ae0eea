"""Services module for the hybrid retrieval core."""

from .query_analysis import QueryAnalyzer, IntentProvider, ContextProvider
from .fusion import RankFusion, Reranker, DynamicFilter, apply_context_boost, assign_confidence
from .dispatcher import StrategyDispatcher, QueryEmbedder, SearchRun, StrategyOutcome
from .parameter_store import ParameterStore, JsonParameterStore
from .hybrid_search import HybridSearchEngine, InteractionLogger

__all__ = [
    'QueryAnalyzer',
    'IntentProvider',
    'ContextProvider',
    'RankFusion',
    'Reranker',
    'DynamicFilter',
    'apply_context_boost',
    'assign_confidence',
    'StrategyDispatcher',
    'QueryEmbedder',
    'SearchRun',
    'StrategyOutcome',
    'ParameterStore',
    'JsonParameterStore',
    'HybridSearchEngine',
    'InteractionLogger',
]
