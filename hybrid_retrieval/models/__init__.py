# Data models package

from .core import (
    SearchStrategy,
    ResultKind,
    StatisticType,
    Intent,
    QuestionType,
    RecentContext,
    AnalyzedQuery,
    Document,
    RetrievalHit,
    FusionSource,
    FusedResult,
    RankedResult,
    LearnedParameters,
    InteractionRecord,
    FactorScore,
    ConfidenceReport,
    StatisticalSummary,
    SearchResponse,
)
from .confidence import ConfidenceScorer
from .learning_engine import LearningEngine
from .threshold_optimizer import ThresholdOptimizer

__all__ = [
    "SearchStrategy",
    "ResultKind",
    "StatisticType",
    "Intent",
    "QuestionType",
    "RecentContext",
    "AnalyzedQuery",
    "Document",
    "RetrievalHit",
    "FusionSource",
    "FusedResult",
    "RankedResult",
    "LearnedParameters",
    "InteractionRecord",
    "FactorScore",
    "ConfidenceReport",
    "StatisticalSummary",
    "SearchResponse",
    "ConfidenceScorer",
    "LearningEngine",
    "ThresholdOptimizer",
]
