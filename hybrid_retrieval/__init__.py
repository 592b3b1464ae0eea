# Hybrid Retrieval Core - Main package

from .config.settings import config, config_manager
from .utils.logging import setup_logging, get_logger
from .models import (
    Document,
    AnalyzedQuery,
    RankedResult,
    ConfidenceReport,
    LearnedParameters,
    SearchResponse,
    SearchStrategy,
)
from .services import HybridSearchEngine, JsonParameterStore

__version__ = "0.1.0"

__all__ = [
    "config",
    "config_manager",
    "setup_logging",
    "get_logger",
    "Document",
    "AnalyzedQuery",
    "RankedResult",
    "ConfidenceReport",
    "LearnedParameters",
    "SearchResponse",
    "SearchStrategy",
    "HybridSearchEngine",
    "JsonParameterStore",
]
