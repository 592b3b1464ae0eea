# Utilities package

from .cache import ResultCache, make_cache_key
from .error_handling import ErrorContext, ErrorHandler, ErrorResponse, get_error_handler
from .logging import get_logger, setup_logging
from .monitoring import MetricsCollector

__all__ = [
    "ResultCache",
    "make_cache_key",
    "ErrorContext",
    "ErrorHandler",
    "ErrorResponse",
    "get_error_handler",
    "get_logger",
    "setup_logging",
    "MetricsCollector",
]
