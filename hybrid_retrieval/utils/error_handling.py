"""Error taxonomy and centralized error handling for the hybrid retrieval core."""

import logging
import threading
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    TIMEOUT = "timeout"
    VALIDATION = "validation"
    DATA = "data"
    STATE = "state"
    LEARNING = "learning"
    PERSISTENCE = "persistence"
    CONFIGURATION = "configuration"
    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """Context information for errors."""
    component: str
    operation: str
    engine_id: Optional[str] = None
    query: Optional[str] = None
    collection: Optional[str] = None
    document_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    additional_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ErrorResponse:
    """Standardized error response model."""
    error_code: str
    message: str
    severity: ErrorSeverity
    category: ErrorCategory
    context: ErrorContext
    timestamp: datetime = field(default_factory=datetime.now)
    suggestions: List[str] = field(default_factory=list)
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert error response to dictionary."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "timestamp": self.timestamp.isoformat(),
            "suggestions": self.suggestions,
            "context": {
                "component": self.context.component,
                "operation": self.context.operation,
                "engine_id": self.context.engine_id,
                "query": self.context.query,
                "collection": self.context.collection,
                "document_id": self.context.document_id,
                "timestamp": self.context.timestamp.isoformat(),
                "additional_data": self.context.additional_data
            },
            "details": self.details
        }


class RetrievalError(Exception):
    """Base exception for hybrid retrieval errors."""

    def __init__(self, message: str, error_response: Optional[ErrorResponse] = None):
        super().__init__(message)
        self.error_response = error_response
        self.message = message


class NotInitializedError(RetrievalError):
    """Raised when an engine is queried before any collection was loaded."""
    pass


class EmptyCollectionError(RetrievalError):
    """Raised when an operation needs documents but the collection has none."""

    def __init__(self, collection: str, message: Optional[str] = None):
        super().__init__(message or f"Collection '{collection}' has no documents")
        self.collection = collection


class MalformedVectorError(RetrievalError):
    """Raised when a stored or query vector has the wrong shape or bad values."""

    def __init__(self, message: str, document_id: Optional[str] = None):
        super().__init__(message)
        self.document_id = document_id


class InsufficientDataError(RetrievalError):
    """Raised when a learning cycle has too few interactions to adapt."""

    def __init__(self, available: int, required: int):
        super().__init__(f"Need at least {required} interactions, have {available}")
        self.available = available
        self.required = required


class ErrorHandler:
    """Centralized error handler for standardized error processing."""

    def __init__(self):
        """Initialize error handler."""
        self.error_counts: Dict[str, int] = {}
        self._lock = threading.Lock()

    def handle_error(self, error: Exception, context: ErrorContext) -> ErrorResponse:
        """Handle and classify an error.

        Args:
            error: Exception that occurred
            context: Error context information

        Returns:
            Standardized error response
        """
        error_code, category, severity = self._classify_error(error)

        suggestions = self._generate_suggestions(error, category)

        error_response = ErrorResponse(
            error_code=error_code,
            message=str(error),
            severity=severity,
            category=category,
            context=context,
            suggestions=suggestions,
            details=self._extract_error_details(error)
        )

        self._track_error(error_code, context)

        self._log_error(error_response, error)

        return error_response

    def _classify_error(self, error: Exception) -> Tuple[str, ErrorCategory, ErrorSeverity]:
        """Classify error and determine code, category, and severity.

        Args:
            error: Exception to classify

        Returns:
            Tuple of (error_code, category, severity)
        """
        error_type = type(error).__name__

        if isinstance(error, MalformedVectorError):
            return "DATA_MALFORMED_VECTOR", ErrorCategory.DATA, ErrorSeverity.LOW

        if isinstance(error, EmptyCollectionError):
            return "DATA_EMPTY_COLLECTION", ErrorCategory.DATA, ErrorSeverity.LOW

        if isinstance(error, NotInitializedError):
            return "STATE_NOT_INITIALIZED", ErrorCategory.STATE, ErrorSeverity.HIGH

        if isinstance(error, InsufficientDataError):
            return "LEARNING_INSUFFICIENT_DATA", ErrorCategory.LEARNING, ErrorSeverity.LOW

        if "Timeout" in error_type or "timeout" in str(error).lower():
            return f"TIMEOUT_{error_type.upper()}", ErrorCategory.TIMEOUT, ErrorSeverity.MEDIUM

        if "Validation" in error_type or "ValueError" in error_type or "TypeError" in error_type:
            return f"VALIDATION_{error_type.upper()}", ErrorCategory.VALIDATION, ErrorSeverity.LOW

        if "JSON" in error_type or "OSError" in error_type or "Permission" in error_type:
            return f"PERSISTENCE_{error_type.upper()}", ErrorCategory.PERSISTENCE, ErrorSeverity.MEDIUM

        if "Config" in error_type or "Setting" in error_type:
            return f"CONFIG_{error_type.upper()}", ErrorCategory.CONFIGURATION, ErrorSeverity.MEDIUM

        return f"INTERNAL_{error_type.upper()}", ErrorCategory.INTERNAL, ErrorSeverity.MEDIUM

    def _generate_suggestions(self, error: Exception, category: ErrorCategory) -> List[str]:
        """Generate helpful suggestions based on error type.

        Args:
            error: Exception that occurred
            category: Error category

        Returns:
            List of suggestion strings
        """
        suggestions = []

        if category == ErrorCategory.TIMEOUT:
            suggestions.extend([
                "Increase search.branch_timeout",
                "Reduce the number of target collections"
            ])
        elif category == ErrorCategory.DATA:
            suggestions.extend([
                "Check the document vectors match the configured dimension",
                "Reload the affected collection"
            ])
        elif category == ErrorCategory.STATE:
            suggestions.append("Load at least one collection before searching")
        elif category == ErrorCategory.VALIDATION:
            suggestions.append("Check input data format and values")
        elif category == ErrorCategory.PERSISTENCE:
            suggestions.append("Verify the parameter store path is writable and holds valid JSON")
        elif category == ErrorCategory.CONFIGURATION:
            suggestions.extend([
                "Review configuration files",
                "Check HYBRID_* environment variables"
            ])

        return suggestions

    def _extract_error_details(self, error: Exception) -> Dict[str, Any]:
        """Extract detailed information from error.

        Args:
            error: Exception to extract details from

        Returns:
            Dictionary containing error details
        """
        details = {
            "type": type(error).__name__,
            "message": str(error),
            "traceback": traceback.format_exc()
        }

        if hasattr(error, '__dict__'):
            for key, value in error.__dict__.items():
                if not key.startswith('_') and key not in ['args', 'error_response']:
                    if isinstance(value, (str, int, float, bool, list, dict)):
                        details[key] = value

        return details

    def _track_error(self, error_code: str, context: ErrorContext) -> None:
        """Track error occurrence for monitoring.

        Args:
            error_code: Error code to track
            context: Error context
        """
        tracking_key = f"{context.component}:{error_code}"
        with self._lock:
            self.error_counts[tracking_key] = self.error_counts.get(tracking_key, 0) + 1

    def _log_error(self, error_response: ErrorResponse, original_error: Exception) -> None:
        """Log error with appropriate level based on severity.

        Args:
            error_response: Standardized error response
            original_error: Original exception
        """
        log_message = (
            f"Error in {error_response.context.component}.{error_response.context.operation}: "
            f"{error_response.message}"
        )

        if error_response.severity == ErrorSeverity.CRITICAL:
            logger.critical(log_message, exc_info=original_error)
        elif error_response.severity == ErrorSeverity.HIGH:
            logger.error(log_message, exc_info=original_error)
        elif error_response.severity == ErrorSeverity.MEDIUM:
            logger.warning(log_message)
        else:
            logger.info(log_message)

    def get_error_statistics(self) -> Dict[str, Any]:
        """Get error statistics for monitoring.

        Returns:
            Dictionary containing error statistics
        """
        with self._lock:
            counts = dict(self.error_counts)

        return {
            "total_errors": sum(counts.values()),
            "error_counts_by_type": counts
        }

    def reset_statistics(self) -> None:
        """Reset error statistics."""
        with self._lock:
            self.error_counts.clear()
        logger.info("Error statistics reset")


# Global error handler instance
error_handler = ErrorHandler()


def get_error_handler() -> ErrorHandler:
    """Get the global error handler instance.

    Returns:
        Global ErrorHandler instance
    """
    return error_handler
