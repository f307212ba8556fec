"""
Error handling framework for the search subsystem: a categorized exception
hierarchy and pluggable error reporting.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Error severity levels for proper escalation."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for better handling strategies."""

    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    CACHE = "cache"
    RANKING = "ranking"
    ANALYTICS = "analytics"
    EXTERNAL_SERVICE = "external_service"
    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """Context information for errors."""

    operation: str
    component: str
    query: Optional[str] = None
    request_id: Optional[str] = None
    additional_data: Optional[Dict[str, Any]] = None


class DealSearchError(Exception):
    """Base exception for all dealsearch errors."""

    code = "UNKNOWN"

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context
        self.cause = cause
        self.user_message = user_message or self._generate_user_message()
        self.timestamp = time.time()

    def _generate_user_message(self) -> str:
        """Generate a user-friendly error message."""
        if self.category == ErrorCategory.VALIDATION:
            return "Invalid search request. Please check your parameters and try again."
        elif self.category == ErrorCategory.EXTERNAL_SERVICE:
            return "Search is temporarily unavailable. Please try again later."
        elif self.category == ErrorCategory.CONFIGURATION:
            return "Search is misconfigured. Please contact the administrator."
        else:
            return "An unexpected error occurred. Please try again later."

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            "type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "category": self.category.value,
            "severity": self.severity.value,
            "timestamp": self.timestamp,
            "context": {
                "operation": self.context.operation if self.context else None,
                "component": self.context.component if self.context else None,
                "query": self.context.query if self.context else None,
                "additional_data": self.context.additional_data if self.context else None,
            },
            "cause": str(self.cause) if self.cause else None,
        }


class ValidationError(DealSearchError):
    """Raised when a search request fails validation."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        self.field = field
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        super().__init__(message, **kwargs)


class ConfigurationError(DealSearchError):
    """Raised when configuration is invalid."""

    code = "CONFIGURATION_ERROR"

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.CONFIGURATION)
        super().__init__(message, **kwargs)


class CacheError(DealSearchError):
    """Internal result cache failure. Never surfaced to search callers."""

    code = "CACHE_ERROR"

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.CACHE)
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        super().__init__(message, **kwargs)


class RankingError(DealSearchError):
    """Ranking failure for a result set."""

    code = "RANKING_ERROR"

    def __init__(self, message: str, entity_type: Optional[str] = None, **kwargs):
        self.entity_type = entity_type
        kwargs.setdefault("category", ErrorCategory.RANKING)
        super().__init__(message, **kwargs)


class AnalyticsError(DealSearchError):
    """Analytics recording or aggregation failure."""

    code = "ANALYTICS_ERROR"

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.ANALYTICS)
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        super().__init__(message, **kwargs)


class FetchError(DealSearchError):
    """Raised when the candidate fetch collaborator fails."""

    code = "FETCH_ERROR"

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.EXTERNAL_SERVICE)
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(message, **kwargs)


def error_code(error: BaseException) -> str:
    """Stable error code for analytics grouping."""
    if isinstance(error, DealSearchError):
        return error.code
    return getattr(error, "code", None) or "UNKNOWN"


# Error reporting


class ErrorReporter(ABC):
    """Abstract base class for error reporting."""

    @abstractmethod
    async def report_error(self, error: DealSearchError) -> None:
        """Report an error to the monitoring system."""
        pass


class LoggingErrorReporter(ErrorReporter):
    """Error reporter that logs errors."""

    async def report_error(self, error: DealSearchError) -> None:
        """Report error by logging."""
        error_dict = error.to_dict()

        if error.severity == ErrorSeverity.CRITICAL:
            logger.critical(f"Critical error: {error.message}", extra={"error_data": error_dict})
        elif error.severity == ErrorSeverity.HIGH:
            logger.error(f"High severity error: {error.message}", extra={"error_data": error_dict})
        elif error.severity == ErrorSeverity.MEDIUM:
            logger.warning(
                f"Medium severity error: {error.message}", extra={"error_data": error_dict}
            )
        else:
            logger.info(f"Low severity error: {error.message}", extra={"error_data": error_dict})


_error_reporter: Optional[ErrorReporter] = None


def set_error_reporter(reporter: Optional[ErrorReporter]) -> None:
    """Set the process-wide error reporter."""
    global _error_reporter
    _error_reporter = reporter


async def report_error(error: DealSearchError) -> None:
    """Report an error using the configured error reporter."""
    if _error_reporter:
        await _error_reporter.report_error(error)
    else:
        logger.error(f"Error: {error.message}", extra={"error_data": error.to_dict()})
