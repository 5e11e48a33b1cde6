"""
Error handling framework with specific exception types, user-facing
messages, and pluggable error reporting.
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
    DATABASE = "database"
    FILESYSTEM = "filesystem"
    CONFIGURATION = "configuration"
    EXTERNAL_SERVICE = "external_service"
    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """Context information for errors."""

    operation: str
    component: str
    note_id: Optional[int] = None
    additional_data: Optional[Dict[str, Any]] = None


class BearNotesError(Exception):
    """Base exception for all bearnotes errors."""

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
            return "Invalid input provided. Please check your request and try again."
        elif self.category == ErrorCategory.DATABASE:
            return "Could not read the Bear database. Please try again later."
        elif self.category == ErrorCategory.CONFIGURATION:
            return "The server is misconfigured. Please check your settings."
        elif self.category == ErrorCategory.EXTERNAL_SERVICE:
            return "Bear did not accept the request. Make sure Bear is installed and running."
        else:
            return "An unexpected error occurred. Please try again later."

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "user_message": self.user_message,
            "category": self.category.value,
            "severity": self.severity.value,
            "timestamp": self.timestamp,
            "context": {
                "operation": self.context.operation if self.context else None,
                "component": self.context.component if self.context else None,
                "note_id": self.context.note_id if self.context else None,
                "additional_data": self.context.additional_data if self.context else None,
            },
            "cause": str(self.cause) if self.cause else None,
        }


class ValidationError(BearNotesError):
    """Raised when tool or CLI input is invalid."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        self.field = field
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        if field and "user_message" not in kwargs:
            kwargs["user_message"] = f"Invalid value for '{field}': {message}"
        super().__init__(message, **kwargs)


class ConfigurationError(BearNotesError):
    """Raised when configuration is invalid."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.CONFIGURATION)
        super().__init__(message, **kwargs)


class DatabaseError(BearNotesError):
    """Base class for Bear database errors."""

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs):
        self.operation = operation
        kwargs.setdefault("category", ErrorCategory.DATABASE)
        if operation and "context" not in kwargs:
            kwargs["context"] = ErrorContext(operation=operation, component="database")
        super().__init__(message, **kwargs)


class DatabaseConnectionError(DatabaseError):
    """Raised when the Bear database cannot be opened."""

    def __init__(self, db_path: str, cause: Optional[Exception] = None, **kwargs):
        self.db_path = db_path
        message = f"Cannot open Bear database at {db_path}"
        if cause:
            message += f": {cause}"

        super().__init__(
            message,
            operation="connect",
            severity=ErrorSeverity.HIGH,
            cause=cause,
            user_message=(
                "Cannot access the Bear database. Check that Bear is installed and that "
                "BEAR_MCP_DB_PATH points to its database.sqlite file."
            ),
            **kwargs,
        )


class NoteNotFoundError(BearNotesError):
    """Raised when a note cannot be found by id or title."""

    def __init__(
        self, note_id: Optional[int] = None, title: Optional[str] = None, **kwargs
    ):
        self.note_id = note_id
        self.title = title
        if note_id is not None:
            message = f"Note with ID {note_id} not found"
        else:
            message = f"Note titled '{title}' not found"

        super().__init__(
            message,
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.LOW,
            context=ErrorContext(operation="lookup", component="notes", note_id=note_id),
            user_message=message + ".",
            **kwargs,
        )


class BearAppError(BearNotesError):
    """Raised when a Bear URL-scheme command cannot be delivered."""

    def __init__(self, action: str, message: str, **kwargs):
        self.action = action
        kwargs.setdefault("category", ErrorCategory.EXTERNAL_SERVICE)
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("context", ErrorContext(operation=action, component="bear_urls"))
        super().__init__(message, **kwargs)


# Error reporting and monitoring


class ErrorReporter(ABC):
    """Abstract base class for error reporting."""

    @abstractmethod
    async def report_error(self, error: BearNotesError) -> None:
        """Report an error to the monitoring system."""
        pass


class LoggingErrorReporter(ErrorReporter):
    """Error reporter that logs errors."""

    async def report_error(self, error: BearNotesError) -> None:
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


# Global error reporter instance
_error_reporter: Optional[ErrorReporter] = None


def set_error_reporter(reporter: Optional[ErrorReporter]) -> None:
    """Set the global error reporter."""
    global _error_reporter
    _error_reporter = reporter


async def report_error(error: BearNotesError) -> None:
    """Report an error using the global error reporter."""
    if _error_reporter:
        await _error_reporter.report_error(error)
    else:
        logger.error(f"Error: {error.message}", extra={"error_data": error.to_dict()})
