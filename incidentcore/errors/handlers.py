"""Error taxonomy and central error handler for the incident engine."""

import logging
import sqlite3
import threading
import traceback
from collections import Counter, deque
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Optional


class ErrorSeverity(Enum):
    """Error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


_SEVERITY_LOG_LEVELS = {
    ErrorSeverity.LOW: logging.INFO,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


class ErrorCategory(Enum):
    """Which stage of the pipeline failed."""
    VALIDATION = "validation"
    RETRIEVAL = "retrieval"
    PERSISTENCE = "persistence"
    GEOCODING = "geocoding"
    DUPLICATE = "duplicate"
    SAFETY = "safety"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Where in the pipeline an error happened."""
    operation: str
    incident_id: Optional[str] = None
    run_id: Optional[str] = None
    user_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


class BaseIncidentError(Exception):
    """Base exception for all incident engine errors.

    Subclasses set ``severity``, ``category`` and ``retryable`` as class
    defaults; the constructor may override severity and retryability for a
    single instance.
    """

    severity = ErrorSeverity.MEDIUM
    category = ErrorCategory.UNKNOWN
    retryable = False

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        severity: Optional[ErrorSeverity] = None,
        retryable: Optional[bool] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context
        self.cause = cause
        if severity is not None:
            self.severity = severity
        if retryable is not None:
            self.retryable = retryable
        self.timestamp = datetime.now(timezone.utc)

        self.stack_trace = None
        if cause is not None:
            self.stack_trace = "".join(
                traceback.format_exception(type(cause), cause, cause.__traceback__)
            )

    def user_message(self) -> str:
        return f"An error occurred: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form for logs and JSON output."""
        return {
            "error_type": self.__class__.__name__,
            "error_message": self.message,
            "context": self.context.to_dict() if self.context else None,
            "cause": str(self.cause) if self.cause else None,
            "severity": self.severity.value,
            "category": self.category.value,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat(),
            "stack_trace": self.stack_trace,
        }


class IncidentValidationError(BaseIncidentError):
    """Malformed incident input, rejected before any scoring."""

    severity = ErrorSeverity.LOW
    category = ErrorCategory.VALIDATION

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message, context=context, cause=cause)
        self.field = field
        self.value = value
        self.errors = errors or []

    def user_message(self) -> str:
        if self.field:
            return f"Invalid value for field '{self.field}': {self.message}"
        return f"Validation error: {self.message}"


class ConfigurationError(BaseIncidentError):
    """Invalid configuration file or values."""

    severity = ErrorSeverity.HIGH
    category = ErrorCategory.CONFIGURATION

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message, cause=cause)


class RepositoryError(BaseIncidentError):
    """Persistence layer error."""

    severity = ErrorSeverity.HIGH
    category = ErrorCategory.PERSISTENCE


class RetrievalError(RepositoryError):
    """Candidate lookup failed. Callers must not treat this as 'no duplicates'."""

    category = ErrorCategory.RETRIEVAL
    retryable = True

    def user_message(self) -> str:
        return "Duplicate check could not read existing records. Please try again later."


class PersistenceError(RepositoryError):
    """A write against the store failed."""

    retryable = True


class DuplicateContentError(PersistenceError):
    """Create or update rejected by the unique content hash constraint."""

    category = ErrorCategory.DUPLICATE
    retryable = False

    def __init__(self, message: str, content_hash: str, cause: Optional[Exception] = None):
        super().__init__(message, cause=cause)
        self.content_hash = content_hash


class GeocodingError(BaseIncidentError):
    """Location could not be resolved in any language."""

    category = ErrorCategory.GEOCODING

    def __init__(
        self,
        message: str,
        place_name: Optional[str] = None,
        attempts: Optional[Dict[str, str]] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message, context=context)
        self.place_name = place_name
        self.attempts = attempts or {}

    def user_message(self) -> str:
        return f"Geocoding failed for '{self.place_name}': {self.message}"


class DuplicateReviewRequired(BaseIncidentError):
    """Potential duplicates found and merging is disabled; a human must decide."""

    severity = ErrorSeverity.LOW
    category = ErrorCategory.DUPLICATE

    def __init__(
        self,
        message: str,
        candidates: Optional[List[Dict[str, Any]]] = None,
        review_task_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.candidates = candidates or []
        self.review_task_id = review_task_id

    def user_message(self) -> str:
        return (
            f"Potential duplicate of {len(self.candidates)} existing record(s); "
            "please review before creating"
        )


class SafetyGateError(BaseIncidentError):
    """A consolidation safety gate tripped before any mutation."""

    severity = ErrorSeverity.HIGH
    category = ErrorCategory.SAFETY

    def __init__(self, message: str, gate: str, limit: Any, actual: Any):
        super().__init__(message)
        self.gate = gate
        self.limit = limit
        self.actual = actual

    def user_message(self) -> str:
        return f"Safety gate '{self.gate}' tripped (limit {self.limit}, actual {self.actual})"


class ErrorHandler:
    """
    Central error handler.

    Wraps foreign exceptions into the incident taxonomy, attaches the
    innermost active ``error_context``, logs at a level matching the
    severity and keeps per-type statistics.
    """

    HISTORY_SIZE = 1000
    RETRY_WINDOW = 10
    MAX_RECENT_FAILURES = 5

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._local = threading.local()
        self._lock = threading.Lock()
        self._counts: Counter = Counter()
        self._history: Deque[BaseIncidentError] = deque(maxlen=self.HISTORY_SIZE)

    def _stack(self) -> List[ErrorContext]:
        stack = getattr(self._local, "stack", None)
        if stack is None:
            stack = self._local.stack = []
        return stack

    @contextmanager
    def error_context(self, **kwargs):
        """Push an ErrorContext for errors handled inside the block.

        Usage:
            with handler.error_context(operation="apply_cluster", incident_id=canonical_id):
                repository.apply_merge(merged, absorbed_ids)
        """
        context = ErrorContext(**kwargs)
        stack = self._stack()
        stack.append(context)
        try:
            yield context
        finally:
            stack.pop()

    def get_current_context(self) -> Optional[ErrorContext]:
        stack = self._stack()
        return stack[-1] if stack else None

    def handle_error(
        self,
        error: Exception,
        operation: Optional[str] = None,
        reraise: bool = True,
    ) -> Optional[BaseIncidentError]:
        """Wrap, log and count an error.

        Args:
            error: The error to handle
            operation: Overrides the operation of the current context
            reraise: Raise the wrapped error instead of returning it

        Returns:
            The wrapped error when not re-raised
        """
        context = self.get_current_context()
        if operation and context:
            context.operation = operation

        wrapped = error if isinstance(error, BaseIncidentError) else self._wrap_error(error)
        if wrapped.context is None:
            wrapped.context = context

        self._log_error(wrapped)
        with self._lock:
            self._counts[wrapped.__class__.__name__] += 1
            self._history.append(wrapped)

        if reraise:
            if wrapped is error:
                raise wrapped
            raise wrapped from error
        return wrapped

    @staticmethod
    def _wrap_error(error: Exception) -> BaseIncidentError:
        if isinstance(error, sqlite3.Error):
            return PersistenceError(str(error), cause=error)
        if isinstance(error, ValueError):
            return IncidentValidationError(str(error), cause=error)
        return BaseIncidentError(str(error), cause=error)

    def _log_error(self, error: BaseIncidentError) -> None:
        self.logger.log(
            _SEVERITY_LOG_LEVELS[error.severity],
            f"{error.__class__.__name__}: {error.message}",
            extra={"error": error.to_dict()},
        )

    def _recent(self, count: int) -> List[BaseIncidentError]:
        with self._lock:
            return list(self._history)[-count:]

    def get_error_stats(self) -> Dict[str, Any]:
        """Totals per error type plus distributions over the last 100 errors."""
        with self._lock:
            counts = dict(self._counts)
        recent = self._recent(100)
        severities = Counter(e.severity.value for e in recent)
        retryable = sum(1 for e in recent if e.retryable)

        return {
            "total_errors": sum(counts.values()),
            "error_counts": counts,
            "severity_distribution": {s.value: severities.get(s.value, 0) for s in ErrorSeverity},
            "category_distribution": dict(Counter(e.category.value for e in recent)),
            "retryable_errors": retryable,
            "non_retryable_errors": len(recent) - retryable,
        }

    def should_retry(self, error: BaseIncidentError) -> bool:
        """Retry retryable errors unless the same type keeps failing."""
        if not error.retryable:
            return False
        name = error.__class__.__name__
        repeats = sum(1 for e in self._recent(self.RETRY_WINDOW) if e.__class__.__name__ == name)
        return repeats < self.MAX_RECENT_FAILURES

    def create_user_friendly_message(self, error: BaseIncidentError) -> str:
        return error.user_message()
