"""Error handling module for the incident engine."""

from .handlers import (
    BaseIncidentError,
    ConfigurationError,
    DuplicateContentError,
    DuplicateReviewRequired,
    ErrorCategory,
    ErrorContext,
    ErrorHandler,
    ErrorSeverity,
    GeocodingError,
    IncidentValidationError,
    PersistenceError,
    RepositoryError,
    RetrievalError,
    SafetyGateError,
)

__all__ = [
    "BaseIncidentError",
    "ConfigurationError",
    "DuplicateContentError",
    "DuplicateReviewRequired",
    "ErrorCategory",
    "ErrorContext",
    "ErrorHandler",
    "ErrorSeverity",
    "GeocodingError",
    "IncidentValidationError",
    "PersistenceError",
    "RepositoryError",
    "RetrievalError",
    "SafetyGateError",
]
