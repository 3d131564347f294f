"""Services for incident creation and geocoding."""

from .creation import BatchResult, CreationOutcome, IncidentCreationService
from .geocoding import GeoCandidate, GeocodingBudget, GeocodingService

__all__ = [
    "BatchResult",
    "CreationOutcome",
    "IncidentCreationService",
    "GeoCandidate",
    "GeocodingBudget",
    "GeocodingService",
]
