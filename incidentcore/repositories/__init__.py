"""Repository layer for incident persistence."""

from .base import IncidentRepository
from .sqlite import SQLiteIncidentRepository

__all__ = [
    "IncidentRepository",
    "SQLiteIncidentRepository",
]
