"""Data models for incident records."""

from .incident import (
    COUNT_FIELDS,
    CertaintyLevel,
    Coordinates,
    Gender,
    IncidentRecord,
    IncidentRef,
    IncidentType,
    LocalizedText,
    Location,
    PerpetratorAffiliation,
    Tag,
    Victim,
    VictimStatus,
    ensure_utc,
    utcnow,
)

__all__ = [
    "COUNT_FIELDS",
    "CertaintyLevel",
    "Coordinates",
    "Gender",
    "IncidentRecord",
    "IncidentRef",
    "IncidentType",
    "LocalizedText",
    "Location",
    "PerpetratorAffiliation",
    "Tag",
    "Victim",
    "VictimStatus",
    "ensure_utc",
    "utcnow",
]
