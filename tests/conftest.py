"""Test configuration and fixtures for the incident deduplication engine."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

import pytest

from incidentcore.deduplication.audit_system import DeduplicationAudit
from incidentcore.logging_config import setup_logging
from incidentcore.models import IncidentRecord
from incidentcore.repositories import SQLiteIncidentRepository

BASE_TIME = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)

# Eastern Aleppo, [lon, lat]
BASE_COORDINATES = [37.1600, 36.2000]

BASE_DESCRIPTION = "Airstrike hit a residential building in the eastern district of the city"


def record_data(**overrides) -> Dict[str, Any]:
    """Raw incident data with sensible defaults; keys are replaced, not merged."""
    data: Dict[str, Any] = {
        "type": "AIRSTRIKE",
        "occurred_at": BASE_TIME,
        "location": {
            "name": {"en": "Aleppo", "ar": "حلب"},
            "coordinates": list(BASE_COORDINATES),
            "administrative_division": {"en": "Aleppo Governorate", "ar": "محافظة حلب"},
        },
        "description": {"en": BASE_DESCRIPTION, "ar": ""},
        "perpetrator_affiliation": "assad_regime",
        "casualties": 3,
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_record():
    """Factory building validated IncidentRecords from the default data."""

    def factory(**overrides) -> IncidentRecord:
        return IncidentRecord.model_validate(record_data(**overrides))

    return factory


@pytest.fixture
def make_location():
    """Factory for location dicts with optional coordinate offsets."""

    def factory(d_lon: float = 0.0, d_lat: float = 0.0, **overrides) -> Dict[str, Any]:
        location = {
            "name": {"en": "Aleppo", "ar": "حلب"},
            "coordinates": [BASE_COORDINATES[0] + d_lon, BASE_COORDINATES[1] + d_lat],
            "administrative_division": {"en": "Aleppo Governorate", "ar": "محافظة حلب"},
        }
        location.update(overrides)
        return location

    return factory


@pytest.fixture
def repository(tmp_path):
    """SQLite repository in a temporary directory."""
    repo = SQLiteIncidentRepository(str(tmp_path / "incidents.db"))
    yield repo
    repo.close()


@pytest.fixture
def audit(tmp_path):
    """Audit store in a temporary directory."""
    return DeduplicationAudit(str(tmp_path / "audit.db"))


@pytest.fixture
def configured_logging(tmp_path):
    """JSON logging to a file in a temporary directory; yields the log path."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    log_path = tmp_path / "run.log"
    setup_logging(format="json", level="INFO", log_file=str(log_path))
    yield log_path
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def read_log_lines(log_path):
    """Flush handlers and parse every JSON log line written so far."""
    for handler in logging.getLogger().handlers:
        handler.flush()
    text = log_path.read_text(encoding="utf-8")
    return [json.loads(line) for line in text.splitlines() if line.strip()]
