"""Deterministic content fingerprint for exact-duplicate detection."""

import hashlib
import json

from ..models import IncidentRecord, ensure_utc

DESCRIPTION_PREFIX_LENGTH = 200


def content_fingerprint(record: IncidentRecord) -> dict:
    """The normalized key fields the hash is computed over."""
    coordinates = record.location.coordinates
    return {
        "type": record.type.value,
        "date": ensure_utc(record.occurred_at).strftime("%Y-%m-%d"),
        "perpetrator_affiliation": record.perpetrator_affiliation.value,
        "coordinates": coordinates.as_pair() if coordinates else [],
        "description": record.description.en.strip().lower()[:DESCRIPTION_PREFIX_LENGTH],
    }


def compute_content_hash(record: IncidentRecord) -> str:
    """SHA-256 over the canonical JSON of the key fields."""
    payload = json.dumps(
        content_fingerprint(record),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def with_content_hash(record: IncidentRecord) -> IncidentRecord:
    return record.model_copy(update={"content_hash": compute_content_hash(record)})
