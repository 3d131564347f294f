"""Canonical record selection for a duplicate cluster."""

from datetime import datetime, timezone
from typing import List, Sequence

from ..models import IncidentRecord, ensure_utc

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def priority_key(record: IncidentRecord):
    """Verified, then longest description, then most recently updated, then completeness."""
    updated = ensure_utc(record.updated_at) if record.updated_at else _EPOCH
    return (
        record.verified,
        record.description_length(),
        updated,
        record.completeness(),
    )


class RepresentativeSelector:
    """Picks the record a cluster is consolidated into.

    Remaining ties keep input order (``sorted`` is stable), so identical
    input always yields the same canonical record.
    """

    def rank(self, members: Sequence[IncidentRecord]) -> List[IncidentRecord]:
        return sorted(members, key=priority_key, reverse=True)

    def select(self, members: Sequence[IncidentRecord]) -> IncidentRecord:
        if not members:
            raise ValueError("Cannot select a representative from an empty cluster")
        return self.rank(members)[0]
