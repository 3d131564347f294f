"""
Candidate Retrieval

Narrows the corpus before pairwise scoring. The creation path asks the
store for same-type records in a time window around the new record. The
offline pass groups the corpus into buckets by a composite key and only
scores pairs inside a bucket.

Bucketing is a deliberate recall/precision trade-off: two records that
differ in any key component (for example, reported on either side of
midnight UTC, or with coordinates that round differently) are never
compared in that run.
"""

import logging
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from ..config import RetrievalConfig
from ..errors import RetrievalError
from ..models import IncidentRecord, ensure_utc
from ..repositories import IncidentRepository
from .text_similarity import normalize_text

logger = logging.getLogger(__name__)

BucketKey = Tuple


def creation_order(record: IncidentRecord):
    """Stable processing order: creation time, then id."""
    created = record.created_at.timestamp() if record.created_at else float("inf")
    return (created, record.id or "")


class CandidateRetriever:
    """Cheap pre-filters ahead of the similarity scorer."""

    def __init__(
        self,
        repository: Optional[IncidentRepository] = None,
        config: Optional[RetrievalConfig] = None,
    ):
        self.repository = repository
        self.config = config or RetrievalConfig()

    def for_record(
        self,
        record: IncidentRecord,
        window_hours: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> List[IncidentRecord]:
        """Same-type records within ``±window_hours`` of ``record``.

        Fetches ``limit * 2`` rows so the scorer has room to rank.

        Raises:
            RetrievalError: If the store lookup fails. Never swallowed, the
                caller must not assume there are no duplicates.
        """
        if self.repository is None:
            raise RetrievalError("No repository configured for candidate retrieval")

        window = timedelta(hours=window_hours or self.config.sync_window_hours)
        limit = limit or self.config.candidate_limit
        occurred = ensure_utc(record.occurred_at)

        try:
            candidates = self.repository.find_candidates(
                record.type, occurred - window, occurred + window, limit * 2
            )
        except RetrievalError:
            raise
        except Exception as e:
            raise RetrievalError(f"Candidate lookup failed: {e}", cause=e)

        candidates = [c for c in candidates if not record.id or c.id != record.id]
        logger.debug(f"🔍 {len(candidates)} candidate(s) for {record.type.value} at {occurred.isoformat()}")
        return candidates

    def bucket_key(self, record: IncidentRecord) -> BucketKey:
        parts = []
        for component in self.config.bucket_components:
            if component == "type":
                parts.append(record.type.value)
            elif component == "day":
                parts.append(ensure_utc(record.occurred_at).date().isoformat())
            elif component == "perpetrator":
                parts.append(record.perpetrator_affiliation.value)
            elif component == "coordinates":
                coords = record.location.coordinates
                precision = self.config.coordinate_precision
                parts.append(
                    (round(coords.lon, precision), round(coords.lat, precision)) if coords else None
                )
            elif component == "description":
                prefix = normalize_text(record.description.en)
                parts.append(prefix[:self.config.description_prefix_length])
        return tuple(parts)

    def bucket(self, records: List[IncidentRecord]) -> List[List[IncidentRecord]]:
        """Group records by bucket key; only buckets with two or more members.

        Buckets and their members come out in creation order.
        """
        buckets: Dict[BucketKey, List[IncidentRecord]] = {}
        for record in sorted(records, key=creation_order):
            buckets.setdefault(self.bucket_key(record), []).append(record)

        grouped = [members for members in buckets.values() if len(members) > 1]
        logger.info(f"   🗂️  {len(buckets)} bucket(s), {len(grouped)} with possible duplicates")
        return grouped
