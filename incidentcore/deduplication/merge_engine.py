"""
Merge Engine

Consolidates a canonical incident record with the duplicates it absorbs.
Every model field is assigned a merge rule in ``FIELD_RULES``; a field
without a rule is a programming error, not something silently copied.

Merges are monotonic: counts never shrink, ``verified`` is never unset,
certainty never drops, coordinates are never replaced once set, and
evidence (victims, media links, tags, sources) is only ever added.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..models import (
    IncidentRecord,
    LocalizedText,
    Location,
    PerpetratorAffiliation,
    utcnow,
)
from .content_identity import compute_content_hash

logger = logging.getLogger(__name__)

SOURCE_DELIMITER = "; "

FIELD_RULES: Dict[str, str] = {
    "id": "identity",
    "type": "identity",
    "occurred_at": "identity",
    "created_at": "identity",
    "created_by": "identity",
    "description": "longer_text",
    "source": "concat_text",
    "source_url": "concat_text",
    "verification_method": "fill_text",
    "perpetrator": "fill_text",
    "location": "location",
    "victims": "victims",
    "media_links": "unique_links",
    "tags": "unique_tags",
    "related_violations": "related",
    "casualties": "max_count",
    "kidnapped_count": "max_count",
    "detained_count": "max_count",
    "injured_count": "max_count",
    "displaced_count": "max_count",
    "verified": "any_true",
    "certainty_level": "max_certainty",
    "reported_at": "scalar",
    "perpetrator_affiliation": "scalar",
    "content_hash": "derived",
    "updated_at": "derived",
    "updated_by": "derived",
}


@dataclass
class MergePolicy:
    """Options for a merge.

    ``prefer_new`` decides genuine conflicts on generic scalar fields: when
    True the duplicates' values win over the canonical record's.
    """
    prefer_new: bool = False
    merged_by: Optional[str] = None
    now: Optional[datetime] = None


@dataclass
class MergeResult:
    """Outcome of merging one cluster."""
    merged: IncidentRecord
    canonical_id: Optional[str]
    absorbed_ids: List[str] = field(default_factory=list)
    changed_fields: List[str] = field(default_factory=list)


def _is_missing(value: Any) -> bool:
    return value is None or value == PerpetratorAffiliation.UNKNOWN


def merge_text_fill(base: LocalizedText, other: LocalizedText) -> LocalizedText:
    """Keep populated values, fill empty languages from ``other``."""
    return LocalizedText(en=base.en or other.en, ar=base.ar or other.ar)


def merge_text_longer(base: LocalizedText, other: LocalizedText) -> LocalizedText:
    """Fill empty languages; where both differ keep the longer text (base on ties)."""
    merged = {}
    for lang in ("en", "ar"):
        mine, theirs = base.get(lang), other.get(lang)
        if mine and theirs and mine != theirs:
            merged[lang] = theirs if len(theirs) > len(mine) else mine
        else:
            merged[lang] = mine or theirs
    return LocalizedText(**merged)


def merge_text_concat(base: LocalizedText, other: LocalizedText) -> LocalizedText:
    """Append distinct segments of ``other`` to ``base`` with a delimiter.

    Segments already present are skipped, so re-merging is a no-op.
    """
    merged = {}
    for lang in ("en", "ar"):
        segments = [s for s in base.get(lang).split(SOURCE_DELIMITER) if s.strip()]
        for segment in other.get(lang).split(SOURCE_DELIMITER):
            if segment.strip() and segment not in segments:
                segments.append(segment)
        merged[lang] = SOURCE_DELIMITER.join(segments)
    return LocalizedText(**merged)


class MergeEngine:
    """Produces one consolidated record from a canonical record and its duplicates."""

    def __init__(self):
        self._rules: Dict[str, Callable] = {
            "identity": self._keep_canonical,
            "longer_text": self._text_rule(merge_text_longer),
            "concat_text": self._text_rule(merge_text_concat),
            "fill_text": self._text_rule(merge_text_fill),
            "location": self._merge_location,
            "victims": self._merge_victims,
            "unique_links": self._merge_links,
            "unique_tags": self._merge_tags,
            "related": self._merge_related,
            "max_count": self._max_count,
            "any_true": self._any_true,
            "max_certainty": self._max_certainty,
            "scalar": self._merge_scalar,
            "derived": self._keep_canonical,
        }

        missing = set(IncidentRecord.model_fields) - set(FIELD_RULES)
        if missing:
            raise RuntimeError(f"No merge rule for fields: {sorted(missing)}")

        self.stats = {
            "merges": 0,
            "records_absorbed": 0,
            "casualty_corrections": 0,
        }

    def merge(
        self,
        canonical: IncidentRecord,
        duplicates: Sequence[IncidentRecord],
        policy: Optional[MergePolicy] = None,
    ) -> IncidentRecord:
        """Return the consolidated record. Inputs are not modified."""
        return self.merge_with_result(canonical, duplicates, policy).merged

    def merge_with_result(
        self,
        canonical: IncidentRecord,
        duplicates: Sequence[IncidentRecord],
        policy: Optional[MergePolicy] = None,
    ) -> MergeResult:
        policy = policy or MergePolicy()
        duplicates = list(duplicates)
        cluster_ids = {r.id for r in [canonical, *duplicates] if r.id}

        values: Dict[str, Any] = {}
        for field_name, rule in FIELD_RULES.items():
            values[field_name] = self._rules[rule](
                field_name, canonical, duplicates, policy, cluster_ids
            )

        values["updated_at"] = policy.now or utcnow()
        values["updated_by"] = policy.merged_by or canonical.updated_by
        merged = canonical.model_copy(update=values)

        # Recorded deaths can lag behind the victim list; never lower either
        dead = merged.dead_victim_count()
        if dead > merged.casualties:
            merged = merged.model_copy(update={"casualties": dead})
            self.stats["casualty_corrections"] += 1

        merged = merged.model_copy(update={"content_hash": compute_content_hash(merged)})

        changed = [
            name for name in FIELD_RULES
            if name not in ("updated_at", "updated_by", "content_hash")
            and getattr(merged, name) != getattr(canonical, name)
        ]

        self.stats["merges"] += 1
        self.stats["records_absorbed"] += len(duplicates)
        logger.debug(
            f"🔀 Merged {len(duplicates)} record(s) into {canonical.id}; changed: {', '.join(changed) or 'nothing'}"
        )

        return MergeResult(
            merged=merged,
            canonical_id=canonical.id,
            absorbed_ids=[d.id for d in duplicates if d.id and d.id != canonical.id],
            changed_fields=changed,
        )

    # Field rules. Each takes (field, canonical, duplicates, policy, cluster_ids).

    @staticmethod
    def _keep_canonical(name, canonical, duplicates, policy, cluster_ids):
        return getattr(canonical, name)

    @staticmethod
    def _text_rule(combine: Callable[[LocalizedText, LocalizedText], LocalizedText]):
        def rule(name, canonical, duplicates, policy, cluster_ids):
            merged = getattr(canonical, name)
            for duplicate in duplicates:
                merged = combine(merged, getattr(duplicate, name))
            return merged
        return rule

    @staticmethod
    def _merge_location(name, canonical, duplicates, policy, cluster_ids):
        location = canonical.location
        coordinates = location.coordinates
        name_text = location.name
        division = location.administrative_division

        for duplicate in duplicates:
            # Coordinates, once set, are never replaced
            if coordinates is None and duplicate.location.coordinates is not None:
                coordinates = duplicate.location.coordinates
            name_text = merge_text_fill(name_text, duplicate.location.name)
            division = merge_text_fill(division, duplicate.location.administrative_division)

        return Location(
            coordinates=coordinates,
            name=name_text,
            administrative_division=division,
        )

    @staticmethod
    def _merge_victims(name, canonical, duplicates, policy, cluster_ids):
        """Union keyed by victim identity.

        Per key, the merged record holds as many victims as the single input
        that lists the most, so one person reported twice stays one person
        while a report of two indistinguishable victims keeps both.
        """
        merged = list(canonical.victims)
        held = Counter(v.identity_key() for v in merged)

        for duplicate in duplicates:
            seen = Counter()
            for victim in duplicate.victims:
                key = victim.identity_key()
                seen[key] += 1
                if seen[key] > held[key]:
                    merged.append(victim)
                    held[key] += 1
        return merged

    @staticmethod
    def _merge_links(name, canonical, duplicates, policy, cluster_ids):
        merged = list(dict.fromkeys(canonical.media_links))
        for duplicate in duplicates:
            for link in duplicate.media_links:
                if link not in merged:
                    merged.append(link)
        return merged

    @staticmethod
    def _merge_tags(name, canonical, duplicates, policy, cluster_ids):
        merged = []
        labels = set()
        for tag in [*canonical.tags, *(t for d in duplicates for t in d.tags)]:
            if tag.en not in labels:
                merged.append(tag)
                labels.add(tag.en)
        return merged

    @staticmethod
    def _merge_related(name, canonical, duplicates, policy, cluster_ids):
        merged = []
        for ref in [*canonical.related_violations, *(r for d in duplicates for r in d.related_violations)]:
            if ref not in cluster_ids and ref not in merged:
                merged.append(ref)
        return merged

    @staticmethod
    def _max_count(name, canonical, duplicates, policy, cluster_ids):
        return max(getattr(record, name) for record in [canonical, *duplicates])

    @staticmethod
    def _any_true(name, canonical, duplicates, policy, cluster_ids):
        return any(getattr(record, name) for record in [canonical, *duplicates])

    @staticmethod
    def _max_certainty(name, canonical, duplicates, policy, cluster_ids):
        return max(
            (getattr(record, name) for record in [canonical, *duplicates]),
            key=lambda level: level.rank,
        )

    @staticmethod
    def _merge_scalar(name, canonical, duplicates, policy, cluster_ids):
        value = getattr(canonical, name)
        for duplicate in duplicates:
            theirs = getattr(duplicate, name)
            if _is_missing(theirs):
                continue
            if _is_missing(value) or policy.prefer_new:
                value = theirs
        return value
