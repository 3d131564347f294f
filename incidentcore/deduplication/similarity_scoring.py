"""
Similarity Scoring System

Weighted multi-criteria comparison of two incident records: type, time,
location, perpetrator, casualty counts and bilingual description text.
"""

import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from fuzzywuzzy import fuzz

from ..config import ScoringConfig
from ..models import IncidentRecord, LocalizedText
from .geo import distance_between
from .text_similarity import text_similarity

logger = logging.getLogger(__name__)

LANGUAGES = ("en", "ar")


@dataclass
class SimilarityResult:
    """Per-criterion comparison of two records plus the weighted total."""
    same_type: bool
    within_time_window: bool
    within_location_radius: bool
    same_perpetrator: bool
    casualty_similarity: float
    description_similarity: float
    total: float
    distance_m: float = math.inf
    location_method: str = "none"  # 'coordinates', 'name', 'none'

    @property
    def location_match(self) -> bool:
        return self.within_location_radius

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["distance_m"] = None if math.isinf(self.distance_m) else round(self.distance_m, 1)
        data["casualty_similarity"] = round(self.casualty_similarity, 4)
        data["description_similarity"] = round(self.description_similarity, 4)
        data["total"] = round(self.total, 4)
        return data


class SimilarityScorer:
    """
    Composite similarity scoring for incident records.

    Each criterion contributes ``weight * score`` to the total. The location
    radius is an operating point: the offline pass uses kilometres, the
    creation-time check uses a tight radius.
    """

    def __init__(self, config: Optional[ScoringConfig] = None):
        self.config = config or ScoringConfig()
        self.weights = self.config.weights

    def score(self, a: IncidentRecord, b: IncidentRecord) -> SimilarityResult:
        """Compare two records."""
        same_type = a.type == b.type
        within_time = self._within_time_window(a, b)
        location_match, distance, method = self._compare_location(a, b)
        same_perpetrator = (
            a.perpetrator_affiliation.value.lower() == b.perpetrator_affiliation.value.lower()
        )
        casualty_score = self.casualty_similarity(a, b)
        description_score = self.description_similarity(a.description, b.description)

        total = (
            self.weights.type * float(same_type)
            + self.weights.time * float(within_time)
            + self.weights.location * float(location_match)
            + self.weights.perpetrator * float(same_perpetrator)
            + self.weights.casualties * casualty_score
            + self.weights.description * description_score
        )

        return SimilarityResult(
            same_type=same_type,
            within_time_window=within_time,
            within_location_radius=location_match,
            same_perpetrator=same_perpetrator,
            casualty_similarity=casualty_score,
            description_similarity=description_score,
            total=max(0.0, min(1.0, total)),
            distance_m=distance,
            location_method=method,
        )

    def _within_time_window(self, a: IncidentRecord, b: IncidentRecord) -> bool:
        delta = abs((a.occurred_at - b.occurred_at).total_seconds())
        return delta <= self.config.time_window_hours * 3600

    def _compare_location(self, a: IncidentRecord, b: IncidentRecord):
        """Return (match, distance_m, method).

        Coordinates decide when both sides have them. Otherwise the location
        names are compared; a name match counts as distance 0.
        """
        if a.location.has_coordinates() and b.location.has_coordinates():
            distance = distance_between(a.location.coordinates, b.location.coordinates)
            return distance <= self.config.location_radius_m, distance, "coordinates"

        name_score = self.name_similarity(a.location.name, b.location.name)
        if name_score is None:
            return False, math.inf, "none"
        if name_score >= self.config.location_name_threshold:
            return True, 0.0, "name"
        return False, math.inf, "name"

    def name_similarity(self, a: LocalizedText, b: LocalizedText) -> Optional[float]:
        """Best same-language name similarity, or None when no pair is comparable."""
        best = None
        for lang in LANGUAGES:
            name_a, name_b = a.get(lang), b.get(lang)
            if not name_a or not name_b:
                continue
            fuzzy = max(
                fuzz.token_sort_ratio(name_a, name_b, force_ascii=False),
                fuzz.token_sort_ratio(name_b, name_a, force_ascii=False),
            ) / 100.0
            score = max(text_similarity(name_a, name_b), fuzzy)
            best = score if best is None else max(best, score)
        return best

    @staticmethod
    def casualty_similarity(a: IncidentRecord, b: IncidentRecord) -> float:
        total_a = a.total_affected()
        total_b = b.total_affected()

        if total_a == 0 and total_b == 0:
            return 1.0
        if total_a == 0 or total_b == 0:
            # Presence against absence is ambiguous, not a mismatch
            return 0.5
        return max(0.0, 1.0 - abs(total_a - total_b) / max(total_a, total_b))

    def description_similarity(self, a: LocalizedText, b: LocalizedText) -> float:
        """Same-language pairs first; cross-language pairs only as a penalised fallback."""
        same_language = [
            text_similarity(a.get(lang), b.get(lang))
            for lang in LANGUAGES
            if a.get(lang) and b.get(lang)
        ]
        if same_language:
            return max(same_language)

        cross_language = [
            text_similarity(a.get(lang_a), b.get(lang_b))
            for lang_a, lang_b in (("en", "ar"), ("ar", "en"))
            if a.get(lang_a) and b.get(lang_b)
        ]
        if cross_language:
            return max(cross_language) * self.config.cross_language_penalty
        return 0.0
