"""
Duplicate Classifier

Turns a SimilarityResult into a duplicate decision: essential-match gating
(type, time, location), a description floor that relaxes when the
perpetrator also agrees, and a total-score threshold.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from ..config import ClassifierConfig
from ..models import IncidentRecord
from .similarity_scoring import SimilarityResult

logger = logging.getLogger(__name__)


class MatchKind(str, Enum):
    """Outcome of the creation-time duplicate check."""
    EXACT = "exact"
    SIMILARITY = "similarity"
    NONE = "none"


@dataclass
class MatchDecision:
    """A creation-time classification with its evidence."""
    kind: MatchKind
    similarity: SimilarityResult
    counts_equal: bool = False

    @property
    def is_duplicate(self) -> bool:
        return self.kind != MatchKind.NONE

    def explain(self) -> Dict[str, Any]:
        return {
            "match_type": self.kind.value,
            "counts_equal": self.counts_equal,
            "similarity": self.similarity.to_dict(),
        }


class DuplicateClassifier:
    """Binary duplicate decisions over scored record pairs."""

    def __init__(self, config: Optional[ClassifierConfig] = None):
        self.config = config or ClassifierConfig()

    @staticmethod
    def essential_match(result: SimilarityResult) -> bool:
        return result.same_type and result.within_time_window and result.location_match

    def description_ok(self, result: SimilarityResult) -> bool:
        if self.essential_match(result) and result.same_perpetrator:
            return result.description_similarity >= self.config.strong_match_description_min
        return result.description_similarity >= self.config.description_min

    def is_duplicate(self, result: SimilarityResult, threshold: Optional[float] = None) -> bool:
        """Offline-pass decision.

        Missing data lowers the individual criteria, so insufficient
        information resolves to False rather than raising.
        """
        if threshold is None:
            threshold = self.config.duplicate_threshold
        return (
            self.essential_match(result)
            and self.description_ok(result)
            and result.total >= threshold
        )

    def classify_creation(
        self, result: SimilarityResult, a: IncidentRecord, b: IncidentRecord
    ) -> MatchDecision:
        """Creation-time decision: exact match, similarity match or none.

        ``result`` must come from a scorer configured with the tight
        creation-time radius.
        """
        counts_equal = a.counts() == b.counts()
        near = (
            result.location_method == "coordinates"
            and result.distance_m <= self.config.exact_match_radius_m
        ) or (result.location_method == "name" and result.location_match)

        if result.same_type and result.within_time_window and near and counts_equal:
            return MatchDecision(MatchKind.EXACT, result, counts_equal=True)

        if (
            result.total >= self.config.similarity_match_threshold
            and self.description_ok(result)
        ):
            return MatchDecision(MatchKind.SIMILARITY, result, counts_equal=counts_equal)

        return MatchDecision(MatchKind.NONE, result, counts_equal=counts_equal)
