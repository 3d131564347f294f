"""
Cluster Builder

Groups duplicate records by single linkage from a seed: each unvisited
record seeds a cluster and every remaining unvisited record that the
classifier judges a duplicate of the seed joins it. Members are only
compared with the seed, not with each other, so a member may match the
seed without matching every other member. A record joins at most one
cluster per run.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..models import IncidentRecord
from .candidates import creation_order
from .classifier import DuplicateClassifier
from .similarity_scoring import SimilarityResult, SimilarityScorer

logger = logging.getLogger(__name__)


@dataclass
class DuplicateCluster:
    """Records judged to describe the same event, seeded by ``members[0]``."""
    members: List[IncidentRecord]
    similarities: Dict[str, SimilarityResult] = field(default_factory=dict)
    canonical_id: Optional[str] = None

    @property
    def seed(self) -> IncidentRecord:
        return self.members[0]

    @property
    def size(self) -> int:
        return len(self.members)

    @property
    def member_ids(self) -> List[str]:
        return [m.id for m in self.members]

    @property
    def canonical(self) -> Optional[IncidentRecord]:
        for member in self.members:
            if member.id == self.canonical_id:
                return member
        return None

    @property
    def absorbed(self) -> List[IncidentRecord]:
        return [m for m in self.members if m.id != self.canonical_id]

    def breakdown(self) -> Dict[str, Dict[str, Any]]:
        """Similarity of each joined member against the seed."""
        return {record_id: result.to_dict() for record_id, result in self.similarities.items()}


class ClusterBuilder:
    """Seed-based clustering over a candidate set."""

    def __init__(
        self,
        scorer: SimilarityScorer,
        classifier: DuplicateClassifier,
        threshold: Optional[float] = None,
        order_key: Callable[[IncidentRecord], Any] = creation_order,
    ):
        self.scorer = scorer
        self.classifier = classifier
        self.threshold = threshold
        self.order_key = order_key
        self.stats = {"comparisons": 0, "clusters": 0}

    def build(self, records: List[IncidentRecord]) -> List[DuplicateCluster]:
        """Clusters with two or more members, in processing order."""
        ordered = sorted(records, key=self.order_key)
        visited = set()
        clusters = []

        for i, seed in enumerate(ordered):
            if i in visited:
                continue
            visited.add(i)
            cluster = DuplicateCluster(members=[seed])

            for j in range(i + 1, len(ordered)):
                if j in visited:
                    continue
                other = ordered[j]
                result = self.scorer.score(seed, other)
                self.stats["comparisons"] += 1
                if self.classifier.is_duplicate(result, self.threshold):
                    cluster.members.append(other)
                    cluster.similarities[other.id] = result
                    visited.add(j)

            if cluster.size > 1:
                clusters.append(cluster)
                logger.debug(f"   🔗 Cluster seeded by {seed.id}: {cluster.size} members")

        self.stats["clusters"] += len(clusters)
        return clusters

    def build_from_buckets(self, buckets: List[List[IncidentRecord]]) -> List[DuplicateCluster]:
        clusters = []
        for bucket in buckets:
            clusters.extend(self.build(bucket))
        return clusters
