"""
Duplicate Detection and Consolidation for Incident Records

Finds records that describe the same real-world incident, whether
reported in English, Arabic or both, and consolidates them into one
canonical record without losing evidence.

Components:
- Similarity Scoring: Composite per-criterion comparison of two records
- Classifier: Duplicate decisions for the offline pass and creation path
- Candidates: Store lookups and corpus bucketing ahead of scoring
- Clustering: Seed-based grouping of duplicates
- Merge Engine: Field-by-field consolidation with monotonic rules
- Consolidation: Offline runner with dry run and safety gates
- Audit System: Merge audit trail and human review queue

Usage:
    from incidentcore.deduplication import ConsolidationRunner, ConsolidationOptions

    runner = ConsolidationRunner(repository)
    report = runner.run(ConsolidationOptions(dry_run=True))
"""

from .audit_system import AuditRecord, DeduplicationAudit, ReviewTask
from .candidates import CandidateRetriever, creation_order
from .classifier import DuplicateClassifier, MatchDecision, MatchKind
from .clustering import ClusterBuilder, DuplicateCluster
from .consolidation import (
    ClusterOutcome,
    ConsolidationOptions,
    ConsolidationReport,
    ConsolidationRunner,
)
from .content_identity import compute_content_hash, content_fingerprint, with_content_hash
from .geo import haversine_distance
from .merge_engine import FIELD_RULES, MergeEngine, MergePolicy, MergeResult
from .representative import RepresentativeSelector
from .similarity_scoring import SimilarityResult, SimilarityScorer
from .text_similarity import normalize_text, text_similarity

__all__ = [
    # Scoring
    "SimilarityScorer",
    "SimilarityResult",
    "haversine_distance",
    "normalize_text",
    "text_similarity",
    # Classification and grouping
    "DuplicateClassifier",
    "MatchDecision",
    "MatchKind",
    "CandidateRetriever",
    "creation_order",
    "ClusterBuilder",
    "DuplicateCluster",
    "RepresentativeSelector",
    # Merging
    "FIELD_RULES",
    "MergeEngine",
    "MergePolicy",
    "MergeResult",
    "compute_content_hash",
    "content_fingerprint",
    "with_content_hash",
    # Orchestration
    "ConsolidationRunner",
    "ConsolidationOptions",
    "ConsolidationReport",
    "ClusterOutcome",
    # Audit system
    "DeduplicationAudit",
    "ReviewTask",
    "AuditRecord",
]
