"""
Consolidation Runner

Offline pass over the incident corpus: bucket, cluster, pick a canonical
record per cluster, plan the merge, then apply it. Safety gates run
before anything is written; dry runs stop after planning.
"""

import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog

from ..config import ConsolidationConfig, DedupConfig
from ..errors import (
    DuplicateContentError,
    ErrorHandler,
    PersistenceError,
    SafetyGateError,
)
from ..logging_config import log_context, with_current_context
from ..models import IncidentRecord, IncidentType, utcnow
from ..repositories import IncidentRepository
from .audit_system import DeduplicationAudit
from .candidates import CandidateRetriever, creation_order
from .classifier import DuplicateClassifier
from .clustering import ClusterBuilder, DuplicateCluster
from .content_identity import compute_content_hash
from .merge_engine import MergeEngine, MergePolicy, MergeResult
from .representative import RepresentativeSelector
from .similarity_scoring import SimilarityScorer

logger = structlog.get_logger(__name__)


@dataclass
class ConsolidationOptions:
    """Parameters of one consolidation run."""
    dry_run: bool = True
    min_corpus_size: int = 10
    max_deletions_per_run: int = 100
    similarity_threshold: Optional[float] = None  # None: classifier.duplicate_threshold
    incident_type: Optional[IncidentType] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    merged_by: str = "system"

    @classmethod
    def from_config(cls, config: ConsolidationConfig, **overrides) -> "ConsolidationOptions":
        values = {
            "dry_run": config.dry_run,
            "min_corpus_size": config.min_corpus_size,
            "max_deletions_per_run": config.max_deletions_per_run,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass
class ClusterOutcome:
    """Planned (and possibly applied) consolidation of one cluster."""
    seed_id: str
    canonical_id: str
    absorbed_ids: List[str]
    size: int
    similarities: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    changed_fields: List[str] = field(default_factory=list)
    status: str = "planned"  # planned, applied, failed
    attempts: int = 0
    error: Optional[str] = None
    audit_id: Optional[str] = None
    cluster: Optional[DuplicateCluster] = field(default=None, repr=False)
    merge: Optional[MergeResult] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seed_id": self.seed_id,
            "canonical_id": self.canonical_id,
            "absorbed_ids": self.absorbed_ids,
            "size": self.size,
            "similarities": self.similarities,
            "changed_fields": self.changed_fields,
            "status": self.status,
            "attempts": self.attempts,
            "error": self.error,
            "audit_id": self.audit_id,
        }


@dataclass
class ConsolidationReport:
    """Everything a consolidation run decided and did."""
    run_id: str
    dry_run: bool
    corpus_size: int = 0
    buckets: int = 0
    comparisons: int = 0
    clusters: List[ClusterOutcome] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    processing_time: float = 0.0

    @property
    def planned_deletions(self) -> int:
        return sum(len(c.absorbed_ids) for c in self.clusters)

    @property
    def applied_deletions(self) -> int:
        return sum(len(c.absorbed_ids) for c in self.clusters if c.status == "applied")

    @property
    def failed_clusters(self) -> List[ClusterOutcome]:
        return [c for c in self.clusters if c.status == "failed"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "dry_run": self.dry_run,
            "corpus_size": self.corpus_size,
            "buckets": self.buckets,
            "comparisons": self.comparisons,
            "planned_deletions": self.planned_deletions,
            "applied_deletions": self.applied_deletions,
            "failed_clusters": len(self.failed_clusters),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "processing_time": round(self.processing_time, 3),
            "clusters": [c.to_dict() for c in self.clusters],
        }


class ConsolidationRunner:
    """
    Orchestrates the offline deduplication pipeline.

    Clusters are disjoint, so their merges touch disjoint records and may
    be applied in parallel. Each cluster is written as one unit
    (canonical update plus deletions) and retried as a unit.
    """

    def __init__(
        self,
        repository: IncidentRepository,
        config: Optional[DedupConfig] = None,
        audit: Optional[DeduplicationAudit] = None,
        error_handler: Optional[ErrorHandler] = None,
    ):
        self.repository = repository
        self.config = config or DedupConfig()
        self.audit = audit
        self.error_handler = error_handler or ErrorHandler()

        self.scorer = SimilarityScorer(self.config.scoring)
        self.classifier = DuplicateClassifier(self.config.classifier)
        self.retriever = CandidateRetriever(repository, self.config.retrieval)
        self.selector = RepresentativeSelector()
        self.merge_engine = MergeEngine()

        self.stats = {
            "runs": 0,
            "clusters_applied": 0,
            "clusters_failed": 0,
            "records_deleted": 0,
            "gates_tripped": 0,
        }

    def run(self, options: Optional[ConsolidationOptions] = None) -> ConsolidationReport:
        """Plan and (unless dry run) apply consolidation.

        Raises:
            SafetyGateError: If the corpus is too small or too many deletions
                are planned. Nothing has been written when this is raised.
        """
        options = options or ConsolidationOptions.from_config(self.config.consolidation)
        report = ConsolidationReport(run_id=uuid.uuid4().hex[:12], dry_run=options.dry_run)
        start_time = time.time()
        self.stats["runs"] += 1

        with log_context(run_id=report.run_id):
            corpus = self.repository.list_records(
                options.incident_type, options.since, options.until
            )
            report.corpus_size = len(corpus)
            logger.info(
                "consolidation_started",
                corpus_size=len(corpus),
                dry_run=options.dry_run,
                threshold=self.duplicate_threshold(options),
            )

            if len(corpus) < options.min_corpus_size:
                self._trip_gate(
                    "min_corpus_size", options.min_corpus_size, len(corpus),
                    f"Corpus has {len(corpus)} record(s), below the minimum of {options.min_corpus_size}",
                )

            report.clusters = self.plan(corpus, options, report)

            if report.planned_deletions > options.max_deletions_per_run:
                self._trip_gate(
                    "max_deletions_per_run", options.max_deletions_per_run, report.planned_deletions,
                    f"Run would delete {report.planned_deletions} record(s), "
                    f"above the cap of {options.max_deletions_per_run}",
                )

            for outcome in report.clusters:
                logger.info(
                    "merge_planned",
                    cluster_size=outcome.size,
                    canonical_id=outcome.canonical_id,
                    absorbed_ids=outcome.absorbed_ids,
                    similarities=outcome.similarities,
                )

            if options.dry_run:
                logger.info("dry_run_complete", clusters=len(report.clusters),
                            planned_deletions=report.planned_deletions)
            else:
                self._apply_all(report.clusters, options)

        report.finished_at = utcnow()
        report.processing_time = time.time() - start_time
        logger.info(
            "consolidation_finished",
            clusters=len(report.clusters),
            applied_deletions=report.applied_deletions,
            failed_clusters=len(report.failed_clusters),
            seconds=round(report.processing_time, 2),
        )
        return report

    def duplicate_threshold(self, options: ConsolidationOptions) -> float:
        if options.similarity_threshold is not None:
            return options.similarity_threshold
        return self.config.classifier.duplicate_threshold

    def plan(
        self,
        corpus: List[IncidentRecord],
        options: ConsolidationOptions,
        report: Optional[ConsolidationReport] = None,
    ) -> List[ClusterOutcome]:
        """Bucket, cluster, select and merge in memory. Writes nothing."""
        buckets = self.retriever.bucket(corpus)
        builder = ClusterBuilder(self.scorer, self.classifier, self.duplicate_threshold(options))
        clusters = builder.build_from_buckets(buckets)

        if report is not None:
            report.buckets = len(buckets)
            report.comparisons = builder.stats["comparisons"]

        policy = MergePolicy(prefer_new=False, merged_by=options.merged_by)
        outcomes = []
        for cluster in clusters:
            canonical = self.selector.select(cluster.members)
            cluster.canonical_id = canonical.id
            absorbed = cluster.absorbed
            merge = self.merge_engine.merge_with_result(canonical, absorbed, policy)

            outcomes.append(ClusterOutcome(
                seed_id=cluster.seed.id,
                canonical_id=canonical.id,
                absorbed_ids=[r.id for r in absorbed],
                size=cluster.size,
                similarities=cluster.breakdown(),
                changed_fields=merge.changed_fields,
                cluster=cluster,
                merge=merge,
            ))
        return outcomes

    def _trip_gate(self, gate: str, limit: Any, actual: Any, message: str):
        self.stats["gates_tripped"] += 1
        logger.warning("safety_gate_tripped", gate=gate, limit=limit, actual=actual)
        raise SafetyGateError(message, gate=gate, limit=limit, actual=actual)

    def _apply_all(self, outcomes: List[ClusterOutcome], options: ConsolidationOptions):
        workers = self.config.consolidation.max_workers
        if workers > 1 and len(outcomes) > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                list(executor.map(with_current_context(self._apply_cluster), outcomes))
        else:
            for outcome in outcomes:
                self._apply_cluster(outcome)

        applied = [o for o in outcomes if o.status == "applied"]
        self.stats["clusters_applied"] += len(applied)
        self.stats["clusters_failed"] += len(outcomes) - len(applied)
        self.stats["records_deleted"] += sum(len(o.absorbed_ids) for o in applied)

    def _apply_cluster(self, outcome: ClusterOutcome) -> ClusterOutcome:
        """Write one cluster's merge, retrying the whole unit on failure.

        A failed cluster leaves its absorbed records in place.
        """
        retries = self.config.consolidation.apply_retries

        while outcome.attempts < retries:
            outcome.attempts += 1
            try:
                with self.error_handler.error_context(
                    operation="apply_cluster", incident_id=outcome.canonical_id
                ):
                    self.repository.apply_merge(outcome.merge.merged, outcome.absorbed_ids)
                outcome.status = "applied"
                outcome.error = None
                break
            except PersistenceError as e:
                wrapped = self.error_handler.handle_error(e, reraise=False)
                outcome.status = "failed"
                outcome.error = wrapped.message
                if not wrapped.retryable:
                    break

        if outcome.status == "applied":
            outcome.audit_id = self._record_audit(outcome)
            logger.info("merge_applied", canonical_id=outcome.canonical_id,
                        absorbed_ids=outcome.absorbed_ids, attempts=outcome.attempts)
        else:
            logger.error("merge_failed", canonical_id=outcome.canonical_id,
                         absorbed_ids=outcome.absorbed_ids, error=outcome.error,
                         attempts=outcome.attempts)
        return outcome

    def _record_audit(self, outcome: ClusterOutcome) -> Optional[str]:
        if self.audit is None:
            return None
        cluster = outcome.cluster
        best = max(
            (s.get("total", 0.0) for s in outcome.similarities.values()), default=0.0
        )
        return self.audit.record_merge(
            canonical_before=cluster.canonical.model_dump(mode="json"),
            absorbed=[r.model_dump(mode="json") for r in cluster.absorbed],
            merged=outcome.merge.merged.model_dump(mode="json"),
            decision_maker=outcome.merge.merged.updated_by or "system",
            similarity_score=best,
            evidence={"seed_id": outcome.seed_id, "similarities": outcome.similarities},
            operation_type="consolidation",
        )

    def backfill_content_hashes(self, dry_run: bool = True) -> Dict[str, Any]:
        """Compute missing content hashes.

        A record whose hash is already held by another record lost a
        creation race: it is merged into the holder, never dropped.
        """
        hashed, race_merged = [], []
        pending = sorted(
            (r for r in self.repository.list_records() if not r.content_hash),
            key=creation_order,
        )
        seen: Dict[str, str] = {}

        for record in pending:
            content_hash = compute_content_hash(record)
            holder_id = seen.get(content_hash)
            holder = self.repository.get(holder_id) if holder_id else None
            if holder is None:
                holder = self.repository.find_by_content_hash(content_hash)

            if holder is not None and holder.id != record.id:
                race_merged.append({"id": record.id, "merged_into": holder.id})
                if not dry_run:
                    self._merge_race_loser(holder, record)
                continue

            hashed.append(record.id)
            seen[content_hash] = record.id
            if not dry_run:
                try:
                    self.repository.update(record.model_copy(update={"content_hash": content_hash}))
                except DuplicateContentError:
                    holder = self.repository.find_by_content_hash(content_hash)
                    if holder is None:
                        raise
                    hashed.remove(record.id)
                    race_merged.append({"id": record.id, "merged_into": holder.id})
                    self._merge_race_loser(holder, record)

        logger.info("content_hash_backfill", dry_run=dry_run,
                    hashed=len(hashed), race_merged=len(race_merged))
        return {"dry_run": dry_run, "hashed": hashed, "race_merged": race_merged}

    def _merge_race_loser(self, holder: IncidentRecord, loser: IncidentRecord):
        merged = self.merge_engine.merge(holder, [loser], MergePolicy(merged_by="system"))
        self.repository.apply_merge(merged, [loser.id])
        if self.audit is not None:
            self.audit.record_merge(
                canonical_before=holder.model_dump(mode="json"),
                absorbed=[loser.model_dump(mode="json")],
                merged=merged.model_dump(mode="json"),
                similarity_score=1.0,
                evidence={"reason": "content_hash_collision", "content_hash": merged.content_hash},
                operation_type="race_merge",
            )
