"""Incident creation with synchronous duplicate avoidance."""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import structlog
from pydantic import ValidationError

from ..config import DedupConfig
from ..deduplication.audit_system import DeduplicationAudit
from ..deduplication.candidates import CandidateRetriever
from ..deduplication.classifier import DuplicateClassifier, MatchDecision, MatchKind
from ..deduplication.content_identity import with_content_hash
from ..deduplication.merge_engine import MergeEngine, MergePolicy
from ..deduplication.similarity_scoring import SimilarityScorer
from ..errors import (
    BaseIncidentError,
    DuplicateContentError,
    DuplicateReviewRequired,
    ErrorHandler,
    IncidentValidationError,
    PersistenceError,
)
from ..models import IncidentRecord
from ..repositories import IncidentRepository
from .geocoding import GeocodingService

logger = structlog.get_logger(__name__)


@dataclass
class CreationOutcome:
    """What happened to one submitted incident."""
    action: str  # 'created', 'merged'
    record: IncidentRecord
    match: Optional[Dict[str, Any]] = None
    race: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "id": self.record.id,
            "match": self.match,
            "race": self.race,
        }


@dataclass
class BatchResult:
    """Result of a batch creation."""
    created: List[CreationOutcome] = field(default_factory=list)
    merged: List[CreationOutcome] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.created) + len(self.merged) + len(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created": [o.to_dict() for o in self.created],
            "merged": [o.to_dict() for o in self.merged],
            "errors": self.errors,
        }


class IncidentCreationService:
    """
    Creates incident records, merging into an existing record instead of
    inserting when the submission duplicates one.

    The candidate check runs before the write. The content-hash unique
    constraint catches what the check misses under concurrency; a violation
    is treated as a lost race and merged into the record holding the hash.
    """

    def __init__(
        self,
        repository: IncidentRepository,
        config: Optional[DedupConfig] = None,
        geocoder: Optional[GeocodingService] = None,
        audit: Optional[DeduplicationAudit] = None,
        error_handler: Optional[ErrorHandler] = None,
    ):
        self.repository = repository
        self.config = config or DedupConfig()
        self.geocoder = geocoder
        self.audit = audit
        self.error_handler = error_handler or ErrorHandler()

        self.scorer = SimilarityScorer(self.config.sync_scoring())
        self.classifier = DuplicateClassifier(self.config.classifier)
        self.retriever = CandidateRetriever(repository, self.config.retrieval)
        self.merge_engine = MergeEngine()

    def validate(
        self, data: Union[IncidentRecord, Dict[str, Any]], user_id: Optional[str] = None
    ) -> IncidentRecord:
        """Parse submitted data into a record stamped with its author."""
        try:
            if isinstance(data, IncidentRecord):
                record = IncidentRecord.model_validate(data.model_dump())
            else:
                record = IncidentRecord.model_validate(data)
        except ValidationError as e:
            errors = e.errors(include_url=False)
            first = errors[0] if errors else {}
            raise IncidentValidationError(
                f"Invalid incident: {e.error_count()} validation error(s); "
                f"first: {first.get('msg', 'unknown')}",
                field=".".join(str(part) for part in first.get("loc", ())) or None,
                value=first.get("input"),
                errors=[{"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]} for err in errors],
            )

        if user_id:
            record = record.model_copy(update={"created_by": user_id, "updated_by": user_id})
        return record

    def create(
        self, data: Union[IncidentRecord, Dict[str, Any]], user_id: Optional[str] = None
    ) -> CreationOutcome:
        """Create an incident or merge it into its existing duplicate.

        Raises:
            IncidentValidationError: Malformed input.
            GeocodingError: Coordinates missing and no language resolved.
            RetrievalError: The duplicate check could not read the store.
            DuplicateReviewRequired: A duplicate exists and merging is off.
        """
        record = self.validate(data, user_id)

        if not record.location.has_coordinates() and self.geocoder is not None:
            coordinates = self.geocoder.resolve_location(record.location)
            record = record.model_copy(update={
                "location": record.location.model_copy(update={"coordinates": coordinates})
            })

        if self.config.creation.check_duplicates:
            found = self.find_best_match(record)
            if found is not None:
                existing, decision = found
                return self._handle_match(record, existing, decision, user_id)

        return self._create_new(record, user_id)

    def find_best_match(
        self, record: IncidentRecord
    ) -> Optional[Tuple[IncidentRecord, MatchDecision]]:
        """Best duplicate among the candidates: exact before similarity, then highest score."""
        candidates = self.retriever.for_record(record)

        matches = []
        for candidate in candidates:
            result = self.scorer.score(record, candidate)
            decision = self.classifier.classify_creation(result, record, candidate)
            if decision.is_duplicate:
                matches.append((candidate, decision))

        if not matches:
            logger.debug("no_duplicate_found", candidates=len(candidates))
            return None

        return max(
            matches,
            key=lambda m: (m[1].kind == MatchKind.EXACT, m[1].similarity.total),
        )

    def _handle_match(
        self,
        record: IncidentRecord,
        existing: IncidentRecord,
        decision: MatchDecision,
        user_id: Optional[str],
    ) -> CreationOutcome:
        creation = self.config.creation
        may_merge = creation.merge_duplicates and (
            decision.kind == MatchKind.EXACT or creation.auto_merge_similarity_matches
        )

        if not may_merge:
            candidates = [{**existing.summary(), **decision.explain()}]
            task_id = None
            if self.audit is not None:
                task_id = self.audit.create_review_task(
                    incident=record.model_dump(mode="json"),
                    candidates=candidates,
                    priority="high" if decision.kind == MatchKind.EXACT else "medium",
                    created_by=user_id,
                )
            logger.info("duplicate_review_required", existing_id=existing.id,
                        match_type=decision.kind.value, review_task_id=task_id)
            raise DuplicateReviewRequired(
                f"Incident looks like a duplicate of {existing.id}",
                candidates=candidates,
                review_task_id=task_id,
            )

        return self._merge_into(record, existing, decision, user_id)

    def _merge_into(
        self,
        record: IncidentRecord,
        existing: IncidentRecord,
        decision: MatchDecision,
        user_id: Optional[str],
    ) -> CreationOutcome:
        """Merge ``record`` into the current state of ``existing``.

        The target may be merged away by a concurrent consolidation between
        the check and the write; the candidate search is then repeated.
        """
        retries = self.config.creation.max_merge_retries
        target_id = existing.id

        for attempt in range(1, retries + 1):
            current = self.repository.get(target_id)
            if current is not None:
                merged = self._merge_and_store(
                    current, record, user_id,
                    similarity=decision.similarity.total,
                    evidence=decision.explain(),
                    operation_type="creation_merge",
                )
                logger.info("incident_merged", existing_id=current.id,
                            match_type=decision.kind.value,
                            similarity=round(decision.similarity.total, 4))
                return CreationOutcome("merged", merged, match=decision.explain())

            logger.warning("merge_target_vanished", target_id=target_id, attempt=attempt)
            found = self.find_best_match(record)
            if found is None:
                return self._create_new(record, user_id)
            existing, decision = found
            target_id = existing.id

        raise PersistenceError(
            f"Merge target disappeared on each of {retries} attempt(s)", retryable=True
        )

    def _create_new(self, record: IncidentRecord, user_id: Optional[str]) -> CreationOutcome:
        hashed = with_content_hash(record)
        try:
            created = self.repository.create(hashed)
        except DuplicateContentError as e:
            holder = self.repository.find_by_content_hash(e.content_hash)
            if holder is None:
                raise
            merged = self._merge_and_store(
                holder, hashed, user_id,
                similarity=1.0,
                evidence={"reason": "content_hash_collision", "content_hash": e.content_hash},
                operation_type="race_merge",
            )
            logger.info("content_hash_race_merged", existing_id=holder.id)
            return CreationOutcome(
                "merged", merged, match={"match_type": "content_hash"}, race=True
            )

        logger.info("incident_created", incident_id=created.id, incident_type=created.type.value)
        return CreationOutcome("created", created)

    def _merge_and_store(
        self,
        current: IncidentRecord,
        record: IncidentRecord,
        user_id: Optional[str],
        similarity: float,
        evidence: Dict[str, Any],
        operation_type: str,
    ) -> IncidentRecord:
        merged = self.merge_engine.merge(
            current, [record], MergePolicy(prefer_new=True, merged_by=user_id)
        )
        self.repository.update(merged)

        if self.audit is not None:
            self.audit.record_merge(
                canonical_before=current.model_dump(mode="json"),
                absorbed=[record.model_dump(mode="json")],
                merged=merged.model_dump(mode="json"),
                decision_maker=user_id or "system",
                similarity_score=similarity,
                evidence=evidence,
                operation_type=operation_type,
            )
        return merged

    def create_batch(
        self, items: Iterable[Union[IncidentRecord, Dict[str, Any]]], user_id: Optional[str] = None
    ) -> BatchResult:
        """Create items one after another, collecting per-item failures."""
        result = BatchResult()

        for index, item in enumerate(items):
            try:
                outcome = self.create(item, user_id)
            except BaseIncidentError as e:
                self.error_handler.handle_error(e, operation="create_batch", reraise=False)
                result.errors.append({
                    "index": index,
                    "error_type": e.__class__.__name__,
                    "message": e.message,
                })
                continue

            if outcome.action == "merged":
                result.merged.append(outcome)
            else:
                result.created.append(outcome)

        logger.info("batch_processed", created_count=len(result.created),
                    merged_count=len(result.merged), error_count=len(result.errors))
        return result
