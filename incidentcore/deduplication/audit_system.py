"""
Deduplication Audit System

Audit trail for applied merges (with before/after state for manual
rollback) and a queue of human review tasks for ambiguous duplicates.
"""

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

REVIEW_DECISIONS = ("merge", "separate")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str, ensure_ascii=False)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class ReviewTask:
    """A human review task for potential duplicates."""
    task_id: str
    incident: Dict[str, Any]
    candidates: List[Dict[str, Any]]
    priority: str  # 'high', 'medium', 'low'
    status: str  # 'pending', 'completed'
    created_at: datetime
    created_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    decision: Optional[str] = None  # 'merge', 'separate'
    reviewer_id: Optional[str] = None
    reviewer_notes: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ReviewTask":
        return cls(
            task_id=row["task_id"],
            incident=json.loads(row["incident"]),
            candidates=json.loads(row["candidates"]),
            priority=row["priority"],
            status=row["status"],
            created_at=_parse_time(row["created_at"]),
            created_by=row["created_by"],
            completed_at=_parse_time(row["completed_at"]),
            decision=row["decision"],
            reviewer_id=row["reviewer_id"],
            reviewer_notes=row["reviewer_notes"],
        )


@dataclass
class AuditRecord:
    """One applied deduplication decision."""
    audit_id: str
    operation_type: str  # 'consolidation', 'creation_merge', 'race_merge', 'review_completed'
    incident_ids: List[str]
    decision_maker: str  # 'system' or user ID
    timestamp: datetime
    similarity_score: float
    evidence: Dict[str, Any]
    before_state: Dict[str, Any]
    after_state: Dict[str, Any]

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "AuditRecord":
        return cls(
            audit_id=row["audit_id"],
            operation_type=row["operation_type"],
            incident_ids=json.loads(row["incident_ids"]),
            decision_maker=row["decision_maker"],
            timestamp=_parse_time(row["timestamp"]),
            similarity_score=row["similarity_score"],
            evidence=json.loads(row["evidence"]),
            before_state=json.loads(row["before_state"]),
            after_state=json.loads(row["after_state"]),
        )


class DeduplicationAudit:
    """
    Audit store for deduplication decisions.

    Every applied merge records the full state of all records involved so a
    wrong merge can be reconstructed by hand.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or "deduplication_audit.db"
        self.init_database()

        self._stats_lock = threading.Lock()
        self.stats = {
            "review_tasks_created": 0,
            "reviews_completed": 0,
            "merges_recorded": 0,
        }

    def _count(self, key: str):
        with self._stats_lock:
            self.stats[key] += 1

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Transactional connection that is closed on exit."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def init_database(self):
        try:
            with self._connect() as conn:
                conn.executescript('''
                    CREATE TABLE IF NOT EXISTS review_tasks (
                        task_id TEXT PRIMARY KEY,
                        incident TEXT NOT NULL,
                        candidates TEXT NOT NULL,
                        priority TEXT NOT NULL,
                        status TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        created_by TEXT,
                        completed_at TEXT,
                        decision TEXT,
                        reviewer_id TEXT,
                        reviewer_notes TEXT
                    );
                    CREATE TABLE IF NOT EXISTS audit_records (
                        audit_id TEXT PRIMARY KEY,
                        operation_type TEXT NOT NULL,
                        incident_ids TEXT NOT NULL,
                        decision_maker TEXT NOT NULL,
                        timestamp TEXT NOT NULL,
                        similarity_score REAL NOT NULL,
                        evidence TEXT NOT NULL,
                        before_state TEXT NOT NULL,
                        after_state TEXT NOT NULL
                    );
                    CREATE INDEX IF NOT EXISTS idx_review_status ON review_tasks(status);
                    CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_records(timestamp);
                ''')
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize audit database {self.db_path}: {e}")
            raise
        logger.debug(f"Audit database ready at {self.db_path}")

    def create_review_task(
        self,
        incident: Dict[str, Any],
        candidates: List[Dict[str, Any]],
        priority: str = "medium",
        created_by: Optional[str] = None,
    ) -> str:
        """Queue a potential duplicate for human review. Returns the task id."""
        task_id = str(uuid.uuid4())

        with self._connect() as conn:
            conn.execute(
                'INSERT INTO review_tasks'
                ' (task_id, incident, candidates, priority, status, created_at, created_by)'
                ' VALUES (?, ?, ?, ?, ?, ?, ?)',
                (task_id, _dumps(incident), _dumps(candidates), priority, "pending",
                 _now().isoformat(), created_by),
            )

        self._count("review_tasks_created")
        logger.info(f"📋 Review task {task_id} queued with {len(candidates)} candidate(s)")
        return task_id

    def complete_review_task(
        self, task_id: str, reviewer_id: str, decision: str, notes: Optional[str] = None
    ) -> bool:
        """Close a pending review task with a decision.

        Returns False when the task does not exist or was already closed.
        """
        if decision not in REVIEW_DECISIONS:
            raise ValueError(f"Unknown review decision: {decision}")

        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE review_tasks SET status = 'completed', completed_at = ?, decision = ?,"
                " reviewer_id = ?, reviewer_notes = ? WHERE task_id = ? AND status = 'pending'",
                (_now().isoformat(), decision, reviewer_id, notes, task_id),
            )
            closed = cursor.rowcount > 0

        if not closed:
            logger.warning(f"Review task {task_id} is missing or already completed")
            return False

        task = self.get_review_task(task_id)
        scores = [c.get("similarity", {}).get("total", 0.0) for c in task.candidates]
        self._save_audit_record(AuditRecord(
            audit_id=str(uuid.uuid4()),
            operation_type="review_completed",
            incident_ids=[task.incident.get("id") or "new"] + [c.get("id") for c in task.candidates],
            decision_maker=reviewer_id,
            timestamp=_now(),
            similarity_score=max(scores, default=0.0),
            evidence={"review_task_id": task_id, "decision": decision, "notes": notes},
            before_state={"status": "pending"},
            after_state={"status": "completed", "decision": decision},
        ))

        self._count("reviews_completed")
        logger.info(f"✅ Review task {task_id} closed: {decision}")
        return True

    def record_merge(
        self,
        canonical_before: Dict[str, Any],
        absorbed: List[Dict[str, Any]],
        merged: Dict[str, Any],
        decision_maker: str = "system",
        similarity_score: float = 0.0,
        evidence: Optional[Dict[str, Any]] = None,
        operation_type: str = "consolidation",
    ) -> str:
        """Record an applied merge with the full before and after state."""
        absorbed_ids = [a.get("id") for a in absorbed]
        record = AuditRecord(
            audit_id=str(uuid.uuid4()),
            operation_type=operation_type,
            incident_ids=[canonical_before.get("id")] + absorbed_ids,
            decision_maker=decision_maker,
            timestamp=_now(),
            similarity_score=similarity_score,
            evidence=evidence or {},
            before_state={"canonical": canonical_before, "absorbed": absorbed},
            after_state={"merged": merged, "deleted_ids": absorbed_ids},
        )
        self._save_audit_record(record)
        self._count("merges_recorded")

        logger.info(f"📝 Audit {record.audit_id}: {operation_type} into {canonical_before.get('id')}")
        return record.audit_id

    def _save_audit_record(self, record: AuditRecord):
        try:
            with self._connect() as conn:
                conn.execute(
                    'INSERT INTO audit_records'
                    ' (audit_id, operation_type, incident_ids, decision_maker, timestamp,'
                    ' similarity_score, evidence, before_state, after_state)'
                    ' VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)',
                    (
                        record.audit_id,
                        record.operation_type,
                        json.dumps(record.incident_ids),
                        record.decision_maker,
                        record.timestamp.isoformat(),
                        record.similarity_score,
                        _dumps(record.evidence),
                        _dumps(record.before_state),
                        _dumps(record.after_state),
                    ),
                )
        except sqlite3.Error as e:
            logger.error(f"Failed to save audit record {record.audit_id}: {e}")
            raise

    def get_review_task(self, task_id: str) -> Optional[ReviewTask]:
        with self._connect() as conn:
            row = conn.execute('SELECT * FROM review_tasks WHERE task_id = ?', (task_id,)).fetchone()
        return ReviewTask.from_row(row) if row else None

    def get_pending_reviews(self, priority: Optional[str] = None) -> List[ReviewTask]:
        """Pending tasks, oldest first."""
        sql = "SELECT * FROM review_tasks WHERE status = 'pending'"
        params: List[Any] = []
        if priority:
            sql += ' AND priority = ?'
            params.append(priority)
        sql += ' ORDER BY created_at'

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [ReviewTask.from_row(row) for row in rows]

    def get_audit_record(self, audit_id: str) -> Optional[AuditRecord]:
        with self._connect() as conn:
            row = conn.execute('SELECT * FROM audit_records WHERE audit_id = ?', (audit_id,)).fetchone()
        return AuditRecord.from_row(row) if row else None

    def get_audit_history(
        self, operation_type: Optional[str] = None, days_back: int = 30
    ) -> List[AuditRecord]:
        """Audit records, most recent first."""
        sql = 'SELECT * FROM audit_records WHERE timestamp >= ?'
        params: List[Any] = [(_now() - timedelta(days=days_back)).isoformat()]
        if operation_type:
            sql += ' AND operation_type = ?'
            params.append(operation_type)
        sql += ' ORDER BY timestamp DESC'

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [AuditRecord.from_row(row) for row in rows]

    def get_statistics(self) -> Dict[str, Any]:
        with self._connect() as conn:
            pending = conn.execute(
                "SELECT COUNT(*) FROM review_tasks WHERE status = 'pending'"
            ).fetchone()[0]
            by_operation = {
                row["operation_type"]: row["total"]
                for row in conn.execute(
                    'SELECT operation_type, COUNT(*) AS total FROM audit_records GROUP BY operation_type'
                )
            }

        return {
            **self.stats,
            "pending_reviews": pending,
            "audit_records_by_operation": by_operation,
        }
