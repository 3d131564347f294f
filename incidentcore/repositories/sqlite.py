"""SQLite-backed incident repository."""

import sqlite3
import threading
import uuid
from datetime import datetime
from typing import Any, List, Optional

from ..errors import DuplicateContentError, PersistenceError, RetrievalError
from ..models import IncidentRecord, IncidentType, ensure_utc, utcnow
from .base import IncidentRepository

# Fixed-width UTC format so text comparison matches chronological order
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def format_timestamp(value: datetime) -> str:
    return ensure_utc(value).strftime(TIMESTAMP_FORMAT)


class SQLiteIncidentRepository(IncidentRepository):
    """Stores each record as a JSON payload with indexed lookup columns."""

    def __init__(self, db_path: str = "incidents.db", **kwargs):
        super().__init__(**kwargs)
        self.db_path = db_path
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self.init_database()

    def init_database(self):
        """Create tables and indexes."""
        with self._lock, self._conn:
            self._conn.execute('''
                CREATE TABLE IF NOT EXISTS incidents (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    occurred_at TEXT NOT NULL,
                    content_hash TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    payload TEXT NOT NULL
                )
            ''')
            self._conn.execute(
                'CREATE INDEX IF NOT EXISTS idx_incidents_type_time ON incidents(type, occurred_at)'
            )
            self._conn.execute(
                'CREATE UNIQUE INDEX IF NOT EXISTS idx_incidents_content_hash ON incidents(content_hash)'
            )
            self._conn.execute(
                'CREATE INDEX IF NOT EXISTS idx_incidents_created ON incidents(created_at, id)'
            )
        self.logger.debug(f"Incident store ready at {self.db_path}")

    def close(self):
        with self._lock:
            self._conn.close()

    def _query(self, sql: str, params: tuple = ()) -> List[IncidentRecord]:
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [IncidentRecord.model_validate_json(row[0]) for row in rows]

    def get(self, record_id: str) -> Optional[IncidentRecord]:
        with self._operation_context("get", record_id):
            try:
                records = self._query('SELECT payload FROM incidents WHERE id = ?', (record_id,))
            except sqlite3.Error as e:
                raise RetrievalError(f"Failed to get incident {record_id}: {e}", cause=e)
        return records[0] if records else None

    def find_by_content_hash(self, content_hash: str) -> Optional[IncidentRecord]:
        try:
            records = self._query(
                'SELECT payload FROM incidents WHERE content_hash = ?', (content_hash,)
            )
        except sqlite3.Error as e:
            raise RetrievalError(f"Failed content hash lookup: {e}", cause=e)
        return records[0] if records else None

    def find_candidates(
        self,
        incident_type: IncidentType,
        start: datetime,
        end: datetime,
        limit: Optional[int] = None,
    ) -> List[IncidentRecord]:
        sql = (
            'SELECT payload FROM incidents WHERE type = ? AND occurred_at >= ? AND occurred_at <= ?'
            ' ORDER BY occurred_at, id'
        )
        params: List[Any] = [
            IncidentType(incident_type).value,
            format_timestamp(start),
            format_timestamp(end),
        ]
        if limit is not None:
            sql += ' LIMIT ?'
            params.append(limit)

        with self._operation_context("find_candidates"):
            try:
                return self._query(sql, tuple(params))
            except sqlite3.Error as e:
                raise RetrievalError(f"Candidate lookup failed: {e}", cause=e)

    def list_records(
        self,
        incident_type: Optional[IncidentType] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[IncidentRecord]:
        sql = 'SELECT payload FROM incidents WHERE 1 = 1'
        params: List[Any] = []
        if incident_type is not None:
            sql += ' AND type = ?'
            params.append(IncidentType(incident_type).value)
        if since is not None:
            sql += ' AND occurred_at >= ?'
            params.append(format_timestamp(since))
        if until is not None:
            sql += ' AND occurred_at <= ?'
            params.append(format_timestamp(until))
        sql += ' ORDER BY created_at, id'

        try:
            return self._query(sql, tuple(params))
        except sqlite3.Error as e:
            raise RetrievalError(f"Failed to list incidents: {e}", cause=e)

    def count(self) -> int:
        try:
            with self._lock:
                return self._conn.execute('SELECT COUNT(*) FROM incidents').fetchone()[0]
        except sqlite3.Error as e:
            raise RetrievalError(f"Failed to count incidents: {e}", cause=e)

    def create(self, record: IncidentRecord) -> IncidentRecord:
        now = utcnow()
        stored = record.model_copy(update={
            "id": record.id or uuid.uuid4().hex,
            "created_at": record.created_at or now,
            "updated_at": record.updated_at or now,
        })

        with self._operation_context("create", stored.id):
            try:
                with self._lock, self._conn:
                    self._conn.execute('''
                        INSERT INTO incidents
                        (id, type, occurred_at, content_hash, created_at, updated_at, payload)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                    ''', self._row(stored))
            except sqlite3.IntegrityError as e:
                if stored.content_hash and "content_hash" in str(e):
                    raise DuplicateContentError(
                        f"Incident with content hash {stored.content_hash[:12]} already exists",
                        content_hash=stored.content_hash,
                        cause=e,
                    )
                raise PersistenceError(f"Failed to create incident: {e}", cause=e, retryable=False)
            except sqlite3.Error as e:
                raise PersistenceError(f"Failed to create incident: {e}", cause=e)

        self.logger.debug(f"Created incident {stored.id}")
        return stored

    def update(self, record: IncidentRecord) -> IncidentRecord:
        if not record.id:
            raise PersistenceError("Cannot update an incident without an id", retryable=False)

        with self._operation_context("update", record.id):
            try:
                with self._lock, self._conn:
                    self._update_row(record)
            except sqlite3.IntegrityError as e:
                raise DuplicateContentError(
                    f"Update of {record.id} collides on content hash",
                    content_hash=record.content_hash or "",
                    cause=e,
                )
            except sqlite3.Error as e:
                raise PersistenceError(f"Failed to update incident {record.id}: {e}", cause=e)
        return record

    def delete(self, record_id: str) -> bool:
        try:
            with self._lock, self._conn:
                cursor = self._conn.execute('DELETE FROM incidents WHERE id = ?', (record_id,))
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to delete incident {record_id}: {e}", cause=e)
        return cursor.rowcount > 0

    def apply_merge(self, canonical: IncidentRecord, absorbed_ids: List[str]) -> IncidentRecord:
        """Update the canonical record and delete the absorbed ones in one transaction."""
        if not canonical.id:
            raise PersistenceError("Canonical record has no id", retryable=False)

        with self._operation_context("apply_merge", canonical.id):
            try:
                with self._lock, self._conn:
                    # Release absorbed hashes first: the merged record may now own one
                    for record_id in absorbed_ids:
                        self._conn.execute(
                            'UPDATE incidents SET content_hash = NULL WHERE id = ?', (record_id,)
                        )
                    self._update_row(canonical)
                    for record_id in absorbed_ids:
                        self._conn.execute('DELETE FROM incidents WHERE id = ?', (record_id,))
            except sqlite3.Error as e:
                raise PersistenceError(
                    f"Merge into {canonical.id} rolled back: {e}", cause=e
                )

        self.logger.info(f"🔗 Merged {len(absorbed_ids)} incident(s) into {canonical.id}")
        return canonical

    def _update_row(self, record: IncidentRecord):
        """Must run inside an open transaction."""
        cursor = self._conn.execute('''
            UPDATE incidents
            SET type = ?, occurred_at = ?, content_hash = ?, updated_at = ?, payload = ?
            WHERE id = ?
        ''', (
            record.type.value,
            format_timestamp(record.occurred_at),
            record.content_hash,
            format_timestamp(record.updated_at or utcnow()),
            record.model_dump_json(),
            record.id,
        ))
        if cursor.rowcount == 0:
            raise PersistenceError(f"Incident {record.id} not found", retryable=False)

    @staticmethod
    def _row(record: IncidentRecord) -> tuple:
        return (
            record.id,
            record.type.value,
            format_timestamp(record.occurred_at),
            record.content_hash,
            format_timestamp(record.created_at),
            format_timestamp(record.updated_at),
            record.model_dump_json(),
        )
