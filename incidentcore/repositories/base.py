"""Base repository for incident data access."""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import List, Optional

from ..errors import BaseIncidentError, ErrorHandler
from ..models import IncidentRecord, IncidentType


class IncidentRepository(ABC):
    """Abstract persistence collaborator for incident records.

    Implementations must provide an indexed lookup on type + time range,
    atomic per-record writes, and a uniqueness constraint on
    ``content_hash`` (violations raise ``DuplicateContentError``).
    """

    def __init__(self, error_handler: Optional[ErrorHandler] = None):
        self.error_handler = error_handler or ErrorHandler()
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def get(self, record_id: str) -> Optional[IncidentRecord]:
        """Get a record by id, or None if it does not exist."""
        pass

    @abstractmethod
    def find_by_content_hash(self, content_hash: str) -> Optional[IncidentRecord]:
        pass

    @abstractmethod
    def find_candidates(
        self,
        incident_type: IncidentType,
        start: datetime,
        end: datetime,
        limit: Optional[int] = None,
    ) -> List[IncidentRecord]:
        """Records of ``incident_type`` with ``start <= occurred_at <= end``.

        Raises:
            RetrievalError: If the lookup fails
        """
        pass

    @abstractmethod
    def list_records(
        self,
        incident_type: Optional[IncidentType] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[IncidentRecord]:
        """All matching records ordered by creation time, then id."""
        pass

    @abstractmethod
    def count(self) -> int:
        pass

    @abstractmethod
    def create(self, record: IncidentRecord) -> IncidentRecord:
        """Persist a new record and return it with id and timestamps set.

        Raises:
            DuplicateContentError: If another record holds the same content hash
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    def update(self, record: IncidentRecord) -> IncidentRecord:
        pass

    @abstractmethod
    def delete(self, record_id: str) -> bool:
        pass

    @abstractmethod
    def apply_merge(self, canonical: IncidentRecord, absorbed_ids: List[str]) -> IncidentRecord:
        """Update the canonical record, then delete the absorbed ones, atomically.

        Either both steps happen or neither does.
        """
        pass

    def exists(self, record_id: str) -> bool:
        return self.get(record_id) is not None

    @contextmanager
    def _operation_context(self, operation: str, incident_id: Optional[str] = None):
        """Tag incident errors raised in the block with the operation."""
        with self.error_handler.error_context(
            operation=operation, incident_id=incident_id
        ) as context:
            try:
                yield
            except BaseIncidentError as e:
                if e.context is None:
                    e.context = context
                raise
