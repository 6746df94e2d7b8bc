"""State store abstraction for review records."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from ..contracts import WorkflowState
from ..errors import StaleRecordError


class StateStore(Protocol):
    """Protocol for review state persistence backends.

    Writes are whole-record. ``put`` enforces optimistic concurrency: the
    record's ``version`` must match the stored one (0 for a new record).
    """

    async def put(self, record: WorkflowState) -> WorkflowState:
        """Persist ``record`` and return the stored copy."""

    async def get(self, request_id: str, task_id: str) -> WorkflowState | None:
        """Retrieve a record by its primary key."""

    async def find_by_loan(self, loan_id: str) -> list[WorkflowState]:
        """Return all records for ``loan_id`` via the secondary index."""

    async def list_records(self) -> list[WorkflowState]:
        """Return all live records."""


def stamp_write(
    record: WorkflowState, previous: Optional[WorkflowState], now: datetime
) -> WorkflowState:
    """Check ``record`` against ``previous`` and return the copy to store.

    Raises:
        StaleRecordError: If ``record`` was read at a different version, or
            if it claims to be new while a record with the same key exists.
    """
    expected = previous.version if previous is not None else 0
    if record.version != expected:
        raise StaleRecordError(
            f"Stale write for request_id={record.request_id}, task_id={record.task_id}: "
            f"read version {record.version}, stored version {expected}"
        )
    updated_at = now
    if previous is not None and previous.updated_at > now:
        updated_at = previous.updated_at
    return record.evolve(updated_at=updated_at, version=expected + 1)
