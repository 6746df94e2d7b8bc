"""In-memory implementation of the state store."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, Tuple

from ..contracts import WorkflowState, utcnow
from .store import StateStore, stamp_write

logger = logging.getLogger(__name__)


class InMemoryStateStore(StateStore):
    """Store review records in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._records: Dict[Tuple[str, str], WorkflowState] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _live(self, key: Tuple[str, str]) -> WorkflowState | None:
        record = self._records.get(key)
        if record is not None and record.is_expired(self._clock()):
            del self._records[key]
            return None
        return record

    # ------------------------------------------------------------------
    async def put(self, record: WorkflowState) -> WorkflowState:
        async with self._lock:
            stored = stamp_write(record, self._live(record.key), self._clock())
            self._records[record.key] = stored
        logger.info(
            f"Saved review state request_id={stored.request_id} task_id={stored.task_id} "
            f"status={stored.status.value} version={stored.version}"
        )
        return stored

    async def get(self, request_id: str, task_id: str) -> WorkflowState | None:
        return self._live((request_id, task_id))

    async def find_by_loan(self, loan_id: str) -> list[WorkflowState]:
        return [r for r in await self.list_records() if r.loan_id == loan_id]

    async def list_records(self) -> list[WorkflowState]:
        return [r for r in (self._live(k) for k in list(self._records)) if r is not None]
