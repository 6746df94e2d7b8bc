"""SQLite implementation of the state store."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from ..contracts import WorkflowState, utcnow
from ..errors import StaleRecordError
from .store import StateStore, stamp_write

logger = logging.getLogger(__name__)

_COLUMNS = "request_id, task_id, loan_id, status, version, updated_at, ttl, body"


class SQLiteStateStore(StateStore):
    """Persist review records using SQLite."""

    def __init__(
        self, db_path: str | Path, clock: Callable[[], datetime] = utcnow
    ) -> None:
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._write_lock = threading.Lock()
        self._clock = clock
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS review_state (
                request_id TEXT NOT NULL,
                task_id TEXT NOT NULL,
                loan_id TEXT NOT NULL,
                status TEXT NOT NULL,
                version INTEGER NOT NULL,
                updated_at TEXT NOT NULL,
                ttl INTEGER,
                body TEXT NOT NULL,
                PRIMARY KEY (request_id, task_id)
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS review_state_loan_idx ON review_state (loan_id)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _now_epoch(self) -> float:
        return self._clock().timestamp()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def _put_sync(self, record: WorkflowState) -> WorkflowState:
        with self._write_lock:
            row = self._fetchone(
                "SELECT body FROM review_state WHERE request_id = ? AND task_id = ? "
                "AND (ttl IS NULL OR ttl > ?)",
                record.request_id,
                record.task_id,
                self._now_epoch(),
            )
            previous = WorkflowState.from_json(row["body"]) if row else None
            stored = stamp_write(record, previous, self._clock())
            params = (
                stored.loan_id,
                stored.status.value,
                stored.version,
                stored.updated_at.isoformat(),
                stored.ttl,
                stored.to_json(),
            )
            cur = self._conn.cursor()
            if previous is None:
                try:
                    cur.execute(
                        f"INSERT OR REPLACE INTO review_state ({_COLUMNS}) "
                        "SELECT ?, ?, ?, ?, ?, ?, ?, ? WHERE NOT EXISTS ("
                        "SELECT 1 FROM review_state WHERE request_id = ? AND task_id = ? "
                        "AND (ttl IS NULL OR ttl > ?))",
                        (stored.request_id, stored.task_id, *params,
                         stored.request_id, stored.task_id, self._now_epoch()),
                    )
                except sqlite3.IntegrityError as exc:
                    raise StaleRecordError(str(exc)) from exc
            else:
                cur.execute(
                    "UPDATE review_state SET loan_id = ?, status = ?, version = ?, "
                    "updated_at = ?, ttl = ?, body = ? "
                    "WHERE request_id = ? AND task_id = ? AND version = ?",
                    (*params, stored.request_id, stored.task_id, previous.version),
                )
            if cur.rowcount != 1:
                self._conn.rollback()
                raise StaleRecordError(
                    f"Concurrent write detected for request_id={stored.request_id}, "
                    f"task_id={stored.task_id}"
                )
            self._conn.commit()
            return stored

    # ------------------------------------------------------------------
    # Store API
    async def put(self, record: WorkflowState) -> WorkflowState:
        stored = await asyncio.to_thread(self._put_sync, record)
        logger.info(
            f"Saved review state request_id={stored.request_id} task_id={stored.task_id} "
            f"status={stored.status.value} version={stored.version}"
        )
        return stored

    async def get(self, request_id: str, task_id: str) -> WorkflowState | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT body FROM review_state WHERE request_id = ? AND task_id = ? "
            "AND (ttl IS NULL OR ttl > ?)",
            request_id,
            task_id,
            self._now_epoch(),
        )
        if not row:
            return None
        return WorkflowState.from_json(row["body"])

    async def find_by_loan(self, loan_id: str) -> list[WorkflowState]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT body FROM review_state WHERE loan_id = ? "
            "AND (ttl IS NULL OR ttl > ?) ORDER BY updated_at",
            loan_id,
            self._now_epoch(),
        )
        return [WorkflowState.from_json(r["body"]) for r in rows]

    async def list_records(self) -> list[WorkflowState]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT body FROM review_state WHERE ttl IS NULL OR ttl > ? ORDER BY updated_at",
            self._now_epoch(),
        )
        return [WorkflowState.from_json(r["body"]) for r in rows]
