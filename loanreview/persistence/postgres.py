"""PostgreSQL implementation of the state store."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

import asyncpg

from ..contracts import WorkflowState, utcnow
from ..errors import StaleRecordError
from .store import StateStore, stamp_write

logger = logging.getLogger(__name__)


class PostgresStateStore(StateStore):
    """Persist review records using PostgreSQL."""

    def __init__(self, dsn: str, clock: Callable[[], datetime] = utcnow):
        self._dsn = dsn
        self._initialized = False
        self._clock = clock

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS review_state (
                request_id TEXT NOT NULL,
                task_id TEXT NOT NULL,
                loan_id TEXT NOT NULL,
                status TEXT NOT NULL,
                version INTEGER NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                ttl BIGINT,
                body JSONB NOT NULL,
                PRIMARY KEY (request_id, task_id)
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS review_state_loan_idx ON review_state (loan_id)"
        )

    def _now_epoch(self) -> int:
        return int(self._clock().timestamp())

    # ------------------------------------------------------------------
    async def put(self, record: WorkflowState) -> WorkflowState:
        conn = await self._connect()
        try:
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT body::text AS body FROM review_state "
                    "WHERE request_id = $1 AND task_id = $2 AND (ttl IS NULL OR ttl > $3) "
                    "FOR UPDATE",
                    record.request_id,
                    record.task_id,
                    self._now_epoch(),
                )
                previous = WorkflowState.from_json(row["body"]) if row else None
                stored = stamp_write(record, previous, self._clock())
                if previous is None:
                    result = await conn.execute(
                        """
                        INSERT INTO review_state
                            (request_id, task_id, loan_id, status, version, updated_at, ttl, body)
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb)
                        ON CONFLICT (request_id, task_id) DO UPDATE
                            SET loan_id = EXCLUDED.loan_id, status = EXCLUDED.status,
                                version = EXCLUDED.version, updated_at = EXCLUDED.updated_at,
                                ttl = EXCLUDED.ttl, body = EXCLUDED.body
                            WHERE review_state.ttl IS NOT NULL AND review_state.ttl <= $9
                        """,
                        stored.request_id,
                        stored.task_id,
                        stored.loan_id,
                        stored.status.value,
                        stored.version,
                        stored.updated_at,
                        stored.ttl,
                        stored.to_json(),
                        self._now_epoch(),
                    )
                else:
                    result = await conn.execute(
                        """
                        UPDATE review_state
                        SET loan_id = $1, status = $2, version = $3, updated_at = $4,
                            ttl = $5, body = $6::jsonb
                        WHERE request_id = $7 AND task_id = $8 AND version = $9
                        """,
                        stored.loan_id,
                        stored.status.value,
                        stored.version,
                        stored.updated_at,
                        stored.ttl,
                        stored.to_json(),
                        stored.request_id,
                        stored.task_id,
                        previous.version,
                    )
                if not result.endswith(" 1"):
                    raise StaleRecordError(
                        f"Concurrent write detected for request_id={stored.request_id}, "
                        f"task_id={stored.task_id}"
                    )
        finally:
            await conn.close()
        logger.info(
            f"Saved review state request_id={stored.request_id} task_id={stored.task_id} "
            f"status={stored.status.value} version={stored.version}"
        )
        return stored

    async def get(self, request_id: str, task_id: str) -> WorkflowState | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT body::text AS body FROM review_state "
                "WHERE request_id = $1 AND task_id = $2 AND (ttl IS NULL OR ttl > $3)",
                request_id,
                task_id,
                self._now_epoch(),
            )
        finally:
            await conn.close()
        if not row:
            return None
        return WorkflowState.from_json(row["body"])

    async def find_by_loan(self, loan_id: str) -> list[WorkflowState]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT body::text AS body FROM review_state "
                "WHERE loan_id = $1 AND (ttl IS NULL OR ttl > $2) ORDER BY updated_at",
                loan_id,
                self._now_epoch(),
            )
        finally:
            await conn.close()
        return [WorkflowState.from_json(r["body"]) for r in rows]

    async def list_records(self) -> list[WorkflowState]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT body::text AS body FROM review_state "
                "WHERE ttl IS NULL OR ttl > $1 ORDER BY updated_at",
                self._now_epoch(),
            )
        finally:
            await conn.close()
        return [WorkflowState.from_json(r["body"]) for r in rows]
