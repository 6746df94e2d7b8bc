"""Persistence layer for review state."""

from __future__ import annotations

import os
from typing import Optional

from ..config import ReviewConfig, load_config
from .inmemory import InMemoryStateStore
from .sqlite import SQLiteStateStore
from .store import StateStore, stamp_write

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresStateStore
except ImportError:  # pragma: no cover - optional dependency
    PostgresStateStore = None  # type: ignore

_store_instance: StateStore | None = None


def get_store(
    database_url: Optional[str] = None, config: Optional[ReviewConfig] = None
) -> StateStore:
    """Factory function to obtain a state store.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``LOANREVIEW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory store is returned.
    """

    global _store_instance
    if _store_instance is not None and database_url is None and config is None:
        return _store_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("LOANREVIEW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.store.database_url
    )

    if not database_url:
        _store_instance = InMemoryStateStore()
        return _store_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _store_instance = SQLiteStateStore(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        if PostgresStateStore is None:
            raise RuntimeError("Postgres support not available")
        _store_instance = PostgresStateStore(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _store_instance


__all__ = [
    "StateStore",
    "InMemoryStateStore",
    "SQLiteStateStore",
    "PostgresStateStore",
    "get_store",
    "stamp_write",
]
