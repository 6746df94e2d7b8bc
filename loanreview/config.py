from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel

from .constants import DEFAULT_DEFINITION_REF, DEFAULT_RETENTION_DAYS


class StoreConfig(BaseModel):
    """State store settings."""

    database_url: Optional[str] = None
    retention_days: Optional[int] = DEFAULT_RETENTION_DAYS


class RetryConfig(BaseModel):
    """Retry policy applied by the local engine to retryable task errors."""

    max_attempts: int = 3
    interval_seconds: float = 1.0
    backoff_rate: float = 2.0
    jitter: float = 0.5


class EngineConfig(BaseModel):
    """Orchestration engine settings."""

    backend: Literal["local"] = "local"
    definition_ref: str = DEFAULT_DEFINITION_REF
    ticket_secret: str = "loanreview-local-ticket-signing-secret-change-me"
    ticket_algorithm: str = "HS256"
    retry: RetryConfig = RetryConfig()


class ValidationConfig(BaseModel):
    """Trust-boundary validation settings."""

    request_id_pattern: str = r"^REQ-\d{6,10}$"
    loan_id_pattern: str = r"^LN-\d{6,12}$"
    task_id_pattern: str = r"^TSK-[0-9A-F]{8}$"
    max_payload_size: int = 1048576


class ReviewConfig(BaseModel):
    """Top-level configuration model."""

    store: StoreConfig = StoreConfig()
    engine: EngineConfig = EngineConfig()
    validation: ValidationConfig = ValidationConfig()
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> ReviewConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to LOANREVIEW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("LOANREVIEW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ReviewConfig(**data)
    else:
        config = ReviewConfig()

    env_db_url = os.getenv("LOANREVIEW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.store.database_url = env_db_url
    env_secret = os.getenv("LOANREVIEW_TICKET_SECRET")
    if env_secret:
        config.engine.ticket_secret = env_secret
    return config
