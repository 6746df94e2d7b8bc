"""Orchestration engine contract and the local reference engine."""

from __future__ import annotations

from typing import Optional

from ..config import ReviewConfig, load_config
from .base import BaseWorkflowEngine, ExecutionHandle, ExecutionRecord, ExecutionStatus
from .definition import DEFINITIONS, REVIEW_DEFINITION, ChoiceState, StateDefinition, TaskState
from .local import LocalWorkflowEngine, TaskHandler
from .tickets import TicketClaims, TicketCodec


def get_engine(
    task_handler: TaskHandler,
    backend: Optional[str] = None,
    config: Optional[ReviewConfig] = None,
) -> BaseWorkflowEngine:
    """Factory function to get the configured engine."""

    config = config or load_config()
    backend = (backend or config.engine.backend).lower()

    if backend == "local":
        return LocalWorkflowEngine(task_handler, config=config.engine)
    raise ValueError(f"Unsupported engine backend: {backend}")


__all__ = [
    "BaseWorkflowEngine",
    "ExecutionHandle",
    "ExecutionRecord",
    "ExecutionStatus",
    "StateDefinition",
    "TaskState",
    "ChoiceState",
    "REVIEW_DEFINITION",
    "DEFINITIONS",
    "LocalWorkflowEngine",
    "TicketCodec",
    "TicketClaims",
    "get_engine",
]
