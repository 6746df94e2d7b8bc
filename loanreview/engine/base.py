"""Base interface for the orchestration engine that drives reviews."""

from __future__ import annotations

import abc
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..contracts import utcnow


class ExecutionStatus(str, Enum):
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class ExecutionHandle(BaseModel):
    """Returned by ``start_execution``.

    ``continuation_ticket`` is set when the execution paused before
    returning control to the caller.
    """

    execution_ref: str
    continuation_ticket: Optional[str] = None


class ExecutionRecord(BaseModel):
    """Engine-side view of one execution."""

    execution_ref: str
    definition_ref: str
    request_id: str
    task_id: str
    status: ExecutionStatus = ExecutionStatus.RUNNING
    history: List[str] = Field(default_factory=list)
    paused_state: Optional[str] = None
    pending_ticket_id: Optional[str] = None
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)


class BaseWorkflowEngine(metaclass=abc.ABCMeta):
    """Abstract orchestration engine consumed by the review service."""

    @abc.abstractmethod
    async def start_execution(
        self, definition_ref: str, input: Dict[str, Any]
    ) -> ExecutionHandle:
        """Begin a new execution of ``definition_ref`` with ``input``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def resume(self, continuation_ticket: str, output: Dict[str, Any]) -> None:
        """Resume the execution paused on ``continuation_ticket``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def describe_execution(self, execution_ref: str) -> ExecutionRecord:
        """Return the engine's view of ``execution_ref``."""
        raise NotImplementedError
