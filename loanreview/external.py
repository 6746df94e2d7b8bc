"""Downstream system update collaborator.

The real integration pushes finalised reviews to the servicing and
purchase-advice systems. Only the contract and a logging mock live here.
"""

from __future__ import annotations

import logging
from typing import List, Protocol

from .contracts import WorkflowState
from .errors import ExternalUpdateFailure

logger = logging.getLogger(__name__)


class ExternalSystem(Protocol):
    """Applies a finalised review to downstream systems."""

    async def apply(self, record: WorkflowState) -> None:
        """Push ``record``. Raises :class:`ExternalUpdateFailure` on failure."""


class LoggingExternalSystem(ExternalSystem):
    """Mock integration that logs and remembers every applied record."""

    def __init__(self) -> None:
        self.applied: List[WorkflowState] = []

    async def apply(self, record: WorkflowState) -> None:
        if record.aggregate_decision is None:
            raise ExternalUpdateFailure(
                f"Refusing to apply undetermined review request_id={record.request_id}"
            )
        logger.info(
            f"Updating external systems: request_id={record.request_id} "
            f"task_id={record.task_id} loan_id={record.loan_id} "
            f"decision={record.aggregate_decision.value} correlation_id={record.correlation_id}"
        )
        self.applied.append(record)
