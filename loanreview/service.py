"""Externally facing orchestration operations."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, FrozenSet, Iterable, List, Optional

from .constants import DEFAULT_DEFINITION_REF, TASK_ID_PREFIX
from .contracts import ReviewType, WorkflowState, WorkflowStatus, utcnow
from .dispatch import build_initial_record, parse_attributes
from .engine import BaseWorkflowEngine
from .engine.tickets import ticket_prefix
from .errors import EngineError, NotFoundError, ValidationError
from .persistence import StateStore

logger = logging.getLogger(__name__)

# Statuses in which each advance operation may consume the stored ticket.
AWAITING_CLASSIFICATION: FrozenSet[WorkflowStatus] = frozenset({WorkflowStatus.INITIALIZED})
AWAITING_DECISION: FrozenSet[WorkflowStatus] = frozenset(
    {
        WorkflowStatus.CLASSIFICATION_ASSIGNED,
        WorkflowStatus.DECISION_PENDING,
        WorkflowStatus.WAITING_FOR_CONFIRMATION,
    }
)


def generate_task_id() -> str:
    return TASK_ID_PREFIX + uuid.uuid4().hex[:8].upper()


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


class ReviewOrchestrationService:
    """Translates review requests into engine calls and store reads.

    Advancing a review only looks up the stored continuation ticket and
    resumes the engine with it; the status change itself happens when the
    engine calls back into the dispatcher.
    """

    def __init__(
        self,
        store: StateStore,
        engine: BaseWorkflowEngine,
        definition_ref: str = DEFAULT_DEFINITION_REF,
        retention_days: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._engine = engine
        self._definition_ref = definition_ref
        self._retention_days = retention_days
        self._clock = clock

    async def start(
        self,
        request_id: str,
        loan_id: str,
        review_type: str | ReviewType,
        attributes: Optional[Iterable[Any]] = None,
        correlation_id: Optional[str] = None,
    ) -> str:
        """Start a new review execution and return its task id.

        Raises:
            ValidationError: If ``review_type`` is not a known review type.
            EngineError: If the engine did not pause awaiting classification.
        """
        review = ReviewType.parse(review_type)
        parsed = parse_attributes(attributes)
        correlation_id = correlation_id or generate_correlation_id()

        task_id = generate_task_id()
        while await self._store.get(request_id, task_id) is not None:
            task_id = generate_task_id()

        execution_input = {
            "request_id": request_id,
            "task_id": task_id,
            "loan_id": loan_id,
            "review_type": review.value,
            "attributes": [a.model_dump() for a in parsed],
            "correlation_id": correlation_id,
        }
        logger.info(
            f"Starting workflow: request_id={request_id}, task_id={task_id}, "
            f"correlation_id={correlation_id}"
        )
        handle = await self._engine.start_execution(self._definition_ref, execution_input)
        if not handle.continuation_ticket:
            raise EngineError(
                f"Execution {handle.execution_ref} did not pause awaiting classification"
            )

        record = await self._store.get(request_id, task_id)
        if record is None:
            record = build_initial_record(
                request_id,
                task_id,
                execution_input,
                self._clock(),
                self._retention_days,
            )
        record = await self._store.put(
            record.evolve(
                execution_ref=handle.execution_ref,
                continuation_ticket=handle.continuation_ticket,
            )
        )
        logger.info(
            f"Workflow started: task_id={task_id}, execution_ref={record.execution_ref}"
        )
        return task_id

    async def advance_classification(
        self,
        task_id: str,
        request_id: str,
        loan_id: str,
        review_type: str | ReviewType,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Resume the paused execution with a new classification.

        Raises:
            ValidationError: If ``review_type`` is not a known review type, or
                the review is no longer awaiting classification.
            NotFoundError: If no paused step awaits input for the record.
        """
        review = ReviewType.parse(review_type)
        record = await self._paused_record(
            request_id, task_id, loan_id, AWAITING_CLASSIFICATION
        )
        logger.info(
            f"Assigning review type: task_id={task_id}, review_type={review.value}, "
            f"correlation_id={correlation_id}"
        )
        await self._resume(record, {"review_type": review.value, "loan_id": loan_id})

    async def advance_decision(
        self,
        task_id: str,
        request_id: str,
        loan_id: str,
        decision: Optional[str],
        attributes: Iterable[Any],
        correlation_id: Optional[str] = None,
    ) -> None:
        """Resume the paused execution with a decision and attribute outcomes.

        Raises:
            ValidationError: If the review has not been classified yet.
            NotFoundError: If no paused step awaits input for the record.
        """
        record = await self._paused_record(request_id, task_id, loan_id, AWAITING_DECISION)
        parsed = parse_attributes(attributes)
        logger.info(
            f"Submitting decision: task_id={task_id}, decision={decision}, "
            f"attributes={len(parsed)}, correlation_id={correlation_id}"
        )
        await self._resume(
            record,
            {
                "decision": decision,
                "attributes": [a.model_dump() for a in parsed],
                "loan_id": loan_id,
            },
        )

    async def get_review(self, request_id: str, task_id: str) -> WorkflowState:
        record = await self._store.get(request_id, task_id)
        if record is None:
            raise NotFoundError(
                f"Workflow not found: request_id={request_id}, task_id={task_id}"
            )
        return record

    async def find_by_loan(self, loan_id: str) -> List[WorkflowState]:
        return await self._store.find_by_loan(loan_id)

    # ------------------------------------------------------------------
    async def _paused_record(
        self,
        request_id: str,
        task_id: str,
        loan_id: str,
        expected: FrozenSet[WorkflowStatus],
    ) -> WorkflowState:
        record = await self.get_review(request_id, task_id)
        if not record.continuation_ticket:
            raise NotFoundError(
                f"No paused step awaiting input: request_id={request_id}, task_id={task_id}"
            )
        if record.status not in expected:
            # the stored ticket belongs to another step; leave it unused
            raise ValidationError(
                f"Workflow {task_id} is {record.status.value} and cannot accept this step",
                code="VALIDATION_INVALID_STATE",
                field="taskId",
            )
        if record.loan_id != loan_id:
            logger.warning(
                f"Loan id mismatch for task_id={task_id}: stored={record.loan_id}, "
                f"submitted={loan_id}"
            )
        return record

    async def _resume(self, record: WorkflowState, output: dict) -> None:
        ticket = record.continuation_ticket
        logger.info(
            f"Resuming request_id={record.request_id} task_id={record.task_id} "
            f"with ticket {ticket_prefix(ticket)}"
        )
        await self._engine.resume(ticket, output)
