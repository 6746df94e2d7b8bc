"""Task dispatcher invoked by the orchestration engine at each named step."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from .contracts import (
    LoanAttribute,
    ReviewType,
    Route,
    TaskAction,
    TaskError,
    TaskRequest,
    TaskResult,
    WorkflowState,
    WorkflowStatus,
    utcnow,
)
from .decision import determine, has_pending
from .errors import InvariantViolation, NotFoundError, ValidationError
from .external import ExternalSystem
from .persistence import StateStore
from .routing import route
from .transitions import AWAITING_RESUMPTION, require_transition

logger = logging.getLogger(__name__)

Handler = Callable[[TaskRequest], Awaitable[TaskResult]]


def parse_attributes(items: Optional[Iterable[Any]]) -> List[LoanAttribute]:
    """Build attributes from dicts using snake_case or camelCase keys.

    Unrecognised statuses are kept verbatim; only structurally broken
    entries are rejected.
    """
    attributes: List[LoanAttribute] = []
    for index, item in enumerate(items or []):
        if isinstance(item, LoanAttribute):
            attributes.append(item)
            continue
        if not isinstance(item, dict):
            raise ValidationError(
                f"attributes[{index}] must be an object",
                code="VALIDATION_INVALID_FORMAT",
                field="attributes",
            )
        name = item.get("name") or item.get("attributeName")
        status = item.get("status") or item.get("attributeStatus")
        if not name or not status:
            raise ValidationError(
                f"attributes[{index}] requires a name and a status",
                code="VALIDATION_MISSING_FIELD",
                field="attributes",
            )
        attributes.append(LoanAttribute(name=name, status=status))
    return attributes


def build_initial_record(
    request_id: str,
    task_id: str,
    payload: Dict[str, Any],
    now: datetime,
    retention_days: Optional[int] = None,
    execution_ref: Optional[str] = None,
) -> WorkflowState:
    """Create the ``INITIALIZED`` record for a new execution from its input."""
    loan_id = payload.get("loan_id") or payload.get("loanId")
    if not loan_id:
        raise ValidationError(
            "loanId is required", code="VALIDATION_MISSING_FIELD", field="loanId"
        )
    ttl = None
    if retention_days:
        ttl = int((now + timedelta(days=retention_days)).timestamp())
    review_type = payload.get("review_type") or payload.get("reviewType")
    return WorkflowState(
        request_id=request_id,
        task_id=task_id,
        loan_id=loan_id,
        review_type=ReviewType.parse(review_type) if review_type else None,
        status=WorkflowStatus.INITIALIZED,
        attributes=tuple(parse_attributes(payload.get("attributes"))),
        correlation_id=payload.get("correlation_id") or payload.get("correlationId"),
        execution_ref=execution_ref,
        created_at=now,
        updated_at=now,
        ttl=ttl,
    )


class TaskDispatcher:
    """Single entry point for engine callbacks.

    Every action reads the record once and writes it at most once. Records
    in a terminal status are never rewritten; the call is confirmed as a
    no-op so duplicate engine retries are harmless.
    """

    def __init__(
        self,
        store: StateStore,
        external: ExternalSystem,
        retention_days: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._external = external
        self._retention_days = retention_days
        self._clock = clock
        self._handlers: Dict[TaskAction, Handler] = {
            TaskAction.INITIALIZE_STATE: self._initialize_state,
            TaskAction.RECORD_CLASSIFICATION: self._record_classification,
            TaskAction.CHECK_PENDING: self._check_pending,
            TaskAction.AWAIT_DECISION: self._await_decision,
            TaskAction.DETERMINE_STATUS: self._determine_status,
            TaskAction.AWAIT_CONFIRMATION: self._await_confirmation,
            TaskAction.UPDATE_EXTERNAL: self._update_external,
            TaskAction.FINALIZE_AUDIT: self._finalize_audit,
            TaskAction.RECORD_FAILURE: self._record_failure,
        }
        missing = set(TaskAction) - set(self._handlers)
        if missing:  # pragma: no cover - guards new actions without handlers
            raise InvariantViolation(f"No handler for actions: {sorted(missing)}")

    async def dispatch(self, request: TaskRequest | Dict[str, Any]) -> TaskResult:
        """Run the action named in ``request``.

        Validation and lookup failures are returned as a structured
        :class:`TaskResult` error; everything else propagates to the engine.
        """
        if not isinstance(request, TaskRequest):
            try:
                request = TaskRequest.model_validate(request)
            except PydanticValidationError as exc:
                raise InvariantViolation(f"Malformed task request: {exc}") from exc

        logger.info(
            f"Handling task: action={request.action.value}, "
            f"request_id={request.request_id}, task_id={request.task_id}"
        )
        try:
            return await self._handlers[request.action](request)
        except (ValidationError, NotFoundError) as exc:
            logger.warning(
                f"Task {request.action.value} rejected for request_id={request.request_id} "
                f"task_id={request.task_id}: {exc.code} {exc.message}"
            )
            return TaskResult(
                action=request.action,
                error=TaskError(code=exc.code, message=exc.message),
            )

    # ------------------------------------------------------------------
    # Helpers
    async def _load(self, request: TaskRequest) -> WorkflowState:
        record = await self._store.get(request.request_id, request.task_id)
        if record is None:
            raise NotFoundError(
                f"Workflow not found: request_id={request.request_id}, task_id={request.task_id}"
            )
        return record

    async def _save(self, record: WorkflowState) -> WorkflowState:
        if record.status in AWAITING_RESUMPTION and not record.continuation_ticket:
            raise InvariantViolation(
                f"Status {record.status.value} requires a continuation ticket"
            )
        return await self._store.put(record)

    @staticmethod
    def _require_ticket(request: TaskRequest) -> str:
        if not request.continuation_ticket:
            raise InvariantViolation(
                f"{request.action.value} must be invoked with a continuation ticket"
            )
        return request.continuation_ticket

    @staticmethod
    def _transition(
        record: WorkflowState, target: WorkflowStatus, **changes: Any
    ) -> WorkflowState:
        require_transition(record.status, target)
        return record.evolve(status=target, **changes)

    @staticmethod
    def _result(
        request: TaskRequest, record: WorkflowState, **output: Any
    ) -> TaskResult:
        return TaskResult(
            action=request.action,
            status=record.status,
            output={"status": record.status.value, **output},
        )

    def _terminal(self, request: TaskRequest, record: WorkflowState) -> TaskResult:
        logger.info(
            f"Ignoring {request.action.value} for terminal record request_id={record.request_id} "
            f"task_id={record.task_id} status={record.status.value}"
        )
        return self._result(request, record, noop=True)

    # ------------------------------------------------------------------
    # Actions
    async def _initialize_state(self, request: TaskRequest) -> TaskResult:
        ticket = self._require_ticket(request)
        record = await self._store.get(request.request_id, request.task_id)
        if record is None:
            record = build_initial_record(
                request.request_id,
                request.task_id,
                request.payload,
                self._clock(),
                self._retention_days,
                request.execution_ref,
            )
        elif record.status.is_terminal:
            return self._terminal(request, record)
        elif record.status is not WorkflowStatus.INITIALIZED:
            require_transition(record.status, WorkflowStatus.INITIALIZED)

        record = await self._save(
            record.evolve(
                continuation_ticket=ticket,
                execution_ref=request.execution_ref or record.execution_ref,
            )
        )
        logger.info(
            f"Persisted initial state: request_id={record.request_id}, task_id={record.task_id}"
        )
        return self._result(request, record)

    async def _record_classification(self, request: TaskRequest) -> TaskResult:
        ticket = self._require_ticket(request)
        record = await self._load(request)
        if record.status.is_terminal:
            return self._terminal(request, record)

        payload = request.payload
        review_type = ReviewType.parse(payload.get("review_type") or payload.get("reviewType"))
        record = await self._save(
            self._transition(
                record,
                WorkflowStatus.CLASSIFICATION_ASSIGNED,
                review_type=review_type,
                continuation_ticket=ticket,
            )
        )
        logger.info(
            f"Persisted review type: request_id={record.request_id}, "
            f"task_id={record.task_id}, review_type={review_type.value}"
        )
        return self._result(request, record, review_type=review_type.value)

    async def _check_pending(self, request: TaskRequest) -> TaskResult:
        """Record a submitted decision and report whether attributes are pending.

        The submitted list replaces the stored one entirely. No aggregate
        decision exists while anything is pending.
        """
        record = await self._load(request)
        if record.status.is_terminal:
            return self._terminal(request, record)

        payload = request.payload
        if "attributes" in payload:
            attributes = tuple(parse_attributes(payload["attributes"]))
        else:
            attributes = record.attributes
        if not attributes:
            raise ValidationError(
                "attributes must not be empty",
                code="VALIDATION_MISSING_FIELD",
                field="attributes",
            )
        decision = payload.get("decision") or payload.get("loanDecision")
        still_pending = has_pending(attributes)

        record = await self._save(
            self._transition(
                record,
                WorkflowStatus.DECISION_PENDING,
                submitted_decision=decision or record.submitted_decision,
                attributes=attributes,
                aggregate_decision=None,
            )
        )
        logger.info(
            f"Checked pending: request_id={record.request_id}, task_id={record.task_id}, "
            f"still_pending={still_pending}"
        )
        return self._result(request, record, still_pending=still_pending)

    async def _await_decision(self, request: TaskRequest) -> TaskResult:
        ticket = self._require_ticket(request)
        record = await self._load(request)
        if record.status.is_terminal:
            return self._terminal(request, record)
        if not has_pending(record.attributes):
            raise InvariantViolation(
                "AWAIT_DECISION invoked although no attribute is pending"
            )

        record = await self._save(
            self._transition(
                record, WorkflowStatus.DECISION_PENDING, continuation_ticket=ticket
            )
        )
        return self._result(request, record)

    async def _determine_status(self, request: TaskRequest) -> TaskResult:
        record = await self._load(request)
        if record.status.is_terminal:
            return self._terminal(request, record)

        decision = determine(record.attributes)
        destination = route(decision)
        record = await self._save(
            self._transition(
                record,
                WorkflowStatus.DETERMINED,
                aggregate_decision=decision,
                continuation_ticket=None,
            )
        )
        logger.info(
            f"Determined status: request_id={record.request_id}, decision={decision.value}, "
            f"route={destination.value}"
        )
        return self._result(
            request,
            record,
            aggregate_decision=decision.value,
            route=destination.value,
            requires_confirmation=destination is Route.CONFIRMATION_GATE,
        )

    async def _await_confirmation(self, request: TaskRequest) -> TaskResult:
        ticket = self._require_ticket(request)
        record = await self._load(request)
        if record.status.is_terminal:
            return self._terminal(request, record)
        if route(record.aggregate_decision) is not Route.CONFIRMATION_GATE:
            raise InvariantViolation(
                f"Decision {record.aggregate_decision} does not require confirmation"
            )

        record = await self._save(
            self._transition(
                record,
                WorkflowStatus.WAITING_FOR_CONFIRMATION,
                continuation_ticket=ticket,
            )
        )
        return self._result(request, record)

    async def _update_external(self, request: TaskRequest) -> TaskResult:
        record = await self._load(request)
        if record.status.is_terminal:
            # already applied; never push twice
            return self._terminal(request, record)
        if record.aggregate_decision is None:
            raise InvariantViolation("UPDATE_EXTERNAL invoked before status determination")
        if (
            record.status is WorkflowStatus.DETERMINED
            and route(record.aggregate_decision) is Route.CONFIRMATION_GATE
        ):
            raise InvariantViolation(
                "UPDATE_EXTERNAL invoked before reclassification was confirmed"
            )
        require_transition(record.status, WorkflowStatus.COMPLETED)

        changes: Dict[str, Any] = {}
        confirmation = request.payload.get("decision") or request.payload.get("loanDecision")
        if record.status is WorkflowStatus.WAITING_FOR_CONFIRMATION and confirmation:
            changes["submitted_decision"] = confirmation

        await self._external.apply(record)
        record = await self._save(
            self._transition(
                record,
                WorkflowStatus.COMPLETED,
                continuation_ticket=None,
                external_updated_at=self._clock(),
                **changes,
            )
        )
        logger.info(f"External systems updated: request_id={record.request_id}")
        return self._result(request, record)

    async def _finalize_audit(self, request: TaskRequest) -> TaskResult:
        record = await self._load(request)
        if record.status is WorkflowStatus.FAILED:
            return self._terminal(request, record)
        if record.status is WorkflowStatus.COMPLETED:
            if record.audited_at is not None:
                return self._result(request, record, noop=True, audit_logged=True)
            record = await self._save(record.evolve(audited_at=self._clock()))
        else:
            record = await self._save(
                self._transition(
                    record,
                    WorkflowStatus.COMPLETED,
                    continuation_ticket=None,
                    audited_at=self._clock(),
                )
            )
        logger.info(
            f"Audit trail logged: request_id={record.request_id}, task_id={record.task_id}"
        )
        return self._result(request, record, audit_logged=True)

    async def _record_failure(self, request: TaskRequest) -> TaskResult:
        record = await self._load(request)
        if record.status.is_terminal:
            return self._terminal(request, record)

        error = request.payload.get("error") or "UNKNOWN"
        cause = request.payload.get("cause")
        reason = f"{error}: {cause}" if cause else error
        record = await self._save(
            self._transition(
                record,
                WorkflowStatus.FAILED,
                continuation_ticket=None,
                failure_reason=reason,
            )
        )
        logger.error(
            f"Workflow failed: request_id={record.request_id}, task_id={record.task_id}, "
            f"reason={reason}"
        )
        return self._result(request, record)
