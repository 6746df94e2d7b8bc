"""Core data contracts for the loan review workflow."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import ValidationError


def _normalize(value: str) -> str:
    return value.strip().upper().replace(" ", "_").replace("-", "_")


class ReviewType(str, Enum):
    """Kind of loan review being conducted."""

    LDC = "LDC"
    SEC_POLICY = "SEC_POLICY"
    CONDUIT = "CONDUIT"

    @classmethod
    def parse(cls, value: Any) -> "ReviewType":
        """Normalise a display string such as ``"Sec Policy"`` to a member.

        Raises:
            ValidationError: If ``value`` does not name a review type.
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(
                "reviewType is required",
                code="VALIDATION_MISSING_FIELD",
                field="reviewType",
            )
        try:
            return cls(_normalize(value))
        except ValueError:
            raise ValidationError(
                f"Invalid reviewType: '{value}'. Allowed values: LDC, Sec Policy, Conduit",
                code="VALIDATION_INVALID_REQUEST_TYPE",
                field="reviewType",
            ) from None


class AttributeStatus(str, Enum):
    """Review outcome of one loan attribute."""

    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REPURCHASE = "REPURCHASE"
    RECLASS = "RECLASS"

    @classmethod
    def lookup(cls, value: Any) -> Optional["AttributeStatus"]:
        """Return the member for ``value`` or ``None`` when unrecognised."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        normalized = _normalize(value)
        if normalized == "PENDING":
            return cls.PENDING_REVIEW
        try:
            return cls(normalized)
        except ValueError:
            return None


class AggregateDecision(str, Enum):
    """Overall outcome computed from all attribute outcomes."""

    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PARTIALLY_APPROVED = "PARTIALLY_APPROVED"
    REPURCHASE = "REPURCHASE"
    RECLASS_APPROVED = "RECLASS_APPROVED"


class Route(str, Enum):
    """Next-step destination once a decision is known."""

    DIRECT_UPDATE = "DIRECT_UPDATE"
    CONFIRMATION_GATE = "CONFIRMATION_GATE"


class WorkflowStatus(str, Enum):
    """Lifecycle status of a review record."""

    INITIALIZED = "INITIALIZED"
    CLASSIFICATION_ASSIGNED = "CLASSIFICATION_ASSIGNED"
    DECISION_PENDING = "DECISION_PENDING"
    DETERMINED = "DETERMINED"
    WAITING_FOR_CONFIRMATION = "WAITING_FOR_CONFIRMATION"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED)


class TaskAction(str, Enum):
    """Named steps the orchestration engine invokes on the dispatcher."""

    INITIALIZE_STATE = "INITIALIZE_STATE"
    RECORD_CLASSIFICATION = "RECORD_CLASSIFICATION"
    CHECK_PENDING = "CHECK_PENDING"
    AWAIT_DECISION = "AWAIT_DECISION"
    DETERMINE_STATUS = "DETERMINE_STATUS"
    AWAIT_CONFIRMATION = "AWAIT_CONFIRMATION"
    UPDATE_EXTERNAL = "UPDATE_EXTERNAL"
    FINALIZE_AUDIT = "FINALIZE_AUDIT"
    RECORD_FAILURE = "RECORD_FAILURE"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LoanAttribute(BaseModel):
    """One attribute outcome. ``status`` keeps unrecognised values verbatim."""

    model_config = ConfigDict(frozen=True)

    name: str
    status: str

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        member = AttributeStatus.lookup(value)
        if member is not None:
            return member.value
        return value

    @property
    def known_status(self) -> Optional[AttributeStatus]:
        return AttributeStatus.lookup(self.status)


class WorkflowState(BaseModel):
    """The persisted aggregate for one review execution.

    Instances are immutable; every update produces a new copy through
    :meth:`evolve` so attribute lists are always replaced wholesale.
    """

    model_config = ConfigDict(frozen=True)

    request_id: str
    task_id: str
    loan_id: str
    review_type: Optional[ReviewType] = None
    status: WorkflowStatus = WorkflowStatus.INITIALIZED
    submitted_decision: Optional[str] = None
    aggregate_decision: Optional[AggregateDecision] = None
    attributes: Tuple[LoanAttribute, ...] = ()
    continuation_ticket: Optional[str] = None
    execution_ref: Optional[str] = None
    correlation_id: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    external_updated_at: Optional[datetime] = None
    audited_at: Optional[datetime] = None
    ttl: Optional[int] = None
    version: int = 0

    @field_validator("review_type", mode="before")
    @classmethod
    def _normalize_review_type(cls, value: Any) -> Any:
        if value is None:
            return None
        return ReviewType.parse(value)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.request_id, self.task_id)

    def evolve(self, **changes: Any) -> "WorkflowState":
        """Return a validated copy with ``changes`` applied."""
        data = self.model_dump()
        data.update(changes)
        return WorkflowState.model_validate(data)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.ttl is None:
            return False
        now = now or utcnow()
        return now.timestamp() >= self.ttl

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "WorkflowState":
        return cls.model_validate_json(data)


class TaskError(BaseModel):
    """User-safe description of a caller-fixable task failure."""

    code: str
    message: str


class TaskRequest(BaseModel):
    """Invocation sent by the orchestration engine at a named step."""

    action: TaskAction
    request_id: str
    task_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    continuation_ticket: Optional[str] = None
    execution_ref: Optional[str] = None


class TaskResult(BaseModel):
    """Result handed back to the orchestration engine."""

    action: TaskAction
    status: Optional[WorkflowStatus] = None
    output: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[TaskError] = None

    @property
    def ok(self) -> bool:
        return self.error is None
