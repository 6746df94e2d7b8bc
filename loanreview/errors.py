"""Error taxonomy for the loan review workflow."""

from __future__ import annotations

from typing import Optional


class ReviewError(Exception):
    """Base class for all loan review errors."""

    code: str = "INTERNAL_ERROR"
    retryable: bool = False

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(ReviewError):
    """Malformed or out-of-enumeration input. Caller-fixable."""

    code = "VALIDATION_ERROR"

    def __init__(
        self, message: str, code: Optional[str] = None, field: Optional[str] = None
    ) -> None:
        super().__init__(message, code)
        self.field = field


class NotFoundError(ReviewError):
    """Record or continuation ticket lookup missed."""

    code = "WORKFLOW_NOT_FOUND"


class TicketNotFoundError(NotFoundError):
    """Continuation ticket is unknown, already consumed or not verifiable."""

    code = "TICKET_NOT_FOUND"


class ExternalUpdateFailure(ReviewError):
    """Downstream system update failed; the engine may retry."""

    code = "EXTERNAL_SYSTEM_ERROR"
    retryable = True


class StaleRecordError(ReviewError):
    """A store write lost an optimistic concurrency race."""

    code = "STALE_RECORD"
    retryable = True


class EngineError(ReviewError):
    """The orchestration engine rejected a start or resume call."""

    code = "ENGINE_ERROR"


class InvariantViolation(ReviewError):
    """Wiring defect in the calling engine. Never shown to API callers."""

    code = "INVARIANT_VIOLATION"


class IllegalTransitionError(InvariantViolation):
    """Requested status change is not an edge of the state machine."""

    code = "ILLEGAL_TRANSITION"


__all__ = [
    "ReviewError",
    "ValidationError",
    "NotFoundError",
    "TicketNotFoundError",
    "ExternalUpdateFailure",
    "StaleRecordError",
    "EngineError",
    "InvariantViolation",
    "IllegalTransitionError",
]
