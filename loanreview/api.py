"""Inbound API surface returning structured responses."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import BaseModel

from .contracts import WorkflowState
from .errors import InvariantViolation, NotFoundError, ReviewError, ValidationError
from .service import ReviewOrchestrationService, generate_correlation_id
from .validation import InputValidator, pick

logger = logging.getLogger(__name__)


class ApiResponse(BaseModel):
    """Response envelope returned to API callers."""

    status: str
    http_status: int
    message: str
    correlation_id: str
    task_id: Optional[str] = None
    error_code: Optional[str] = None
    field: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


def record_view(record: WorkflowState) -> Dict[str, Any]:
    """Public view of a record. Continuation tickets are never exposed."""
    return record.model_dump(mode="json", exclude={"continuation_ticket"})


class ReviewApi:
    """Validates inbound payloads and maps service outcomes to responses.

    Validation errors map to 400 and lookup misses to 404. Other review
    errors become a coarse 500 carrying only the correlation id. Invariant
    violations are defects and propagate to the caller.
    """

    def __init__(
        self,
        service: ReviewOrchestrationService,
        validator: Optional[InputValidator] = None,
    ) -> None:
        self._service = service
        self._validator = validator or InputValidator()

    async def start_review(self, payload: Dict[str, Any]) -> ApiResponse:
        correlation_id = generate_correlation_id()

        async def call() -> ApiResponse:
            self._validator.validate_start(payload)
            task_id = await self._service.start(
                request_id=pick(payload, "request_id"),
                loan_id=pick(payload, "loan_id"),
                review_type=pick(payload, "review_type"),
                attributes=pick(payload, "attributes"),
                correlation_id=correlation_id,
            )
            return self._success(
                "Workflow started successfully", correlation_id, task_id=task_id
            )

        return await self._handle("start_review", correlation_id, call)

    async def assign_type(self, payload: Dict[str, Any]) -> ApiResponse:
        correlation_id = generate_correlation_id()

        async def call() -> ApiResponse:
            self._validator.validate_assign_type(payload)
            request_id = pick(payload, "request_id")
            task_id = pick(payload, "task_id")
            await self._service.advance_classification(
                task_id=task_id,
                request_id=request_id,
                loan_id=pick(payload, "loan_id"),
                review_type=pick(payload, "review_type"),
                correlation_id=correlation_id,
            )
            record = await self._service.get_review(request_id, task_id)
            return self._success(
                "Review type assigned successfully",
                correlation_id,
                task_id=task_id,
                data=record_view(record),
            )

        return await self._handle("assign_type", correlation_id, call)

    async def next_step(self, payload: Dict[str, Any]) -> ApiResponse:
        correlation_id = generate_correlation_id()

        async def call() -> ApiResponse:
            self._validator.validate_next_step(payload)
            request_id = pick(payload, "request_id")
            task_id = pick(payload, "task_id")
            await self._service.advance_decision(
                task_id=task_id,
                request_id=request_id,
                loan_id=pick(payload, "loan_id"),
                decision=pick(payload, "decision"),
                attributes=pick(payload, "attributes"),
                correlation_id=correlation_id,
            )
            record = await self._service.get_review(request_id, task_id)
            return self._success(
                "Decision submitted successfully",
                correlation_id,
                task_id=task_id,
                data=record_view(record),
            )

        return await self._handle("next_step", correlation_id, call)

    async def get_review(self, request_id: str, task_id: str) -> ApiResponse:
        correlation_id = generate_correlation_id()

        async def call() -> ApiResponse:
            record = await self._service.get_review(request_id, task_id)
            return self._success(
                "Workflow found", correlation_id, task_id=task_id, data=record_view(record)
            )

        return await self._handle("get_review", correlation_id, call)

    async def find_by_loan(self, loan_id: str) -> ApiResponse:
        correlation_id = generate_correlation_id()

        async def call() -> ApiResponse:
            records = await self._service.find_by_loan(loan_id)
            return self._success(
                f"{len(records)} workflow(s) found",
                correlation_id,
                data={"loan_id": loan_id, "records": [record_view(r) for r in records]},
            )

        return await self._handle("find_by_loan", correlation_id, call)

    # ------------------------------------------------------------------
    async def _handle(
        self,
        operation: str,
        correlation_id: str,
        call: Callable[[], Awaitable[ApiResponse]],
    ) -> ApiResponse:
        try:
            return await call()
        except ValidationError as exc:
            logger.warning(
                f"{operation} rejected: {exc.code} {exc.message} "
                f"correlation_id={correlation_id}"
            )
            return ApiResponse(
                status="error",
                http_status=400,
                message=exc.message,
                correlation_id=correlation_id,
                error_code=exc.code,
                field=exc.field,
            )
        except NotFoundError as exc:
            logger.warning(
                f"{operation} found nothing: {exc.message} correlation_id={correlation_id}"
            )
            return ApiResponse(
                status="error",
                http_status=404,
                message=exc.message,
                correlation_id=correlation_id,
                error_code=exc.code,
            )
        except InvariantViolation:
            raise
        except ReviewError as exc:
            logger.error(
                f"{operation} failed: {exc.code} {exc.message} correlation_id={correlation_id}"
            )
            return self._internal_error(correlation_id)
        except Exception:
            logger.exception(
                f"{operation} failed unexpectedly: correlation_id={correlation_id}"
            )
            return self._internal_error(correlation_id)

    @staticmethod
    def _internal_error(correlation_id: str) -> ApiResponse:
        return ApiResponse(
            status="error",
            http_status=500,
            message="Internal error. Quote the correlation id when reporting it.",
            correlation_id=correlation_id,
            error_code="INTERNAL_ERROR",
        )

    @staticmethod
    def _success(
        message: str,
        correlation_id: str,
        task_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> ApiResponse:
        return ApiResponse(
            status="success",
            http_status=200,
            message=message,
            correlation_id=correlation_id,
            task_id=task_id,
            data=data,
        )
