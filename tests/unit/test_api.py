import pytest

from loanreview.api import ApiResponse
from loanreview.contracts import WorkflowStatus
from loanreview.errors import EngineError, InvariantViolation

START = {"requestId": "REQ-123456", "loanId": "LN-1234567", "reviewType": "LDC"}


@pytest.mark.asyncio
async def test_start_review_returns_task_id(runtime):
    response = await runtime.api.start_review(START)
    assert isinstance(response, ApiResponse)
    assert response.http_status == 200
    assert response.status == "success"
    assert response.task_id.startswith("TSK-")
    assert response.correlation_id

    record = await runtime.store.get("REQ-123456", response.task_id)
    assert record.status is WorkflowStatus.INITIALIZED
    assert record.correlation_id == response.correlation_id


@pytest.mark.asyncio
async def test_each_call_gets_a_fresh_correlation_id(runtime):
    first = await runtime.api.start_review(START)
    second = await runtime.api.start_review(START)
    assert first.correlation_id != second.correlation_id
    assert first.task_id != second.task_id


@pytest.mark.asyncio
async def test_validation_errors_map_to_400(runtime):
    response = await runtime.api.start_review({**START, "reviewType": "Unknown"})
    assert response.http_status == 400
    assert response.error_code == "VALIDATION_INVALID_REQUEST_TYPE"
    assert response.field == "reviewType"
    assert await runtime.store.list_records() == []


@pytest.mark.asyncio
async def test_unknown_task_maps_to_404(runtime):
    response = await runtime.api.next_step(
        {
            "taskId": "TSK-FFFFFFFF",
            "requestId": "REQ-123456",
            "loanId": "LN-1234567",
            "decision": "Approve",
            "attributes": [{"name": "income", "status": "Approved"}],
        }
    )
    assert response.http_status == 404
    assert response.error_code == "WORKFLOW_NOT_FOUND"

    response = await runtime.api.get_review("REQ-123456", "TSK-FFFFFFFF")
    assert response.http_status == 404


@pytest.mark.asyncio
async def test_engine_errors_hide_details(runtime, monkeypatch):
    async def broken_start(*args, **kwargs):
        raise EngineError("state machine arn:secret is throttled")

    monkeypatch.setattr(runtime.engine, "start_execution", broken_start)
    response = await runtime.api.start_review(START)
    assert response.http_status == 500
    assert response.error_code == "INTERNAL_ERROR"
    assert "secret" not in response.message
    assert response.correlation_id


@pytest.mark.asyncio
async def test_invariant_violations_propagate(runtime, monkeypatch):
    async def broken_start(*args, **kwargs):
        raise InvariantViolation("wiring defect")

    monkeypatch.setattr(runtime.engine, "start_execution", broken_start)
    with pytest.raises(InvariantViolation):
        await runtime.api.start_review(START)


@pytest.mark.asyncio
async def test_record_views_never_expose_tickets(runtime):
    started = await runtime.api.start_review(START)
    response = await runtime.api.get_review("REQ-123456", started.task_id)
    assert response.ok
    assert "continuation_ticket" not in response.data
    assert response.data["status"] == "INITIALIZED"

    listing = await runtime.api.find_by_loan("LN-1234567")
    assert [r["task_id"] for r in listing.data["records"]] == [started.task_id]


@pytest.mark.asyncio
async def test_unexpected_errors_map_to_500(runtime, monkeypatch):
    async def broken_get(*args, **kwargs):
        raise RuntimeError("db host 10.0.0.5 refused connection")

    monkeypatch.setattr(runtime.store, "get", broken_get)
    response = await runtime.api.get_review("REQ-123456", "TSK-FFFFFFFF")
    assert response.http_status == 500
    assert response.error_code == "INTERNAL_ERROR"
    assert "10.0.0.5" not in response.message
    assert response.correlation_id


@pytest.mark.asyncio
async def test_decision_before_classification_maps_to_400(runtime):
    started = await runtime.api.start_review(START)
    response = await runtime.api.next_step(
        {
            "taskId": started.task_id,
            "requestId": "REQ-123456",
            "loanId": "LN-1234567",
            "decision": "Approve",
            "attributes": [{"name": "income", "status": "Approved"}],
        }
    )
    assert response.http_status == 400
    assert response.error_code == "VALIDATION_INVALID_STATE"
    assert response.field == "taskId"
