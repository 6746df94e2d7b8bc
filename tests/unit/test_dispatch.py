import pytest

from loanreview.contracts import (
    AggregateDecision,
    LoanAttribute,
    ReviewType,
    TaskAction,
    TaskRequest,
    WorkflowState,
    WorkflowStatus,
)
from loanreview.dispatch import TaskDispatcher, parse_attributes
from loanreview.errors import (
    ExternalUpdateFailure,
    IllegalTransitionError,
    InvariantViolation,
    ValidationError,
)
from loanreview.external import LoggingExternalSystem
from loanreview.persistence import InMemoryStateStore

REQ = "REQ-123456"
TSK = "TSK-0000000A"


class FailingExternalSystem:
    def __init__(self):
        self.calls = 0

    async def apply(self, record):
        self.calls += 1
        raise ExternalUpdateFailure("servicing system unavailable")


def _setup(external=None):
    store = InMemoryStateStore()
    external = external or LoggingExternalSystem()
    return store, external, TaskDispatcher(store, external, retention_days=90)


def _request(action, ticket=None, **payload):
    return TaskRequest(
        action=action,
        request_id=REQ,
        task_id=TSK,
        payload=payload,
        continuation_ticket=ticket,
    )


async def _seed(store, status, **fields):
    defaults = {"loan_id": "LN-1234567", "review_type": ReviewType.LDC}
    if status in (
        WorkflowStatus.INITIALIZED,
        WorkflowStatus.CLASSIFICATION_ASSIGNED,
        WorkflowStatus.DECISION_PENDING,
        WorkflowStatus.WAITING_FOR_CONFIRMATION,
    ):
        defaults["continuation_ticket"] = "seed-ticket"
    defaults.update(fields)
    return await store.put(
        WorkflowState(request_id=REQ, task_id=TSK, status=status, **defaults)
    )


def _attrs(*statuses):
    return tuple(LoanAttribute(name=f"a{i}", status=s) for i, s in enumerate(statuses))


@pytest.mark.asyncio
async def test_initialize_creates_record_with_ticket_and_ttl():
    store, _, dispatcher = _setup()
    result = await dispatcher.dispatch(
        _request(
            TaskAction.INITIALIZE_STATE,
            ticket="t-1",
            loan_id="LN-1234567",
            review_type="Sec Policy",
            attributes=[{"attributeName": "income", "attributeStatus": "Pending"}],
        )
    )
    assert result.ok
    record = await store.get(REQ, TSK)
    assert record.status is WorkflowStatus.INITIALIZED
    assert record.continuation_ticket == "t-1"
    assert record.review_type is ReviewType.SEC_POLICY
    assert record.attributes == (LoanAttribute(name="income", status="PENDING_REVIEW"),)
    assert record.ttl is not None


@pytest.mark.asyncio
async def test_initialize_is_idempotent_and_keeps_latest_ticket():
    store, _, dispatcher = _setup()
    for ticket in ("t-1", "t-2"):
        await dispatcher.dispatch(
            _request(TaskAction.INITIALIZE_STATE, ticket=ticket, loan_id="LN-1234567")
        )
    record = await store.get(REQ, TSK)
    assert record.status is WorkflowStatus.INITIALIZED
    assert record.continuation_ticket == "t-2"
    assert record.version == 2


@pytest.mark.asyncio
async def test_dispatch_accepts_plain_dicts_and_rejects_malformed():
    store, _, dispatcher = _setup()
    result = await dispatcher.dispatch(
        {
            "action": "INITIALIZE_STATE",
            "request_id": REQ,
            "task_id": TSK,
            "payload": {"loan_id": "LN-1234567"},
            "continuation_ticket": "t-1",
        }
    )
    assert result.ok
    with pytest.raises(InvariantViolation):
        await dispatcher.dispatch({"action": "NOT_AN_ACTION", "request_id": REQ})


@pytest.mark.asyncio
async def test_callback_actions_require_a_ticket():
    store, _, dispatcher = _setup()
    with pytest.raises(InvariantViolation):
        await dispatcher.dispatch(_request(TaskAction.INITIALIZE_STATE, loan_id="LN-1234567"))


@pytest.mark.asyncio
async def test_record_classification():
    store, _, dispatcher = _setup()
    await _seed(store, WorkflowStatus.INITIALIZED, review_type=None)
    result = await dispatcher.dispatch(
        _request(TaskAction.RECORD_CLASSIFICATION, ticket="t-2", review_type="Conduit")
    )
    assert result.status is WorkflowStatus.CLASSIFICATION_ASSIGNED
    record = await store.get(REQ, TSK)
    assert record.review_type is ReviewType.CONDUIT
    assert record.continuation_ticket == "t-2"


@pytest.mark.asyncio
async def test_record_classification_reports_invalid_type_as_task_error():
    store, _, dispatcher = _setup()
    await _seed(store, WorkflowStatus.INITIALIZED)
    result = await dispatcher.dispatch(
        _request(TaskAction.RECORD_CLASSIFICATION, ticket="t-2", review_type="Unknown")
    )
    assert not result.ok
    assert result.error.code == "VALIDATION_INVALID_REQUEST_TYPE"
    assert (await store.get(REQ, TSK)).status is WorkflowStatus.INITIALIZED


@pytest.mark.asyncio
async def test_missing_record_is_a_task_error():
    _, _, dispatcher = _setup()
    result = await dispatcher.dispatch(_request(TaskAction.CHECK_PENDING))
    assert result.error.code == "WORKFLOW_NOT_FOUND"


@pytest.mark.asyncio
async def test_check_pending_replaces_attributes():
    store, _, dispatcher = _setup()
    await _seed(store, WorkflowStatus.CLASSIFICATION_ASSIGNED, attributes=_attrs("Pending", "Pending"))
    result = await dispatcher.dispatch(
        _request(
            TaskAction.CHECK_PENDING,
            decision="Approve",
            attributes=[{"name": "income", "status": "Approved"}],
        )
    )
    assert result.output["still_pending"] is False
    record = await store.get(REQ, TSK)
    assert record.status is WorkflowStatus.DECISION_PENDING
    assert record.attributes == (LoanAttribute(name="income", status="APPROVED"),)
    assert record.submitted_decision == "Approve"
    assert record.aggregate_decision is None


@pytest.mark.asyncio
async def test_check_pending_reports_pending_and_rejects_empty():
    store, _, dispatcher = _setup()
    await _seed(store, WorkflowStatus.CLASSIFICATION_ASSIGNED)
    result = await dispatcher.dispatch(
        _request(TaskAction.CHECK_PENDING, attributes=[{"name": "dti", "status": "Pending"}])
    )
    assert result.output["still_pending"] is True

    result = await dispatcher.dispatch(_request(TaskAction.CHECK_PENDING, attributes=[]))
    assert result.error.code == "VALIDATION_MISSING_FIELD"


@pytest.mark.asyncio
async def test_await_decision_stores_ticket_and_requires_pending():
    store, _, dispatcher = _setup()
    await _seed(store, WorkflowStatus.DECISION_PENDING, attributes=_attrs("Pending"))
    await dispatcher.dispatch(_request(TaskAction.AWAIT_DECISION, ticket="t-3"))
    record = await store.get(REQ, TSK)
    assert record.status is WorkflowStatus.DECISION_PENDING
    assert record.continuation_ticket == "t-3"

    await store.put(record.evolve(attributes=_attrs("Approved")))
    with pytest.raises(InvariantViolation):
        await dispatcher.dispatch(_request(TaskAction.AWAIT_DECISION, ticket="t-4"))


@pytest.mark.asyncio
async def test_determine_status_sets_decision_and_clears_ticket():
    store, _, dispatcher = _setup()
    await _seed(store, WorkflowStatus.DECISION_PENDING, attributes=_attrs("Approved", "Reclass"))
    result = await dispatcher.dispatch(_request(TaskAction.DETERMINE_STATUS))
    assert result.output["aggregate_decision"] == "RECLASS_APPROVED"
    assert result.output["route"] == "CONFIRMATION_GATE"
    assert result.output["requires_confirmation"] is True
    record = await store.get(REQ, TSK)
    assert record.status is WorkflowStatus.DETERMINED
    assert record.aggregate_decision is AggregateDecision.RECLASS_APPROVED
    assert record.continuation_ticket is None


@pytest.mark.asyncio
async def test_determine_status_with_pending_attributes_is_a_defect():
    store, _, dispatcher = _setup()
    await _seed(store, WorkflowStatus.DECISION_PENDING, attributes=_attrs("Pending"))
    with pytest.raises(InvariantViolation):
        await dispatcher.dispatch(_request(TaskAction.DETERMINE_STATUS))


@pytest.mark.asyncio
async def test_await_confirmation_only_for_reclass():
    store, _, dispatcher = _setup()
    await _seed(
        store,
        WorkflowStatus.DETERMINED,
        aggregate_decision=AggregateDecision.APPROVED,
    )
    with pytest.raises(InvariantViolation):
        await dispatcher.dispatch(_request(TaskAction.AWAIT_CONFIRMATION, ticket="t-5"))


@pytest.mark.asyncio
async def test_update_external_before_confirmation_is_a_defect():
    store, external, dispatcher = _setup()
    await _seed(
        store,
        WorkflowStatus.DETERMINED,
        aggregate_decision=AggregateDecision.RECLASS_APPROVED,
    )
    with pytest.raises(InvariantViolation):
        await dispatcher.dispatch(_request(TaskAction.UPDATE_EXTERNAL))
    assert external.applied == []


@pytest.mark.asyncio
async def test_update_external_after_confirmation():
    store, external, dispatcher = _setup()
    await _seed(
        store,
        WorkflowStatus.WAITING_FOR_CONFIRMATION,
        aggregate_decision=AggregateDecision.RECLASS_APPROVED,
    )
    result = await dispatcher.dispatch(_request(TaskAction.UPDATE_EXTERNAL, decision="Confirm"))
    assert result.status is WorkflowStatus.COMPLETED
    record = await store.get(REQ, TSK)
    assert record.submitted_decision == "Confirm"
    assert record.external_updated_at is not None
    assert record.continuation_ticket is None
    assert len(external.applied) == 1


@pytest.mark.asyncio
async def test_update_external_runs_at_most_once():
    store, external, dispatcher = _setup()
    await _seed(store, WorkflowStatus.DETERMINED, aggregate_decision=AggregateDecision.APPROVED)
    await dispatcher.dispatch(_request(TaskAction.UPDATE_EXTERNAL))
    result = await dispatcher.dispatch(_request(TaskAction.UPDATE_EXTERNAL))
    assert result.output["noop"] is True
    assert len(external.applied) == 1


@pytest.mark.asyncio
async def test_update_external_failure_leaves_record_unchanged():
    external = FailingExternalSystem()
    store, _, dispatcher = _setup(external)
    await _seed(store, WorkflowStatus.DETERMINED, aggregate_decision=AggregateDecision.REJECTED)
    with pytest.raises(ExternalUpdateFailure):
        await dispatcher.dispatch(_request(TaskAction.UPDATE_EXTERNAL))
    assert (await store.get(REQ, TSK)).status is WorkflowStatus.DETERMINED


@pytest.mark.asyncio
async def test_finalize_audit_is_idempotent():
    store, _, dispatcher = _setup()
    await _seed(store, WorkflowStatus.DETERMINED, aggregate_decision=AggregateDecision.APPROVED)
    first = await dispatcher.dispatch(_request(TaskAction.FINALIZE_AUDIT))
    assert first.status is WorkflowStatus.COMPLETED
    assert first.output["audit_logged"] is True
    audited = await store.get(REQ, TSK)

    second = await dispatcher.dispatch(_request(TaskAction.FINALIZE_AUDIT))
    assert second.output["noop"] is True
    assert (await store.get(REQ, TSK)).version == audited.version


@pytest.mark.asyncio
async def test_record_failure_and_terminal_records_are_frozen():
    store, _, dispatcher = _setup()
    await _seed(store, WorkflowStatus.DECISION_PENDING, attributes=_attrs("Pending"))
    await dispatcher.dispatch(
        _request(TaskAction.RECORD_FAILURE, error="EXTERNAL_SYSTEM_ERROR", cause="down")
    )
    failed = await store.get(REQ, TSK)
    assert failed.status is WorkflowStatus.FAILED
    assert failed.failure_reason == "EXTERNAL_SYSTEM_ERROR: down"
    assert failed.continuation_ticket is None

    for action in (
        TaskAction.RECORD_FAILURE,
        TaskAction.CHECK_PENDING,
        TaskAction.DETERMINE_STATUS,
        TaskAction.UPDATE_EXTERNAL,
        TaskAction.FINALIZE_AUDIT,
    ):
        result = await dispatcher.dispatch(_request(action, ticket="t-x"))
        assert result.output["noop"] is True
    assert (await store.get(REQ, TSK)).version == failed.version


@pytest.mark.asyncio
async def test_out_of_order_action_is_illegal():
    store, _, dispatcher = _setup()
    await _seed(store, WorkflowStatus.INITIALIZED, attributes=_attrs("Approved"))
    with pytest.raises(IllegalTransitionError):
        await dispatcher.dispatch(_request(TaskAction.DETERMINE_STATUS))


def test_parse_attributes_accepts_both_key_styles():
    parsed = parse_attributes(
        [
            {"name": "income", "status": "Approved"},
            {"attributeName": "dti", "attributeStatus": "Escalated"},
        ]
    )
    assert [a.status for a in parsed] == ["APPROVED", "Escalated"]
    with pytest.raises(ValidationError):
        parse_attributes([{"name": "income"}])
    with pytest.raises(ValidationError):
        parse_attributes(["income=Approved"])
