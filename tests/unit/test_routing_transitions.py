import pytest

from loanreview.contracts import AggregateDecision, Route, WorkflowStatus
from loanreview.errors import IllegalTransitionError, InvariantViolation
from loanreview.routing import route
from loanreview.transitions import EDGES, is_allowed, require_transition


def test_route_only_reclass_needs_confirmation():
    for decision in AggregateDecision:
        expected = (
            Route.CONFIRMATION_GATE
            if decision is AggregateDecision.RECLASS_APPROVED
            else Route.DIRECT_UPDATE
        )
        assert route(decision) is expected
        assert route(decision.value) is expected


@pytest.mark.parametrize("value", [None, "", "MAYBE"])
def test_route_rejects_unknown_decisions(value):
    with pytest.raises(InvariantViolation):
        route(value)


def test_terminal_statuses_have_no_outgoing_edges():
    for status in WorkflowStatus:
        if status.is_terminal:
            assert EDGES[status] == frozenset()
        else:
            assert WorkflowStatus.FAILED in EDGES[status]


def test_only_cycle_is_decision_pending():
    loops = [s for s in WorkflowStatus if is_allowed(s, s)]
    assert loops == [WorkflowStatus.DECISION_PENDING]


def test_new_record_starts_initialized():
    assert is_allowed(None, WorkflowStatus.INITIALIZED)
    assert not is_allowed(None, WorkflowStatus.DECISION_PENDING)


def test_require_transition_raises_for_illegal_edges():
    require_transition(WorkflowStatus.DETERMINED, WorkflowStatus.COMPLETED)
    with pytest.raises(IllegalTransitionError):
        require_transition(WorkflowStatus.COMPLETED, WorkflowStatus.DECISION_PENDING)
    with pytest.raises(IllegalTransitionError):
        require_transition(
            WorkflowStatus.CLASSIFICATION_ASSIGNED, WorkflowStatus.COMPLETED
        )
