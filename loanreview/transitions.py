"""Allowed status transitions of a review record."""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, Optional

from .contracts import WorkflowStatus
from .errors import IllegalTransitionError

logger = logging.getLogger(__name__)

S = WorkflowStatus

EDGES: Dict[WorkflowStatus, FrozenSet[WorkflowStatus]] = {
    S.INITIALIZED: frozenset({S.CLASSIFICATION_ASSIGNED, S.FAILED}),
    S.CLASSIFICATION_ASSIGNED: frozenset({S.DECISION_PENDING, S.FAILED}),
    # the only cycle: still waiting on pending attributes
    S.DECISION_PENDING: frozenset({S.DECISION_PENDING, S.DETERMINED, S.FAILED}),
    S.DETERMINED: frozenset({S.WAITING_FOR_CONFIRMATION, S.COMPLETED, S.FAILED}),
    S.WAITING_FOR_CONFIRMATION: frozenset({S.COMPLETED, S.FAILED}),
    S.COMPLETED: frozenset(),
    S.FAILED: frozenset(),
}

# Statuses in which the engine is paused and a continuation ticket must exist.
AWAITING_RESUMPTION: FrozenSet[WorkflowStatus] = frozenset(
    {
        S.INITIALIZED,
        S.CLASSIFICATION_ASSIGNED,
        S.DECISION_PENDING,
        S.WAITING_FOR_CONFIRMATION,
    }
)


def is_allowed(current: Optional[WorkflowStatus], target: WorkflowStatus) -> bool:
    """Return ``True`` if ``current -> target`` is an edge of the graph.

    ``None`` stands for a record that does not exist yet, which may only be
    created as ``INITIALIZED``.
    """
    if current is None:
        return target is S.INITIALIZED
    return target in EDGES[current]


def require_transition(
    current: Optional[WorkflowStatus], target: WorkflowStatus
) -> None:
    """Raise :class:`IllegalTransitionError` unless ``current -> target`` is legal."""
    if not is_allowed(current, target):
        logger.error(f"Illegal status transition {current} -> {target}")
        raise IllegalTransitionError(
            f"Illegal status transition: {getattr(current, 'value', current)} -> {target.value}"
        )
