"""Maps an aggregate decision to the next workflow destination."""

from __future__ import annotations

import logging
from typing import Any, Dict

from .contracts import AggregateDecision, Route
from .errors import InvariantViolation

logger = logging.getLogger(__name__)

ROUTES: Dict[AggregateDecision, Route] = {
    AggregateDecision.APPROVED: Route.DIRECT_UPDATE,
    AggregateDecision.REJECTED: Route.DIRECT_UPDATE,
    AggregateDecision.PARTIALLY_APPROVED: Route.DIRECT_UPDATE,
    AggregateDecision.REPURCHASE: Route.DIRECT_UPDATE,
    AggregateDecision.RECLASS_APPROVED: Route.CONFIRMATION_GATE,
}


def route(decision: Any) -> Route:
    """Return the destination for ``decision``.

    Raises:
        InvariantViolation: For ``None`` or any value outside
            :class:`AggregateDecision`.
    """
    try:
        member = AggregateDecision(decision)
    except ValueError:
        raise InvariantViolation(f"Unroutable decision: {decision!r}") from None
    destination = ROUTES[member]
    logger.info(f"Routing decision {member.value} -> {destination.value}")
    return destination
