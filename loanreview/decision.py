"""Status determination: aggregate decision from attribute outcomes.

The rules are an ordered list of ``(predicate, decision)`` pairs evaluated
top to bottom; the first predicate that holds wins. Order matters:

1. any ``REPURCHASE``         -> ``REPURCHASE``
2. any ``RECLASS``            -> ``RECLASS_APPROVED``
3. all ``APPROVED``           -> ``APPROVED``
4. all ``REJECTED``           -> ``REJECTED``
5. otherwise (approve/reject mix) -> ``PARTIALLY_APPROVED``

Attributes with unrecognised statuses are logged and skipped. When none is
left the review is ``REJECTED``.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .contracts import AggregateDecision, AttributeStatus, LoanAttribute
from .errors import InvariantViolation

logger = logging.getLogger(__name__)

Predicate = Callable[[Sequence[AttributeStatus]], bool]


def _any(status: AttributeStatus) -> Predicate:
    return lambda statuses: status in statuses


def _all(status: AttributeStatus) -> Predicate:
    return lambda statuses: all(s is status for s in statuses)


def _always(statuses: Sequence[AttributeStatus]) -> bool:
    return True


RULES: List[Tuple[Predicate, AggregateDecision]] = [
    (_any(AttributeStatus.REPURCHASE), AggregateDecision.REPURCHASE),
    (_any(AttributeStatus.RECLASS), AggregateDecision.RECLASS_APPROVED),
    (_all(AttributeStatus.APPROVED), AggregateDecision.APPROVED),
    (_all(AttributeStatus.REJECTED), AggregateDecision.REJECTED),
    (_always, AggregateDecision.PARTIALLY_APPROVED),
]


def _recognised_statuses(attributes: Iterable[LoanAttribute]) -> List[AttributeStatus]:
    statuses: List[AttributeStatus] = []
    for attribute in attributes:
        status = attribute.known_status
        if status is None:
            logger.warning(
                f"Ignoring attribute {attribute.name!r} with unexpected status {attribute.status!r}"
            )
            continue
        statuses.append(status)
    return statuses


def determine(attributes: Optional[Sequence[LoanAttribute]]) -> AggregateDecision:
    """Compute the aggregate decision for a finalised attribute list.

    Raises:
        InvariantViolation: If the list is empty or still contains a pending
            attribute. Callers must check :func:`has_pending` first.
    """
    if not attributes:
        raise InvariantViolation("Cannot determine status of an empty attribute list")
    if has_pending(attributes):
        raise InvariantViolation(
            "Cannot determine status while attributes are still pending review"
        )

    statuses = _recognised_statuses(attributes)
    if not statuses:
        logger.warning(
            f"No recognised status among {len(attributes)} attribute(s); "
            f"falling back to {AggregateDecision.REJECTED.value}"
        )
        return AggregateDecision.REJECTED

    for predicate, decision in RULES:
        if predicate(statuses):
            logger.debug(f"Determined {decision.value} from {len(statuses)} attribute(s)")
            return decision
    raise InvariantViolation("No determination rule matched")  # pragma: no cover


def has_pending(attributes: Optional[Sequence[LoanAttribute]]) -> bool:
    """Return ``True`` iff at least one attribute is pending review."""
    if not attributes:
        return False
    return any(a.known_status is AttributeStatus.PENDING_REVIEW for a in attributes)
