"""Signed continuation tickets for the local engine.

A ticket is a JWT naming the execution, the paused state and the record
key, so a paused execution can be resumed by a different process.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

import jwt
from pydantic import BaseModel

from ..constants import TICKET_LOG_PREFIX_LENGTH
from ..errors import TicketNotFoundError

logger = logging.getLogger(__name__)


class TicketClaims(BaseModel):
    exe: str
    dfn: str
    st: str
    req: str
    tsk: str
    jti: str
    iat: int


def ticket_prefix(ticket: str) -> str:
    """Short, log-safe prefix of ``ticket``."""
    return ticket[:TICKET_LOG_PREFIX_LENGTH] + "..."


class TicketCodec:
    """Issues and verifies continuation tickets."""

    def __init__(self, secret: str, algorithm: str = "HS256") -> None:
        self._secret = secret
        self._algorithm = algorithm

    def issue(
        self,
        execution_ref: str,
        definition_ref: str,
        state: str,
        request_id: str,
        task_id: str,
    ) -> tuple[str, TicketClaims]:
        claims = TicketClaims(
            exe=execution_ref,
            dfn=definition_ref,
            st=state,
            req=request_id,
            tsk=task_id,
            jti=uuid.uuid4().hex,
            iat=int(datetime.now(timezone.utc).timestamp()),
        )
        token = jwt.encode(claims.model_dump(), self._secret, algorithm=self._algorithm)
        return token, claims

    def decode(self, ticket: str) -> TicketClaims:
        try:
            data = jwt.decode(ticket, self._secret, algorithms=[self._algorithm])
        except jwt.InvalidTokenError as exc:
            logger.warning(f"Rejected continuation ticket {ticket_prefix(ticket)}: {exc}")
            raise TicketNotFoundError("Continuation ticket is not valid") from exc
        return TicketClaims.model_validate(data)
