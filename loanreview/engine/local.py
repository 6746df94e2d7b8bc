"""In-process orchestration engine interpreting a :class:`StateDefinition`."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..config import EngineConfig, RetryConfig
from ..constants import MAX_FINISHED_EXECUTIONS
from ..contracts import TaskRequest, TaskResult
from ..errors import EngineError, NotFoundError, ReviewError, TicketNotFoundError
from ..utils.retry import compute_backoff
from .base import BaseWorkflowEngine, ExecutionHandle, ExecutionRecord, ExecutionStatus
from .definition import DEFINITIONS, ChoiceState, StateDefinition, TaskState
from .tickets import TicketClaims, TicketCodec, ticket_prefix

logger = logging.getLogger(__name__)

TaskHandler = Callable[[TaskRequest], Awaitable[TaskResult]]


class LocalWorkflowEngine(BaseWorkflowEngine):
    """Runs executions synchronously inside the caller's event loop.

    ``start_execution`` and ``resume`` return once the execution pauses on a
    callback task, ends, or fails. Retryable task errors are retried with
    exponential backoff; when retries run out, or a task returns a
    structured error, the definition's catch state runs and the execution
    ends ``FAILED``. Non-retryable exceptions run the catch state and then
    propagate.

    Only running and paused executions are tracked in full. Finished ones
    move to a bounded history, oldest first out, and their consumed ticket
    ids are dropped.
    """

    def __init__(
        self,
        task_handler: TaskHandler,
        config: Optional[EngineConfig] = None,
        definitions: Optional[Dict[str, StateDefinition]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        max_finished: int = MAX_FINISHED_EXECUTIONS,
    ) -> None:
        self._config = config or EngineConfig()
        self._task_handler = task_handler
        self._definitions = definitions or DEFINITIONS
        self._codec = TicketCodec(self._config.ticket_secret, self._config.ticket_algorithm)
        self._sleep = sleep
        self._max_finished = max_finished
        self._executions: Dict[str, ExecutionRecord] = {}
        self._finished: OrderedDict[str, ExecutionRecord] = OrderedDict()
        # consumed ticket ids, per live execution
        self._consumed: Dict[str, Set[str]] = {}

    @property
    def retry_policy(self) -> RetryConfig:
        return self._config.retry

    def _definition(self, definition_ref: str) -> StateDefinition:
        try:
            return self._definitions[definition_ref]
        except KeyError:
            raise EngineError(f"Unknown state definition: {definition_ref}") from None

    # ------------------------------------------------------------------
    async def start_execution(
        self, definition_ref: str, input: Dict[str, Any]
    ) -> ExecutionHandle:
        definition = self._definition(definition_ref)
        request_id = input.get("request_id")
        task_id = input.get("task_id")
        if not request_id or not task_id:
            raise EngineError("Execution input requires request_id and task_id")

        execution = ExecutionRecord(
            execution_ref=f"{definition.name}:{task_id}:{uuid.uuid4().hex[:8]}",
            definition_ref=definition.name,
            request_id=request_id,
            task_id=task_id,
        )
        self._executions[execution.execution_ref] = execution
        logger.info(
            f"Started execution {execution.execution_ref} for request_id={request_id}"
        )
        ticket = await self._run(execution, definition, definition.start_at, input)
        return ExecutionHandle(
            execution_ref=execution.execution_ref, continuation_ticket=ticket
        )

    async def resume(self, continuation_ticket: str, output: Dict[str, Any]) -> None:
        claims = self._codec.decode(continuation_ticket)
        if claims.exe in self._finished:
            raise TicketNotFoundError(f"Execution {claims.exe} has already finished")
        if claims.jti in self._consumed.get(claims.exe, ()):
            raise TicketNotFoundError("Continuation ticket was already used")

        definition = self._definition(claims.dfn)
        execution = self._executions.get(claims.exe)
        if execution is None:
            # paused by another process; rebuild the engine-side view
            execution = self._paused_from_claims(claims)
            self._executions[claims.exe] = execution
        if (
            execution.status is not ExecutionStatus.PAUSED
            or execution.pending_ticket_id != claims.jti
        ):
            raise TicketNotFoundError("Continuation ticket does not match a paused step")

        paused = definition.states.get(claims.st)
        if not isinstance(paused, TaskState) or not paused.wait_for_callback:
            raise TicketNotFoundError("Continuation ticket names no callback state")

        self._consumed.setdefault(claims.exe, set()).add(claims.jti)
        execution.pending_ticket_id = None
        execution.paused_state = None
        logger.info(
            f"Resuming execution {execution.execution_ref} after {claims.st} "
            f"with ticket {ticket_prefix(continuation_ticket)}"
        )
        if paused.end:
            self._finish(execution, ExecutionStatus.SUCCEEDED)
            return
        await self._run(execution, definition, paused.next, output)

    async def describe_execution(self, execution_ref: str) -> ExecutionRecord:
        execution = self._executions.get(execution_ref) or self._finished.get(execution_ref)
        if execution is None:
            raise NotFoundError(f"Execution not found: {execution_ref}")
        return execution

    def describe_ticket(self, continuation_ticket: str) -> ExecutionRecord:
        """Describe the paused execution a ticket points at.

        Used when the execution was started by another process and only the
        ticket stored on the record is available.
        """
        claims = self._codec.decode(continuation_ticket)
        execution = self._executions.get(claims.exe) or self._finished.get(claims.exe)
        if execution is not None:
            return execution
        return self._paused_from_claims(claims)

    def _finish(self, execution: ExecutionRecord, status: ExecutionStatus) -> None:
        execution.status = status
        self._executions.pop(execution.execution_ref, None)
        self._consumed.pop(execution.execution_ref, None)
        self._finished[execution.execution_ref] = execution
        while len(self._finished) > self._max_finished:
            self._finished.popitem(last=False)

    @staticmethod
    def _paused_from_claims(claims: TicketClaims) -> ExecutionRecord:
        return ExecutionRecord(
            execution_ref=claims.exe,
            definition_ref=claims.dfn,
            request_id=claims.req,
            task_id=claims.tsk,
            status=ExecutionStatus.PAUSED,
            paused_state=claims.st,
            pending_ticket_id=claims.jti,
        )

    # ------------------------------------------------------------------
    async def _run(
        self,
        execution: ExecutionRecord,
        definition: StateDefinition,
        state_name: Optional[str],
        data: Dict[str, Any],
    ) -> Optional[str]:
        execution.status = ExecutionStatus.RUNNING
        current = state_name
        while current:
            state = definition.states[current]
            execution.history.append(current)
            if isinstance(state, ChoiceState):
                current = state.resolve(data)
                continue

            ticket = None
            ticket_id = None
            if state.wait_for_callback:
                ticket, claims = self._codec.issue(
                    execution.execution_ref,
                    definition.name,
                    current,
                    execution.request_id,
                    execution.task_id,
                )
                ticket_id = claims.jti

            try:
                result = await self._invoke(execution, state, data, ticket)
            except ReviewError as exc:
                await self._fail(execution, definition, exc.code, exc.message)
                if exc.retryable:
                    return None
                raise
            except Exception as exc:
                await self._fail(execution, definition, type(exc).__name__, str(exc))
                raise

            if not result.ok:
                await self._fail(
                    execution, definition, result.error.code, result.error.message
                )
                return None

            if state.wait_for_callback:
                execution.status = ExecutionStatus.PAUSED
                execution.paused_state = current
                execution.pending_ticket_id = ticket_id
                logger.info(
                    f"Execution {execution.execution_ref} paused at {current} "
                    f"awaiting ticket {ticket_prefix(ticket)}"
                )
                return ticket
            if state.end:
                self._finish(execution, ExecutionStatus.SUCCEEDED)
                logger.info(f"Execution {execution.execution_ref} succeeded")
                return None
            data = result.output
            current = state.next
        return None

    async def _invoke(
        self,
        execution: ExecutionRecord,
        state: TaskState,
        data: Dict[str, Any],
        ticket: Optional[str],
    ) -> TaskResult:
        request = TaskRequest(
            action=state.action,
            request_id=execution.request_id,
            task_id=execution.task_id,
            payload=data,
            continuation_ticket=ticket,
            execution_ref=execution.execution_ref,
        )
        policy = self.retry_policy
        attempt = 0
        while True:
            try:
                return await self._task_handler(request)
            except ReviewError as exc:
                if not exc.retryable or attempt + 1 >= policy.max_attempts:
                    raise
                delay = compute_backoff(
                    attempt,
                    interval=policy.interval_seconds,
                    rate=policy.backoff_rate,
                    jitter=policy.jitter,
                )
                logger.warning(
                    f"Retrying {state.action.value} for {execution.execution_ref} "
                    f"in {delay:.2f}s after {exc.code}: {exc.message}"
                )
                attempt += 1
                await self._sleep(delay)

    async def _fail(
        self,
        execution: ExecutionRecord,
        definition: StateDefinition,
        error: str,
        cause: str,
    ) -> None:
        execution.error = f"{error}: {cause}"
        self._finish(execution, ExecutionStatus.FAILED)
        logger.error(f"Execution {execution.execution_ref} failed: {execution.error}")
        if not definition.catch:
            return
        catch_state = definition.states[definition.catch]
        execution.history.append(definition.catch)
        await self._task_handler(
            TaskRequest(
                action=catch_state.action,
                request_id=execution.request_id,
                task_id=execution.task_id,
                payload={"error": error, "cause": cause},
                execution_ref=execution.execution_ref,
            )
        )
