"""Declarative state definitions interpreted by the local engine."""

from __future__ import annotations

from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, model_validator

from ..constants import DEFAULT_DEFINITION_REF
from ..contracts import TaskAction


class TaskState(BaseModel):
    """Invokes the dispatcher.

    With ``wait_for_callback`` the engine hands a fresh continuation ticket to
    the task and pauses once the task succeeds.
    """

    type: Literal["task"] = "task"
    action: TaskAction
    wait_for_callback: bool = False
    next: Optional[str] = None
    end: bool = False


class ChoiceState(BaseModel):
    """Branches on ``variable`` in the previous task's output."""

    type: Literal["choice"] = "choice"
    variable: str
    choices: Dict[str, str]
    default: str

    def resolve(self, data: Dict[str, Any]) -> str:
        value = data.get(self.variable)
        if isinstance(value, bool):
            key = "true" if value else "false"
        else:
            key = str(getattr(value, "value", value))
        return self.choices.get(key, self.default)


State = Union[TaskState, ChoiceState]


class StateDefinition(BaseModel):
    name: str
    start_at: str
    states: Dict[str, State]
    catch: Optional[str] = None

    @model_validator(mode="after")
    def _check_targets(self) -> "StateDefinition":
        targets = [self.start_at]
        if self.catch:
            targets.append(self.catch)
        for name, state in self.states.items():
            if isinstance(state, TaskState):
                if state.next is None and not state.end:
                    raise ValueError(f"State {name} needs either next or end")
                if state.next:
                    targets.append(state.next)
            else:
                targets.extend(state.choices.values())
                targets.append(state.default)
        unknown = sorted({t for t in targets if t not in self.states})
        if unknown:
            raise ValueError(f"Unknown states referenced: {unknown}")
        if self.catch and not isinstance(self.states[self.catch], TaskState):
            raise ValueError("catch must name a task state")
        return self


REVIEW_DEFINITION = StateDefinition(
    name=DEFAULT_DEFINITION_REF,
    start_at="InitializeState",
    catch="RecordFailure",
    states={
        "InitializeState": TaskState(
            action=TaskAction.INITIALIZE_STATE,
            wait_for_callback=True,
            next="RecordClassification",
        ),
        "RecordClassification": TaskState(
            action=TaskAction.RECORD_CLASSIFICATION,
            wait_for_callback=True,
            next="CheckPending",
        ),
        "CheckPending": TaskState(action=TaskAction.CHECK_PENDING, next="PendingChoice"),
        "PendingChoice": ChoiceState(
            variable="still_pending",
            choices={"true": "AwaitDecision"},
            default="DetermineStatus",
        ),
        "AwaitDecision": TaskState(
            action=TaskAction.AWAIT_DECISION,
            wait_for_callback=True,
            next="CheckPending",
        ),
        "DetermineStatus": TaskState(
            action=TaskAction.DETERMINE_STATUS, next="RouteChoice"
        ),
        "RouteChoice": ChoiceState(
            variable="route",
            choices={"CONFIRMATION_GATE": "AwaitConfirmation"},
            default="UpdateExternal",
        ),
        "AwaitConfirmation": TaskState(
            action=TaskAction.AWAIT_CONFIRMATION,
            wait_for_callback=True,
            next="UpdateExternal",
        ),
        "UpdateExternal": TaskState(
            action=TaskAction.UPDATE_EXTERNAL, next="FinalizeAudit"
        ),
        "FinalizeAudit": TaskState(action=TaskAction.FINALIZE_AUDIT, end=True),
        "RecordFailure": TaskState(action=TaskAction.RECORD_FAILURE, end=True),
    },
)

DEFINITIONS: Dict[str, StateDefinition] = {REVIEW_DEFINITION.name: REVIEW_DEFINITION}
