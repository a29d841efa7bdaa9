"""Per-action-class rollback strategies and undo capabilities.

Dispatch is table-driven: ``ACTION_ROLLBACK_STRATEGIES`` says *how* an action
class is undone, ``UNDO_INSTRUCTIONS`` says *what* has to be captured from the
audit entry to do it, and an ``UndoRegistry`` instance holds the host-injected
callables that actually talk to Calendar, GitHub, the task system, etc.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from proxyguard.exceptions import RollbackExecutionError
from proxyguard.schemas.authorization import ActionClass
from proxyguard.schemas.rollback import RollbackStrategy

ACTION_ROLLBACK_STRATEGIES: dict[ActionClass, RollbackStrategy] = {
    ActionClass.CREATE_CALENDAR_EVENT: RollbackStrategy.DIRECT_UNDO,
    ActionClass.CREATE_TASK: RollbackStrategy.DIRECT_UNDO,
    ActionClass.CREATE_GITHUB_ISSUE: RollbackStrategy.DIRECT_UNDO,
    ActionClass.UPDATE_CALENDAR_EVENT: RollbackStrategy.COMPENSATING,
    ActionClass.UPDATE_TASK: RollbackStrategy.COMPENSATING,
    ActionClass.UPDATE_GITHUB_ISSUE: RollbackStrategy.COMPENSATING,
    ActionClass.DELETE_CALENDAR_EVENT: RollbackStrategy.COMPENSATING,
    ActionClass.SEND_EMAIL: RollbackStrategy.NOT_SUPPORTED,
    ActionClass.POST_SLACK_MESSAGE: RollbackStrategy.NOT_SUPPORTED,
}


def get_rollback_strategy(action_class: str) -> RollbackStrategy:
    """Unknown action classes are never undoable."""
    try:
        return ACTION_ROLLBACK_STRATEGIES[ActionClass(action_class)]
    except ValueError:
        return RollbackStrategy.NOT_SUPPORTED


# ---------------------------------------------------------------------------
# Undo instructions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UndoSpec:
    operation: str
    resource_source: str  # "input" or "output"
    resource_key: str
    missing_message: str
    needs_previous_state: bool = False


UNDO_INSTRUCTIONS: dict[ActionClass, UndoSpec] = {
    ActionClass.CREATE_CALENDAR_EVENT: UndoSpec(
        "delete", "output", "eventId", "Event ID not found in audit log output"
    ),
    ActionClass.CREATE_GITHUB_ISSUE: UndoSpec(
        "close", "output", "issueNumber", "Issue number not found in audit log output"
    ),
    ActionClass.CREATE_TASK: UndoSpec(
        "delete", "output", "taskId", "Task ID not found in audit log output"
    ),
    ActionClass.UPDATE_CALENDAR_EVENT: UndoSpec(
        "restore",
        "input",
        "eventId",
        "Event ID or previous state not found in audit log",
        needs_previous_state=True,
    ),
    ActionClass.DELETE_CALENDAR_EVENT: UndoSpec(
        "recreate", "input", "eventData", "Event data not found in audit log"
    ),
    ActionClass.UPDATE_TASK: UndoSpec(
        "restore",
        "input",
        "id",
        "Resource ID or previous state not found in audit log",
        needs_previous_state=True,
    ),
    ActionClass.UPDATE_GITHUB_ISSUE: UndoSpec(
        "restore",
        "input",
        "id",
        "Resource ID or previous state not found in audit log",
        needs_previous_state=True,
    ),
}


def build_undo_instructions(
    action_class: str,
    original_input: dict[str, Any] | None,
    original_output: dict[str, Any] | None,
) -> dict[str, Any]:
    """Pull the resource identifiers an undo needs out of an audit entry.

    Raises RollbackExecutionError when the entry did not capture enough
    state to undo the action.
    """
    try:
        spec = UNDO_INSTRUCTIONS[ActionClass(action_class)]
    except (KeyError, ValueError):
        raise RollbackExecutionError(f"No undo instructions for action: {action_class}") from None

    source = (original_output if spec.resource_source == "output" else original_input) or {}
    resource = source.get(spec.resource_key)
    previous_state = (original_input or {}).get("previousState")
    if not resource or (spec.needs_previous_state and not previous_state):
        raise RollbackExecutionError(spec.missing_message)

    instructions: dict[str, Any] = {"operation": spec.operation, spec.resource_key: resource}
    if spec.needs_previous_state:
        instructions["previousState"] = previous_state
    return instructions


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

UndoCallback = Callable[[str, dict[str, Any]], Awaitable[None]]


class UndoRegistry:
    """Host-supplied undo capabilities keyed by action class.

    One registry per application instance; nothing here is module-global.
    """

    def __init__(self, callbacks: dict[str, UndoCallback] | None = None) -> None:
        self._callbacks: dict[str, UndoCallback] = {}
        for action_class, callback in (callbacks or {}).items():
            self.register(action_class, callback)

    def register(self, action_class: str, callback: UndoCallback) -> None:
        if get_rollback_strategy(action_class) == RollbackStrategy.NOT_SUPPORTED:
            raise ValueError(f"{action_class} does not support rollback")
        self._callbacks[str(action_class)] = callback

    def get(self, action_class: str) -> UndoCallback | None:
        return self._callbacks.get(str(action_class))

    def __contains__(self, action_class: object) -> bool:
        return str(action_class) in self._callbacks

    def __len__(self) -> int:
        return len(self._callbacks)
