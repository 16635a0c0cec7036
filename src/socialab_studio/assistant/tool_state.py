"""Tool invocation lifecycle.

Each tool call streamed by the agent moves through a small state machine keyed
by its ``toolCallId``. Transitions only move forward; terminal states never
transition again.
"""

from __future__ import annotations

from enum import Enum


class ToolInvocationState(str, Enum):
    """State of a single tool invocation inside an assistant message."""

    INPUT_STREAMING = "input-streaming"  # Arguments still arriving
    INPUT_AVAILABLE = "input-available"  # Arguments complete
    APPROVAL_REQUESTED = "approval-requested"  # Waiting on a human decision
    APPROVED = "approved"  # Decision recorded, not yet executing
    EXECUTING = "executing"
    OUTPUT_AVAILABLE = "output-available"  # (TERMINAL)
    OUTPUT_ERROR = "output-error"  # Tool failed server-side (TERMINAL)
    DENIED = "denied"  # (TERMINAL)

    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {
        ToolInvocationState.OUTPUT_AVAILABLE,
        ToolInvocationState.OUTPUT_ERROR,
        ToolInvocationState.DENIED,
    }
)
_S = ToolInvocationState
# Valid status transitions
VALID_TRANSITIONS: dict[ToolInvocationState, frozenset[ToolInvocationState]] = {
    _S.INPUT_STREAMING: frozenset(
        {
            _S.INPUT_AVAILABLE,
            _S.APPROVAL_REQUESTED,
            _S.EXECUTING,
            _S.OUTPUT_AVAILABLE,
            _S.OUTPUT_ERROR,
        }
    ),
    _S.INPUT_AVAILABLE: frozenset(
        {_S.APPROVAL_REQUESTED, _S.EXECUTING, _S.OUTPUT_AVAILABLE, _S.OUTPUT_ERROR}
    ),
    _S.APPROVAL_REQUESTED: frozenset({_S.APPROVED, _S.DENIED}),
    _S.APPROVED: frozenset({_S.EXECUTING, _S.OUTPUT_AVAILABLE, _S.OUTPUT_ERROR}),
    _S.EXECUTING: frozenset({_S.OUTPUT_AVAILABLE, _S.OUTPUT_ERROR}),
}


def is_valid_transition(
    current: ToolInvocationState | str, target: ToolInvocationState | str
) -> bool:
    """Validate a state transition. Terminal states cannot transition."""
    cur = ToolInvocationState(current)
    tgt = ToolInvocationState(target)
    if cur.is_terminal():
        return False
    return tgt in VALID_TRANSITIONS.get(cur, frozenset())


class InvalidTransitionError(ValueError):
    """Raised when a tool invocation is asked to move backwards or out of a terminal state."""

    def __init__(self, tool_call_id: str, current: str, target: str):
        self.tool_call_id = tool_call_id
        self.current = current
        self.target = target
        super().__init__(f"Tool call {tool_call_id}: cannot move from {current} to {target}")
