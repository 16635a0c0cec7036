"""Read-only queries over tool invocations in a transcript."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from socialab_studio.assistant.models import Message, ToolInvocationPart
from socialab_studio.assistant.tool_state import ToolInvocationState
from socialab_studio.assistant.transcript import Transcript


@dataclass
class PendingApproval:
    """Tool invocation waiting on a human decision."""

    approval_id: str
    tool_call_id: str
    tool_name: str
    input: dict[str, Any] = field(default_factory=dict)
    message_id: str = ""


@dataclass
class ToolInvocationSummary:
    """Invocations grouped by where they are in their lifecycle."""

    pending: list[ToolInvocationPart] = field(default_factory=list)
    running: list[ToolInvocationPart] = field(default_factory=list)
    completed: list[ToolInvocationPart] = field(default_factory=list)
    denied: list[ToolInvocationPart] = field(default_factory=list)
    failed: list[ToolInvocationPart] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(
            len(g) for g in (self.pending, self.running, self.completed, self.denied, self.failed)
        )


def _messages(source: Transcript | Iterable[Message]) -> Iterable[Message]:
    return source.messages if isinstance(source, Transcript) else source


def extract_tool_invocations(
    source: Transcript | Iterable[Message],
) -> list[tuple[Message, ToolInvocationPart]]:
    """All tool invocations in transcript order, with their owning message."""
    return [(m, p) for m in _messages(source) for p in m.tool_invocations]


def pending_approvals(
    source: Transcript | Iterable[Message],
    exclude_tools: Iterable[str] = (),
) -> list[PendingApproval]:
    """Invocations in ``approval-requested`` without an answer, oldest first.

    Args:
        exclude_tools: Tool names handled elsewhere (the external image editor
            approves ``editImage`` calls, so the chat does not show buttons).
    """
    skip = set(exclude_tools)
    out: list[PendingApproval] = []
    for msg, part in extract_tool_invocations(source):
        if part.tool_name in skip or not part.awaiting_approval:
            continue
        if part.approval is None or part.approval.answered:
            continue
        out.append(
            PendingApproval(
                approval_id=part.approval.id,
                tool_call_id=part.tool_call_id,
                tool_name=part.tool_name,
                input=dict(part.input or {}),
                message_id=msg.id,
            )
        )
    return out


def has_pending_approval(source: Transcript | Iterable[Message]) -> bool:
    return bool(pending_approvals(source))


def pending_edit_requests(
    source: Transcript | Iterable[Message],
    tool_names: Iterable[str],
) -> list[tuple[Message, ToolInvocationPart]]:
    """Approval-requested invocations of the externally edited tools."""
    names = set(tool_names)
    return [
        (m, p)
        for m, p in extract_tool_invocations(source)
        if p.tool_name in names
        and p.awaiting_approval
        and (p.approval is None or not p.approval.answered)
    ]


def summarize_tool_invocations(source: Transcript | Iterable[Message]) -> ToolInvocationSummary:
    """Group invocations by lifecycle stage."""
    S = ToolInvocationState
    summary = ToolInvocationSummary()
    for _, part in extract_tool_invocations(source):
        if part.state == S.APPROVAL_REQUESTED:
            summary.pending.append(part)
        elif part.state == S.OUTPUT_AVAILABLE:
            summary.completed.append(part)
        elif part.state == S.DENIED:
            summary.denied.append(part)
        elif part.state == S.OUTPUT_ERROR:
            summary.failed.append(part)
        else:
            summary.running.append(part)
    return summary
