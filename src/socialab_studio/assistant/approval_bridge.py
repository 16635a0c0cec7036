"""Approval bridge.

Records human decisions on tool invocations, from the chat's approval buttons
or from the full-screen image editor, and resumes the agent turn once every
decision is in.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from socialab_studio.assistant.models import PendingExternalEdit
from socialab_studio.assistant.stream_client import MessageStreamClient
from socialab_studio.assistant.tool_state import ToolInvocationState
from socialab_studio.config.constants import EDIT_MISSING_IMAGE_TEXT, EDIT_REJECTED_TEXT
from socialab_studio.config.logging import get_logger
from socialab_studio.exceptions import ToolInvocationNotFoundError

logger = get_logger(__name__)


class EditOutcome(str, Enum):
    """What happened to an external edit handed to the bridge."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"  # Already handled for this toolCallId
    MISSING_TARGET = "missing_target"  # toolCallId not in the transcript (yet)


def is_usable_approval(edit: PendingExternalEdit) -> bool:
    """An approval only counts when the editor handed back an image."""
    return edit.result == "approved" and bool(edit.image_url)


def external_edit_result(edit: PendingExternalEdit) -> dict[str, Any]:
    """Tool output reported to the agent for an editor decision.

    An approval without an image URL is reported as a failed edit.
    """
    if is_usable_approval(edit):
        return {"approved": True, "imageUrl": edit.image_url}
    default = EDIT_MISSING_IMAGE_TEXT if edit.result == "approved" else EDIT_REJECTED_TEXT
    return {"approved": False, "error": edit.error or default}


class ApprovalBridge:
    """Routes approval decisions into the stream client."""

    def __init__(self, client: MessageStreamClient):
        self._client = client
        self._handled_edits: set[str] = set()
        self._missing_logged: set[str] = set()

    @property
    def handled_edits(self) -> frozenset[str]:
        return frozenset(self._handled_edits)

    async def approve(self, approval_id: str) -> bool:
        """Approve a pending invocation. Returns False if nothing was recorded."""
        return await self._decide(approval_id, True)

    async def deny(self, approval_id: str, reason: str | None = None) -> bool:
        """Deny a pending invocation. Returns False if nothing was recorded."""
        return await self._decide(approval_id, False, reason)

    async def _decide(self, approval_id: str, approved: bool, reason: str | None = None) -> bool:
        try:
            recorded = self._client.record_decision(approval_id, approved, reason=reason)
        except ToolInvocationNotFoundError:
            logger.warning("No tool call awaiting approval %s, ignoring decision", approval_id)
            return False
        if recorded:
            await self._client.maybe_auto_resume()
        return recorded

    def reset(self) -> None:
        """Forget handled edits (new chat)."""
        self._handled_edits.clear()
        self._missing_logged.clear()

    def apply_external_edit(self, edit: PendingExternalEdit) -> EditOutcome:
        """Record an editor decision against its invocation, at most once.

        Synchronous so the handled check and the mutation happen in one step.
        """
        tcid = edit.tool_call_id
        if tcid in self._handled_edits:
            return EditOutcome.DUPLICATE
        part = self._client.transcript.find_tool_invocation(tcid)
        # Until the call has fully streamed in, its final state is unknown
        not_ready = part is not None and (
            part.state == ToolInvocationState.INPUT_STREAMING
            or (not part.awaiting_approval and self._client.is_live(tcid))
        )
        if part is None or not_ready:
            if tcid not in self._missing_logged:
                self._missing_logged.add(tcid)
                logger.info("External edit for unavailable tool call %s, holding it", tcid)
            return EditOutcome.MISSING_TARGET
        self._handled_edits.add(tcid)
        self._missing_logged.discard(tcid)
        if part.state.is_terminal() or (part.approval is not None and part.approval.answered):
            logger.info("Tool call %s already resolved, ignoring external edit", tcid)
            return EditOutcome.DUPLICATE
        result = external_edit_result(edit)
        approved = is_usable_approval(edit)
        if edit.result == "approved" and not approved:
            logger.warning("External edit for %s approved without an image, denying it", tcid)
        if part.awaiting_approval and part.approval is not None:
            reason = None if approved else result["error"]
            self._client.record_decision(part.approval.id, approved, reason=reason, output=result)
        else:
            self._client.add_tool_output(tcid, result)
        logger.info("Applied external edit for %s (%s)", tcid, edit.result)
        return EditOutcome.APPLIED

    async def consume_external_edit(self, edit: PendingExternalEdit) -> EditOutcome:
        """Apply an editor decision and resume the turn if it was applied."""
        outcome = self.apply_external_edit(edit)
        if outcome == EditOutcome.APPLIED:
            await self._client.maybe_auto_resume()
        return outcome
