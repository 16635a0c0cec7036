"""Message stream client.

Owns the transcript and the stream status. A turn is started with ``send``
(new user message) or ``resume`` (continue the last assistant message after
its tool approvals were answered). Deltas are applied in arrival order to the
single in-flight message; on failure the partial message is kept.

All transcript mutations are synchronous and run on the event loop thread, so
every check-then-act below (status check, marking approvals submitted,
flipping status) completes before the next await.
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from typing import Any, Callable
from uuid import uuid4

from socialab_studio.assistant.deltas import (
    ErrorDelta,
    FileDelta,
    FinishDelta,
    StartDelta,
    TextDelta,
    ToolApprovalRequestDelta,
    ToolExecutionStartDelta,
    ToolInputAvailableDelta,
    ToolInputDelta,
    ToolInputStartDelta,
    ToolOutputAvailableDelta,
    ToolOutputDeniedDelta,
    ToolOutputErrorDelta,
)
from socialab_studio.assistant.models import (
    ChatStatus,
    DataStreamEvent,
    FilePart,
    Message,
    ToolApproval,
    ToolInvocationPart,
)
from socialab_studio.assistant.payload import RequestBuilder
from socialab_studio.assistant.tool_state import InvalidTransitionError, ToolInvocationState
from socialab_studio.assistant.transcript import Transcript
from socialab_studio.assistant.transport import ChatTransport
from socialab_studio.config.logging import get_logger
from socialab_studio.exceptions import (
    ChatBusyError,
    StreamError,
    ToolInvocationNotFoundError,
    ValidationError,
)

logger = get_logger(__name__)
UpdateCallback = Callable[[], None]
ErrorCallback = Callable[[StreamError], None]
FinishCallback = Callable[["Message|None"], None]
S = ToolInvocationState


def should_auto_resume(
    transcript: Transcript,
    submitted_approval_ids: set[str],
    unsent_outputs: set[str] | frozenset[str] = frozenset(),
) -> bool:
    """Decide whether a paused turn should continue on its own.

    True when the last message is an assistant message whose tool invocations
    are all terminal or approved, and at least one answered approval (or a
    tool output supplied by this client, listed in ``unsent_outputs``) has
    not been sent to the agent yet. Never true while any approval is
    outstanding.
    """
    last = transcript.last()
    if last is None or last.role != "assistant":
        return False
    invocations = last.tool_invocations
    if not invocations:
        return False
    unsent = [
        p
        for p in invocations
        if p.tool_call_id in unsent_outputs
        or (
            p.approval is not None
            and p.approval.answered
            and p.approval.id not in submitted_approval_ids
        )
    ]
    if not unsent:
        return False
    return all(p.state.is_terminal() or p.state == S.APPROVED for p in invocations)


class MessageStreamClient:
    """Streams agent turns into a transcript."""

    def __init__(
        self,
        transport: ChatTransport,
        requests: RequestBuilder,
        *,
        transcript: Transcript | None = None,
        auto_resume: bool = True,
        on_update: UpdateCallback | None = None,
        on_error: ErrorCallback | None = None,
        on_finish: FinishCallback | None = None,
    ):
        self._transport = transport
        self._requests = requests
        self._transcript = transcript or Transcript()
        self._auto_resume = auto_resume
        self._on_update = on_update
        self._on_error = on_error
        self._on_finish = on_finish
        self._status = ChatStatus.IDLE
        self._error: StreamError | None = None
        self._in_flight_id: str | None = None
        self._data_stream: list[DataStreamEvent] = []
        self._submitted_approvals: set[str] = set()
        self._unsent_outputs: set[str] = set()
        self._stop_requested = False
        self._stream_task: asyncio.Task[None] | None = None
        self._turn_count = 0

    @property
    def status(self) -> ChatStatus:
        return self._status

    @property
    def error(self) -> StreamError | None:
        return self._error

    @property
    def transcript(self) -> Transcript:
        return self._transcript

    @property
    def data_stream(self) -> list[DataStreamEvent]:
        """Append-only side-channel events received so far."""
        return self._data_stream

    @property
    def in_flight_id(self) -> str | None:
        return self._in_flight_id

    @property
    def turn_count(self) -> int:
        """Number of turns started (sends plus resumes)."""
        return self._turn_count

    @property
    def chat_id(self) -> str:
        return self._requests.chat_id

    # === Turns ===
    async def send(self, message: Message) -> None:
        """Append a user message and stream the agent's reply."""
        if self._status.is_busy:
            raise ChatBusyError("The assistant is still replying")
        if message.role != "user":
            raise ValidationError("Only user messages can be sent")
        if not message.parts:
            raise ValidationError("Message is empty")
        self._transcript.append(message)
        payload = self._requests.for_send(message)
        self._set_status(ChatStatus.SUBMITTED)
        await self._run_turn(payload, continue_id=None)

    async def resume(self) -> None:
        """Continue the last assistant message."""
        if self._status.is_busy:
            raise ChatBusyError("The assistant is still replying")
        last = self._transcript.last()
        if last is None or last.role != "assistant":
            raise ValidationError("Nothing to resume")
        payload = self._prepare_resume(last)
        await self._run_turn(payload, continue_id=last.id)

    async def maybe_auto_resume(self) -> bool:
        """Resume the turn if every approval is answered. Returns True if it fired."""
        if not self._auto_resume or self._status.is_busy:
            return False
        if not should_auto_resume(
            self._transcript, self._submitted_approvals, self._unsent_outputs
        ):
            return False
        last = self._transcript.last()
        if last is None:
            return False
        payload = self._prepare_resume(last)
        logger.info("Auto-resuming turn %s", last.id)
        await self._run_turn(payload, continue_id=last.id)
        return True

    def _prepare_resume(self, last: Message) -> dict[str, Any]:
        """Build the resume body, then mark approvals sent and start execution."""
        payload = self._requests.for_resume(self._transcript.messages)
        for part in last.tool_invocations:
            self._unsent_outputs.discard(part.tool_call_id)
            if part.approval is not None and part.approval.answered:
                self._submitted_approvals.add(part.approval.id)
            if part.state == S.APPROVED:
                part.transition(S.EXECUTING)
        self._transcript.touch()
        self._set_status(ChatStatus.SUBMITTED)
        return payload

    def stop(self) -> None:
        """Abort the current stream, keeping whatever arrived."""
        if not self._status.is_busy:
            return
        self._stop_requested = True
        if self._stream_task is not None and not self._stream_task.done():
            self._stream_task.cancel()

    def reset(self) -> None:
        """Start a fresh conversation."""
        if self._status.is_busy:
            raise ChatBusyError("Stop the current reply before starting a new chat")
        self._transcript.clear()
        self._data_stream = []
        self._submitted_approvals.clear()
        self._unsent_outputs.clear()
        self._in_flight_id = None
        self._error = None
        self._set_status(ChatStatus.IDLE)

    async def _run_turn(self, payload: dict[str, Any], continue_id: str | None) -> None:
        self._stop_requested = False
        self._error = None
        self._in_flight_id = continue_id
        self._turn_count += 1
        task = asyncio.ensure_future(self._consume(payload))
        self._stream_task = task
        try:
            await task
        except asyncio.CancelledError:
            if not self._stop_requested:
                raise
            logger.info("Stream stopped by user")
        except StreamError as e:
            self._fail(e)
            return
        except Exception as e:
            logger.exception("Unexpected failure while streaming")
            self._fail(StreamError("Unexpected assistant failure", details=str(e)))
            return
        finally:
            self._stream_task = None
        finished = self._transcript.get(self._in_flight_id) if self._in_flight_id else None
        self._in_flight_id = None
        self._set_status(ChatStatus.IDLE)
        if self._stop_requested:
            return
        if self._on_finish:
            self._on_finish(finished)
        # Decisions recorded mid-stream resume once the stream is done
        await self.maybe_auto_resume()

    async def _consume(self, payload: dict[str, Any]) -> None:
        async with aclosing(self._transport.stream(payload)) as deltas:  # type: ignore[type-var]
            async for delta in deltas:
                if self._stop_requested:
                    break
                if self._status == ChatStatus.SUBMITTED:
                    self._set_status(ChatStatus.STREAMING)
                self._apply(delta)
                self._notify_update()

    def _fail(self, error: StreamError) -> None:
        logger.warning("Assistant stream failed: %s", error.message)
        self._error = error
        self._in_flight_id = None
        self._set_status(ChatStatus.ERROR)
        if self._on_error:
            self._on_error(error)

    def _set_status(self, status: ChatStatus) -> None:
        if status != self._status:
            logger.debug("Chat status %s -> %s", self._status.value, status.value)
            self._status = status
            self._notify_update()

    def _notify_update(self) -> None:
        if self._on_update:
            self._on_update()

    # === Delta application ===
    def _apply(self, delta: Any) -> None:
        if isinstance(delta, DataStreamEvent):
            self._data_stream.append(delta)
        elif isinstance(delta, ErrorDelta):
            raise StreamError(delta.error_text)
        elif isinstance(delta, StartDelta):
            self._target(delta.message_id)
        elif isinstance(delta, FinishDelta):
            return
        elif isinstance(delta, TextDelta):
            msg = self._target(delta.message_id)
            if msg is not None and delta.delta:
                self._transcript.append_text(msg.id, delta.delta)
        elif isinstance(delta, FileDelta):
            msg = self._target(delta.message_id)
            if msg is not None:
                name = delta.name or delta.url.rsplit("/", 1)[-1][:80]
                part = FilePart(media_type=delta.media_type, name=name, url=delta.url)
                self._transcript.append_part(msg.id, part)
        elif isinstance(delta, (ToolInputStartDelta, ToolInputAvailableDelta)):
            self._apply_tool_input(delta)
        else:
            self._apply_tool_update(delta)

    def _target(self, message_id: str | None) -> Message | None:
        """Resolve the in-flight assistant message a content delta belongs to."""
        mid = message_id or self._in_flight_id or str(uuid4())
        existing = self._transcript.get(mid)
        if existing is not None and mid != self._in_flight_id:
            logger.warning("Ignoring delta for finalized message %s", mid)
            return None
        self._in_flight_id = mid
        return existing or self._transcript.ensure_message(mid, "assistant")

    def _apply_tool_input(self, delta: ToolInputStartDelta | ToolInputAvailableDelta) -> None:
        part = self._transcript.find_tool_invocation(delta.tool_call_id)
        if part is None:
            msg = self._target(delta.message_id)
            if msg is None:
                return
            part = ToolInvocationPart(tool_call_id=delta.tool_call_id, tool_name=delta.tool_name)
            self._transcript.append_part(msg.id, part)
        elif not self._owned_by_in_flight(delta.tool_call_id):
            return
        if isinstance(delta, ToolInputAvailableDelta) and self._advance(part, S.INPUT_AVAILABLE):
            part.input = delta.input

    def _apply_tool_update(self, delta: Any) -> None:
        part = self._transcript.find_tool_invocation(delta.tool_call_id)
        if part is None:
            logger.warning("Update for unknown tool call %s (%s)", delta.tool_call_id, delta.type)
            return
        if not self._owned_by_in_flight(delta.tool_call_id):
            return
        if isinstance(delta, ToolInputDelta):
            if part.state == S.INPUT_STREAMING:
                part.input_text += delta.input_text_delta
                self._transcript.touch()
        elif isinstance(delta, ToolApprovalRequestDelta):
            if self._advance(part, S.APPROVAL_REQUESTED) and part.approval is None:
                part.approval = ToolApproval(id=part.tool_call_id)
        elif isinstance(delta, ToolExecutionStartDelta):
            self._advance(part, S.EXECUTING)
        elif isinstance(delta, ToolOutputAvailableDelta):
            if self._advance(part, S.OUTPUT_AVAILABLE):
                part.output = delta.output
        elif isinstance(delta, ToolOutputErrorDelta):
            if self._advance(part, S.OUTPUT_ERROR):
                part.error_text = delta.error_text
        elif isinstance(delta, ToolOutputDeniedDelta):
            self._advance(part, S.DENIED)

    def is_live(self, tool_call_id: str) -> bool:
        """True while the message holding ``tool_call_id`` is still streaming."""
        if not self._status.is_busy or self._in_flight_id is None:
            return False
        owner = self._transcript.owner_of(tool_call_id)
        return owner is not None and owner.id == self._in_flight_id

    def _owned_by_in_flight(self, tool_call_id: str) -> bool:
        owner = self._transcript.owner_of(tool_call_id)
        if owner is None or owner.id != self._in_flight_id:
            logger.warning("Ignoring update for tool call %s outside live message", tool_call_id)
            return False
        return True

    def _advance(self, part: ToolInvocationPart, target: ToolInvocationState) -> bool:
        """Apply a streamed transition. Repeats are accepted, regressions dropped."""
        if part.state == target:
            return True
        try:
            part.transition(target)
        except InvalidTransitionError as e:
            logger.warning("Ignoring out-of-order tool update: %s", e)
            return False
        self._transcript.touch()
        return True

    # === Decisions ===
    def record_decision(
        self,
        approval_id: str,
        approved: bool,
        *,
        reason: str | None = None,
        output: Any = None,
    ) -> bool:
        """Record the one accepted decision for an approval.

        When ``output`` is given the tool result is supplied by the client
        (an approved invocation then completes immediately).

        Returns:
            False if this approval was already decided.

        Raises:
            ToolInvocationNotFoundError: If no invocation carries ``approval_id``.
        """
        part = self._transcript.find_by_approval_id(approval_id)
        if part is None or part.approval is None:
            raise ToolInvocationNotFoundError(f"No tool call awaiting approval {approval_id}")
        if part.approval.answered or not part.awaiting_approval:
            logger.debug("Approval %s already decided", approval_id)
            return False
        part.approval.approved = approved
        part.approval.reason = reason
        part.transition(S.APPROVED if approved else S.DENIED)
        if output is not None:
            part.output = output
            if approved:
                part.transition(S.OUTPUT_AVAILABLE)
        self._transcript.touch()
        logger.info("Tool %s %s", part.tool_name, "approved" if approved else "denied")
        self._notify_update()
        return True

    def add_tool_output(self, tool_call_id: str, output: Any) -> bool:
        """Supply the result of a tool that needs no approval.

        Returns:
            False if the invocation already finished or still awaits a decision.
        """
        part = self._transcript.require_tool_invocation(tool_call_id)
        if part.state.is_terminal():
            return False
        if part.awaiting_approval:
            logger.warning("Tool call %s awaits approval; record a decision first", tool_call_id)
            return False
        part.transition(S.OUTPUT_AVAILABLE)
        part.output = output
        self._unsent_outputs.add(tool_call_id)
        self._transcript.touch()
        self._notify_update()
        return True
