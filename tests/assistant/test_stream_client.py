"""Tests for the message stream client."""

import asyncio

import pytest

from socialab_studio.assistant.approval_bridge import ApprovalBridge
from socialab_studio.assistant.extractor import pending_approvals
from socialab_studio.assistant.models import (
    ChatStatus,
    FilePart,
    Message,
    TextPart,
    ToolApproval,
    ToolInvocationPart,
)
from socialab_studio.assistant.stream_client import should_auto_resume
from socialab_studio.assistant.tool_state import ToolInvocationState
from socialab_studio.assistant.transcript import Transcript
from socialab_studio.exceptions import (
    ChatBusyError,
    StreamError,
    ToolInvocationNotFoundError,
    ValidationError,
)

S = ToolInvocationState


def _invocation(call_id: str, state: S, answered: bool | None = None) -> ToolInvocationPart:
    approval = None
    if answered is not None:
        approval = ToolApproval(id=call_id, approved=True if answered else None)
    return ToolInvocationPart(
        tool_call_id=call_id, tool_name="createImage", state=state, approval=approval
    )


class TestShouldAutoResume:
    """Tests for the resumption predicate."""

    def _transcript(self, *parts) -> Transcript:
        return Transcript(
            [Message.user("go"), Message(id="a1", role="assistant", parts=list(parts))]
        )

    def test_false_while_an_approval_is_outstanding(self) -> None:
        t = self._transcript(
            _invocation("c1", S.APPROVED, answered=True),
            _invocation("c2", S.APPROVAL_REQUESTED, answered=False),
        )
        assert should_auto_resume(t, set()) is False

    def test_true_when_all_answered(self) -> None:
        t = self._transcript(
            _invocation("c1", S.APPROVED, answered=True),
            _invocation("c2", S.OUTPUT_AVAILABLE, answered=True),
        )
        assert should_auto_resume(t, set()) is True

    def test_false_once_submitted(self) -> None:
        t = self._transcript(_invocation("c1", S.APPROVED, answered=True))
        assert should_auto_resume(t, {"c1"}) is False

    def test_false_without_any_decision(self) -> None:
        t = self._transcript(_invocation("c1", S.OUTPUT_AVAILABLE))
        assert should_auto_resume(t, set()) is False

    def test_client_supplied_output_counts(self) -> None:
        t = self._transcript(_invocation("c1", S.OUTPUT_AVAILABLE))
        assert should_auto_resume(t, set(), {"c1"}) is True

    def test_false_when_last_message_is_user(self) -> None:
        t = Transcript([Message.user("hi")])
        assert should_auto_resume(t, set()) is False


class TestStreaming:
    """Tests for applying streamed deltas."""

    @pytest.mark.asyncio
    async def test_text_and_files_applied_in_order(self, make_client, transport, ev) -> None:
        transport.add_turn(
            [
                ev.start("a1"),
                ev.text("a1", "Here "),
                ev.text("a1", "you go"),
                ev.file("a1", "https://cdn.test/p.png", name="img-1"),
                ev.finish("a1"),
            ]
        )
        finished = []
        client = make_client(on_finish=finished.append)
        await client.send(Message.user("hello"))

        assert client.status == ChatStatus.IDLE
        assert len(client.transcript) == 2
        reply = client.transcript.last()
        assert reply.id == "a1"
        assert reply.parts[0] == TextPart(text="Here you go")
        assert reply.parts[1] == FilePart(
            media_type="image/png", name="img-1", url="https://cdn.test/p.png"
        )
        assert [m.id for m in finished] == ["a1"]
        assert transport.payloads[0]["message"]["parts"][0]["text"] == "hello"

    @pytest.mark.asyncio
    async def test_deltas_without_message_id_join_the_live_message(
        self, make_client, transport
    ) -> None:
        transport.add_turn(
            [
                {"type": "start"},
                {"type": "text-delta", "delta": "a"},
                {"type": "text-delta", "delta": "b"},
            ]
        )
        client = make_client()
        await client.send(Message.user("hi"))
        reply = client.transcript.last()
        assert reply.role == "assistant"
        assert reply.text == "ab"

    @pytest.mark.asyncio
    async def test_status_moves_from_submitted_to_streaming(
        self, make_client, transport, ev
    ) -> None:
        statuses = []
        client = make_client()
        transport.add_turn(
            [
                lambda: statuses.append(client.status),
                ev.start("a1"),
                lambda: statuses.append(client.status),
            ]
        )
        await client.send(Message.user("hi"))
        assert statuses == [ChatStatus.SUBMITTED, ChatStatus.STREAMING]

    @pytest.mark.asyncio
    async def test_side_channel_events_collected(self, make_client, transport, ev) -> None:
        transport.add_turn(
            [ev.start("a1"), ev.data("imageGenerating", description="x"), ev.data("imageCreated")]
        )
        client = make_client()
        await client.send(Message.user("hi"))
        assert [e.type for e in client.data_stream] == ["imageGenerating", "imageCreated"]
        assert all(not m.parts or m.role == "user" for m in client.transcript)

    @pytest.mark.asyncio
    async def test_out_of_order_tool_update_ignored(self, make_client, transport, ev) -> None:
        transport.add_turn(
            [
                ev.start("a1"),
                *ev.tool_call("a1", "c1", "createImage", approval=False),
                ev.output("c1", {"url": "u"}),
                {"type": "tool-input-start", "toolCallId": "c1", "toolName": "x"},
                {"type": "tool-approval-request", "toolCallId": "c1"},
            ]
        )
        client = make_client()
        await client.send(Message.user("hi"))
        part = client.transcript.find_tool_invocation("c1")
        assert part.state == S.OUTPUT_AVAILABLE
        assert part.output == {"url": "u"}
        assert part.approval is None
        assert len(client.transcript.last().tool_invocations) == 1

    @pytest.mark.asyncio
    async def test_tool_failure_recorded(self, make_client, transport, ev) -> None:
        transport.add_turn(
            [
                ev.start("a1"),
                *ev.tool_call("a1", "c1", "createLogo", approval=False),
                {"type": "tool-execution-start", "toolCallId": "c1"},
                {"type": "tool-output-error", "toolCallId": "c1", "errorText": "quota"},
            ]
        )
        client = make_client()
        await client.send(Message.user("logo"))
        part = client.transcript.find_tool_invocation("c1")
        assert part.state == S.OUTPUT_ERROR
        assert part.error_text == "quota"

    @pytest.mark.asyncio
    async def test_finalized_messages_not_rewritten(self, make_client, transport, ev) -> None:
        client = make_client()
        transport.add_turn([ev.start("a1"), ev.text("a1", "first")])
        await client.send(Message.user("one"))
        transport.add_turn([ev.start("a2"), ev.text("a1", " patched"), ev.text("a2", "second")])
        await client.send(Message.user("two"))
        assert client.transcript.get("a1").text == "first"
        assert client.transcript.get("a2").text == "second"

    @pytest.mark.asyncio
    async def test_input_text_accumulates(self, make_client, transport) -> None:
        transport.add_turn(
            [
                {"type": "tool-input-start", "toolCallId": "c1", "toolName": "t"},
                {"type": "tool-input-delta", "toolCallId": "c1", "inputTextDelta": '{"pro'},
                {"type": "tool-input-delta", "toolCallId": "c1", "inputTextDelta": 'mpt": 1}'},
            ]
        )
        client = make_client()
        await client.send(Message.user("hi"))
        assert client.transcript.find_tool_invocation("c1").input_text == '{"prompt": 1}'


class TestStreamErrors:
    """Tests for stream failure handling."""

    @pytest.mark.asyncio
    async def test_error_keeps_partial_message(self, make_client, transport, ev) -> None:
        transport.add_turn(
            [ev.start("a1"), ev.text("a1", "Half an ans"), StreamError("Connection lost")]
        )
        errors = []
        client = make_client(on_error=errors.append)
        await client.send(Message.user("hi"))

        assert client.status == ChatStatus.ERROR
        assert client.error.message == "Connection lost"
        assert [e.message for e in errors] == ["Connection lost"]
        assert client.transcript.last().text == "Half an ans"

    @pytest.mark.asyncio
    async def test_error_delta_fails_turn(self, make_client, transport, ev) -> None:
        transport.add_turn([ev.start("a1"), {"type": "error", "errorText": "Model overloaded"}])
        client = make_client()
        await client.send(Message.user("hi"))
        assert client.status == ChatStatus.ERROR
        assert client.error.message == "Model overloaded"

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_stream_error(
        self, make_client, transport, ev
    ) -> None:
        transport.add_turn([ev.start("a1"), RuntimeError("boom")])
        client = make_client()
        await client.send(Message.user("hi"))
        assert client.status == ChatStatus.ERROR
        assert client.error.details == "boom"

    @pytest.mark.asyncio
    async def test_can_send_again_after_error(self, make_client, transport, ev) -> None:
        transport.add_turn([StreamError("down")])
        transport.add_turn([ev.start("a2"), ev.text("a2", "back")])
        client = make_client()
        await client.send(Message.user("one"))
        await client.send(Message.user("two"))
        assert client.status == ChatStatus.IDLE
        assert client.error is None
        assert client.transcript.last().text == "back"


class TestTurnControl:
    """Tests for busy detection, stop and resume."""

    @pytest.mark.asyncio
    async def test_send_while_busy_raises(self, make_client, transport, ev, gate_factory) -> None:
        gate = gate_factory()
        transport.add_turn([ev.start("a1"), gate, ev.text("a1", "done")])
        client = make_client()
        task = asyncio.create_task(client.send(Message.user("one")))
        await gate.reached.wait()

        with pytest.raises(ChatBusyError):
            await client.send(Message.user("two"))
        gate.open()
        await task
        assert [m.role for m in client.transcript] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_stop_keeps_partial_transcript(
        self, make_client, transport, ev, gate_factory
    ) -> None:
        gate = gate_factory()
        transport.add_turn([ev.start("a1"), ev.text("a1", "partial"), gate, ev.text("a1", "!")])
        finished = []
        client = make_client(on_finish=finished.append)
        task = asyncio.create_task(client.send(Message.user("one")))
        await gate.reached.wait()

        client.stop()
        await task
        assert client.status == ChatStatus.IDLE
        assert client.transcript.last().text == "partial"
        assert finished == []

    def test_stop_when_idle_is_noop(self, make_client) -> None:
        client = make_client()
        client.stop()
        assert client.status == ChatStatus.IDLE

    @pytest.mark.asyncio
    async def test_rejects_non_user_and_empty_messages(self, make_client) -> None:
        client = make_client()
        with pytest.raises(ValidationError):
            await client.send(Message(role="assistant", parts=[TextPart(text="x")]))
        with pytest.raises(ValidationError):
            await client.send(Message(role="user"))

    @pytest.mark.asyncio
    async def test_resume_requires_assistant_message(self, make_client) -> None:
        client = make_client()
        with pytest.raises(ValidationError):
            await client.resume()

    @pytest.mark.asyncio
    async def test_manual_resume_continues_last_message(
        self, make_client, transport, ev
    ) -> None:
        transport.add_turn([ev.start("a1"), ev.text("a1", "Step one.")])
        transport.add_turn([ev.text("a1", " Step two.")])
        client = make_client()
        await client.send(Message.user("go"))
        await client.resume()
        assert client.transcript.get("a1").text == "Step one. Step two."
        assert len(client.transcript) == 2
        assert "messages" in transport.payloads[1]

    @pytest.mark.asyncio
    async def test_reset_clears_conversation(self, make_client, transport, ev) -> None:
        transport.add_turn([ev.start("a1"), ev.data("imageCreated")])
        client = make_client()
        await client.send(Message.user("go"))
        client.reset()
        assert len(client.transcript) == 0
        assert client.data_stream == []


class TestDecisions:
    """Tests for recording approvals and tool outputs."""

    @pytest.mark.asyncio
    async def test_unknown_approval_raises(self, make_client) -> None:
        client = make_client()
        with pytest.raises(ToolInvocationNotFoundError):
            client.record_decision("missing", True)
        with pytest.raises(ToolInvocationNotFoundError):
            client.add_tool_output("missing", {})

    @pytest.mark.asyncio
    async def test_second_decision_is_noop(self, make_client, transport, ev) -> None:
        transport.add_turn([ev.start("a1"), *ev.tool_call("a1", "c1", "createImage")])
        client = make_client(auto_resume=False)
        await client.send(Message.user("poster"))

        assert client.record_decision("c1", False, reason="not now") is True
        assert client.record_decision("c1", True) is False
        part = client.transcript.find_tool_invocation("c1")
        assert part.state == S.DENIED
        assert part.approval.approved is False
        assert part.approval.reason == "not now"

    @pytest.mark.asyncio
    async def test_add_tool_output(self, make_client, transport, ev) -> None:
        transport.add_turn(
            [ev.start("a1"), *ev.tool_call("a1", "c1", "createImage", approval=False)]
        )
        client = make_client(auto_resume=False)
        await client.send(Message.user("poster"))
        assert client.add_tool_output("c1", {"url": "u"}) is True
        assert client.add_tool_output("c1", {"url": "v"}) is False
        assert client.transcript.find_tool_invocation("c1").output == {"url": "u"}

    @pytest.mark.asyncio
    async def test_add_tool_output_refuses_pending_approval(
        self, make_client, transport, ev
    ) -> None:
        transport.add_turn([ev.start("a1"), *ev.tool_call("a1", "c1", "createImage")])
        client = make_client(auto_resume=False)
        await client.send(Message.user("poster"))
        assert client.add_tool_output("c1", {"url": "u"}) is False
        assert client.transcript.find_tool_invocation("c1").awaiting_approval


class TestAutoResume:
    """Tests for automatic continuation after approvals."""

    @pytest.mark.asyncio
    async def test_waits_for_every_approval(self, make_client, transport, ev) -> None:
        transport.add_turn(
            [
                ev.start("a1"),
                *ev.tool_call("a1", "c1", "createImage"),
                *ev.tool_call("a1", "c2", "createLogo"),
            ]
        )
        client = make_client()
        bridge = ApprovalBridge(client)
        await client.send(Message.user("poster and logo"))
        assert len(pending_approvals(client.transcript)) == 2

        await bridge.approve("c1")
        assert client.turn_count == 1
        assert len(transport.payloads) == 1

        await bridge.deny("c2")
        assert client.turn_count == 2
        resumed = transport.payloads[1]["messages"][-1]["parts"]
        states = {p["toolCallId"]: p["state"] for p in resumed if p["type"] == "tool-invocation"}
        assert states == {"c1": "approved", "c2": "denied"}

    @pytest.mark.asyncio
    async def test_decision_during_stream_resumes_after_it_ends(
        self, make_client, transport, ev, gate_factory
    ) -> None:
        gate = gate_factory()
        transport.add_turn(
            [ev.start("a1"), *ev.tool_call("a1", "c1", "createImage"), gate, ev.text("a1", "ok")]
        )
        client = make_client()
        bridge = ApprovalBridge(client)
        task = asyncio.create_task(client.send(Message.user("poster")))
        await gate.reached.wait()

        assert await bridge.approve("c1") is True
        assert client.turn_count == 1
        gate.open()
        await task
        assert client.turn_count == 2

    @pytest.mark.asyncio
    async def test_disabled_auto_resume(self, make_client, transport, ev) -> None:
        transport.add_turn([ev.start("a1"), *ev.tool_call("a1", "c1", "createImage")])
        client = make_client(auto_resume=False)
        await client.send(Message.user("poster"))
        client.record_decision("c1", True)
        assert await client.maybe_auto_resume() is False
        assert client.turn_count == 1

    @pytest.mark.asyncio
    async def test_nothing_to_resume_in_empty_chat(self, make_client, transport) -> None:
        client = make_client()
        assert await client.maybe_auto_resume() is False
        assert client.turn_count == 0
        assert transport.payloads == []


class TestCreatePosterScenario:
    """End to end: send, approve, resume exactly once."""

    @pytest.mark.asyncio
    async def test_create_a_poster(self, make_client, transport, ev) -> None:
        transport.add_turn(
            [
                ev.start("a1"),
                ev.text("a1", "I'll create that poster."),
                *ev.tool_call("a1", "call-1", "createImage", {"prompt": "a poster"}),
                ev.finish("a1"),
            ]
        )
        transport.add_turn(
            [
                ev.start("a1"),
                {"type": "tool-execution-start", "toolCallId": "call-1"},
                ev.output("call-1", {"url": "https://cdn.test/poster.png"}),
                ev.text("a1", "Here it is."),
                ev.finish("a1"),
            ]
        )
        client = make_client()
        bridge = ApprovalBridge(client)
        seen_states = []
        transport.on_open = lambda payload: seen_states.append(
            client.transcript.find_tool_invocation("call-1")
        )

        await client.send(Message.user("create a poster"))

        users = [m for m in client.transcript if m.role == "user"]
        assistants = [m for m in client.transcript if m.role == "assistant"]
        assert len(users) == 1
        assert len(assistants) == 1
        pending = pending_approvals(client.transcript)
        assert len(pending) == 1
        assert pending[0].tool_name == "createImage"
        assert pending[0].input == {"prompt": "a poster"}

        seen_states.clear()
        transport.on_open = lambda payload: seen_states.append(
            client.transcript.find_tool_invocation(pending[0].tool_call_id).state
        )
        assert await bridge.approve(pending[0].approval_id) is True

        part = client.transcript.find_tool_invocation("call-1")
        assert seen_states == [S.EXECUTING]
        assert part.state == S.OUTPUT_AVAILABLE
        assert part.output == {"url": "https://cdn.test/poster.png"}
        assert client.turn_count == 2
        assert len(transport.payloads) == 2
        assert client.status == ChatStatus.IDLE
        assert pending_approvals(client.transcript) == []

        # Approving again changes nothing and does not resume
        assert await bridge.approve("call-1") is False
        assert client.turn_count == 2
