"""Shared fixtures for assistant tests."""

import asyncio
import copy
from typing import Any, Callable

import pytest

from socialab_studio.assistant.deltas import parse_delta
from socialab_studio.assistant.payload import RequestBuilder
from socialab_studio.assistant.stream_client import MessageStreamClient
from socialab_studio.config.settings import Settings


class Gate:
    """Pauses a scripted turn until the test releases it."""

    def __init__(self):
        self.reached = asyncio.Event()
        self.release = asyncio.Event()

    def open(self) -> None:
        self.release.set()


class ScriptedTransport:
    """Fake transport replaying one scripted list of raw events per turn.

    Script items may be raw event dicts, exceptions (raised), callables
    (invoked with no arguments) or Gates (awaited).
    """

    def __init__(self, *turns: list):
        self.turns: list[list] = [list(t) for t in turns]
        self.payloads: list[dict[str, Any]] = []
        self.on_open: Callable[[dict], None] | None = None

    def add_turn(self, events: list) -> None:
        self.turns.append(list(events))

    async def stream(self, payload: dict[str, Any]):
        self.payloads.append(copy.deepcopy(payload))
        if self.on_open:
            self.on_open(payload)
        events = self.turns.pop(0) if self.turns else []
        for item in events:
            if isinstance(item, BaseException):
                raise item
            if isinstance(item, Gate):
                item.reached.set()
                await item.release.wait()
                continue
            if callable(item):
                item()
                continue
            delta = parse_delta(item)
            if delta is not None:
                yield delta


class Events:
    """Builders for raw stream events."""

    @staticmethod
    def start(mid: str) -> dict:
        return {"type": "start", "messageId": mid}

    @staticmethod
    def text(mid: str, delta: str) -> dict:
        return {"type": "text-delta", "messageId": mid, "delta": delta}

    @staticmethod
    def file(mid: str, url: str, name: str = "img", media_type: str = "image/png") -> dict:
        return {"type": "file", "messageId": mid, "url": url, "name": name, "mediaType": media_type}

    @staticmethod
    def finish(mid: str | None = None) -> dict:
        return {"type": "finish", "messageId": mid} if mid else {"type": "finish"}

    @staticmethod
    def tool_call(
        mid: str, call_id: str, name: str, args: dict | None = None, approval: bool = True
    ) -> list[dict]:
        """Events streaming a complete tool call, optionally asking for approval."""
        events = [
            {"type": "tool-input-start", "messageId": mid, "toolCallId": call_id, "toolName": name},
            {"type": "tool-input-delta", "toolCallId": call_id, "inputTextDelta": "{}"},
            {
                "type": "tool-input-available",
                "messageId": mid,
                "toolCallId": call_id,
                "toolName": name,
                "input": args or {},
            },
        ]
        if approval:
            events.append({"type": "tool-approval-request", "toolCallId": call_id})
        return events

    @staticmethod
    def output(call_id: str, output: Any) -> dict:
        return {"type": "tool-output-available", "toolCallId": call_id, "output": output}

    @staticmethod
    def data(kind: str, **payload: Any) -> dict:
        return {"type": f"data-{kind}", "data": payload}


@pytest.fixture
def ev() -> type[Events]:
    return Events


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment's .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def make_client(transport, settings):
    """Factory for a stream client wired to the scripted transport."""

    def _make(**kwargs) -> MessageStreamClient:
        requests = RequestBuilder.from_settings("chat-1", settings)
        return MessageStreamClient(transport, requests, **kwargs)

    return _make


@pytest.fixture
def gate_factory():
    return Gate
