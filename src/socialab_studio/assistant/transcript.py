"""Transcript arena.

Messages live in one list, indexed by id. Tool invocation parts are indexed by
``toolCallId`` so streamed state transitions patch them in place instead of
rebuilding the transcript on every delta.
"""

from __future__ import annotations

from typing import Any, Iterable, Iterator

from socialab_studio.assistant.models import Message, TextPart, ToolInvocationPart
from socialab_studio.exceptions import ToolInvocationNotFoundError


class Transcript:
    """Ordered, append-only list of messages with O(1) lookups."""

    def __init__(self, messages: Iterable[Message] | None = None):
        self._messages: list[Message] = []
        self._index: dict[str, int] = {}
        # toolCallId -> (message index, part index)
        self._tool_index: dict[str, tuple[int, int]] = {}
        self._revision = 0
        for m in messages or []:
            self.append(m)

    @property
    def revision(self) -> int:
        """Counter bumped on every mutation, for cheap change detection."""
        return self._revision

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def __getitem__(self, i: int) -> Message:
        return self._messages[i]

    def touch(self) -> None:
        """Record an in-place mutation of a message or part."""
        self._revision += 1

    def get(self, message_id: str) -> Message | None:
        i = self._index.get(message_id)
        return self._messages[i] if i is not None else None

    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def append(self, message: Message) -> Message:
        """Append a message. Raises ValueError on a duplicate id."""
        if message.id in self._index:
            raise ValueError(f"Message {message.id} already in transcript")
        mi = len(self._messages)
        self._messages.append(message)
        self._index[message.id] = mi
        for pi, part in enumerate(message.parts):
            if isinstance(part, ToolInvocationPart):
                self._tool_index[part.tool_call_id] = (mi, pi)
        self.touch()
        return message

    def ensure_message(self, message_id: str, role: str = "assistant") -> Message:
        """Get a message by id, creating an empty one at the end if missing."""
        existing = self.get(message_id)
        if existing is not None:
            return existing
        return self.append(Message(id=message_id, role=role))  # type: ignore[arg-type]

    def append_part(self, message_id: str, part: Any) -> int:
        """Append a part to a message. Returns its index."""
        mi = self._index[message_id]
        msg = self._messages[mi]
        msg.parts.append(part)
        pi = len(msg.parts) - 1
        if isinstance(part, ToolInvocationPart):
            self._tool_index[part.tool_call_id] = (mi, pi)
        self.touch()
        return pi

    def append_text(self, message_id: str, text: str) -> None:
        """Concatenate onto the trailing text part, or start a new one."""
        msg = self._messages[self._index[message_id]]
        if msg.parts and isinstance(msg.parts[-1], TextPart):
            msg.parts[-1].text += text
            self.touch()
        else:
            self.append_part(message_id, TextPart(text=text))

    def find_tool_invocation(self, tool_call_id: str) -> ToolInvocationPart | None:
        loc = self._tool_index.get(tool_call_id)
        if loc is None:
            return None
        part = self._messages[loc[0]].parts[loc[1]]
        return part if isinstance(part, ToolInvocationPart) else None

    def require_tool_invocation(self, tool_call_id: str) -> ToolInvocationPart:
        """Like find_tool_invocation but raises ToolInvocationNotFoundError."""
        part = self.find_tool_invocation(tool_call_id)
        if part is None:
            raise ToolInvocationNotFoundError(f"Tool call not found: {tool_call_id}")
        return part

    def find_by_approval_id(self, approval_id: str) -> ToolInvocationPart | None:
        """Find the invocation whose approval carries ``approval_id``."""
        part = self.find_tool_invocation(approval_id)
        if part is not None and part.approval is not None and part.approval.id == approval_id:
            return part
        for msg in reversed(self._messages):
            for p in msg.tool_invocations:
                if p.approval is not None and p.approval.id == approval_id:
                    return p
        return None

    def owner_of(self, tool_call_id: str) -> Message | None:
        """Message holding the given tool call."""
        loc = self._tool_index.get(tool_call_id)
        return self._messages[loc[0]] if loc is not None else None

    def clear(self) -> None:
        self._messages.clear()
        self._index.clear()
        self._tool_index.clear()
        self.touch()

    def to_wire(self) -> list[dict[str, Any]]:
        return [m.to_wire() for m in self._messages]
