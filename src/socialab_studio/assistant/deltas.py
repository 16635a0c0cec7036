"""Incremental deltas streamed by the agent service.

Each server-sent event carries one JSON object tagged by ``type``. Message
content deltas name the message they belong to; tool deltas are matched by
``toolCallId``. ``data-*`` events are side-channel notifications and never
touch the transcript.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from socialab_studio.assistant.models import DataStreamEvent
from socialab_studio.config.logging import get_logger

logger = get_logger(__name__)


class _Delta(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class StartDelta(_Delta):
    type: Literal["start"]
    message_id: str | None = Field(default=None, alias="messageId")


class TextDelta(_Delta):
    type: Literal["text-delta"]
    message_id: str | None = Field(default=None, alias="messageId")
    delta: str


class FileDelta(_Delta):
    type: Literal["file"]
    message_id: str | None = Field(default=None, alias="messageId")
    media_type: str = Field(alias="mediaType")
    url: str
    name: str | None = None


class ToolInputStartDelta(_Delta):
    type: Literal["tool-input-start"]
    message_id: str | None = Field(default=None, alias="messageId")
    tool_call_id: str = Field(alias="toolCallId")
    tool_name: str = Field(alias="toolName")


class ToolInputDelta(_Delta):
    type: Literal["tool-input-delta"]
    tool_call_id: str = Field(alias="toolCallId")
    input_text_delta: str = Field(alias="inputTextDelta")


class ToolInputAvailableDelta(_Delta):
    type: Literal["tool-input-available"]
    message_id: str | None = Field(default=None, alias="messageId")
    tool_call_id: str = Field(alias="toolCallId")
    tool_name: str = Field(alias="toolName")
    input: dict[str, Any] = Field(default_factory=dict)


class ToolApprovalRequestDelta(_Delta):
    type: Literal["tool-approval-request"]
    tool_call_id: str = Field(alias="toolCallId")


class ToolExecutionStartDelta(_Delta):
    type: Literal["tool-execution-start"]
    tool_call_id: str = Field(alias="toolCallId")


class ToolOutputAvailableDelta(_Delta):
    type: Literal["tool-output-available"]
    tool_call_id: str = Field(alias="toolCallId")
    output: Any = None


class ToolOutputErrorDelta(_Delta):
    type: Literal["tool-output-error"]
    tool_call_id: str = Field(alias="toolCallId")
    error_text: str = Field(default="Tool failed", alias="errorText")


class ToolOutputDeniedDelta(_Delta):
    type: Literal["tool-output-denied"]
    tool_call_id: str = Field(alias="toolCallId")


class ErrorDelta(_Delta):
    type: Literal["error"]
    error_text: str = Field(default="Agent stream failed", alias="errorText")


class FinishDelta(_Delta):
    type: Literal["finish"]
    message_id: str | None = Field(default=None, alias="messageId")


StreamDelta = Annotated[
    Union[
        StartDelta,
        TextDelta,
        FileDelta,
        ToolInputStartDelta,
        ToolInputDelta,
        ToolInputAvailableDelta,
        ToolApprovalRequestDelta,
        ToolExecutionStartDelta,
        ToolOutputAvailableDelta,
        ToolOutputErrorDelta,
        ToolOutputDeniedDelta,
        ErrorDelta,
        FinishDelta,
    ],
    Field(discriminator="type"),
]
_adapter: TypeAdapter[Any] = TypeAdapter(StreamDelta)
_KNOWN_TYPES = frozenset(
    {
        "start",
        "text-delta",
        "file",
        "tool-input-start",
        "tool-input-delta",
        "tool-input-available",
        "tool-approval-request",
        "tool-execution-start",
        "tool-output-available",
        "tool-output-error",
        "tool-output-denied",
        "error",
        "finish",
    }
)


def parse_delta(raw: dict[str, Any]) -> Any:
    """Parse one decoded event into a delta or a DataStreamEvent.

    Returns None for events this client does not understand (for example
    ``step-start`` markers or malformed payloads); they are logged and skipped.
    """
    kind = raw.get("type")
    if not isinstance(kind, str):
        logger.warning("Stream event without type: %r", raw)
        return None
    if kind.startswith("data-"):
        payload = raw.get("data")
        data = payload if isinstance(payload, dict) else {}
        return DataStreamEvent(type=kind[len("data-") :], data=data)
    if kind not in _KNOWN_TYPES:
        logger.debug("Skipping unsupported stream event: %s", kind)
        return None
    try:
        return _adapter.validate_python(raw)
    except PydanticValidationError as e:
        logger.warning("Malformed %s event: %s", kind, e.errors()[0].get("msg", e))
        return None
