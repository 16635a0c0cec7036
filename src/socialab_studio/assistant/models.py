"""Transcript data models shared by the assistant components.

Python attributes are snake_case; the JSON form exchanged with the agent
service and the frontend uses camelCase aliases.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from socialab_studio.assistant.tool_state import (
    InvalidTransitionError,
    ToolInvocationState,
    is_valid_transition,
)


class WireModel(BaseModel):
    """Base model with camelCase aliases and a compact JSON form."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Serialize with camelCase keys, dropping unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class ChatStatus(str, Enum):
    """Lifecycle of the message stream."""

    IDLE = "idle"
    SUBMITTED = "submitted"  # Request sent, nothing received yet
    STREAMING = "streaming"
    ERROR = "error"

    @property
    def is_busy(self) -> bool:
        return self in (ChatStatus.SUBMITTED, ChatStatus.STREAMING)


class TextPart(WireModel):
    type: Literal["text"] = "text"
    text: str = ""


class FilePart(WireModel):
    type: Literal["file"] = "file"
    media_type: str = Field(alias="mediaType")
    # Gallery image id when the file came from the gallery, else the file name
    name: str
    url: str


class ToolApproval(WireModel):
    """Human decision on a tool invocation. ``id`` equals the owning toolCallId."""

    id: str
    approved: bool | None = None
    reason: str | None = None

    @property
    def answered(self) -> bool:
        return self.approved is not None


class ToolInvocationPart(WireModel):
    type: Literal["tool-invocation"] = "tool-invocation"
    tool_call_id: str = Field(alias="toolCallId")
    tool_name: str = Field(alias="toolName")
    state: ToolInvocationState = ToolInvocationState.INPUT_STREAMING
    input: dict[str, Any] | None = None
    output: Any = None
    error_text: str | None = Field(default=None, alias="errorText")
    approval: ToolApproval | None = None
    # Raw argument text accumulated while the input streams in
    input_text: str = Field(default="", exclude=True)

    def transition(self, target: ToolInvocationState) -> bool:
        """Move to ``target``. Returns False when already there.

        Raises:
            InvalidTransitionError: If the move would regress or leave a terminal state.
        """
        if self.state == target:
            return False
        if not is_valid_transition(self.state, target):
            raise InvalidTransitionError(self.tool_call_id, self.state.value, target.value)
        self.state = target
        return True

    @property
    def awaiting_approval(self) -> bool:
        return self.state == ToolInvocationState.APPROVAL_REQUESTED


Part = Annotated[Union[TextPart, FilePart, ToolInvocationPart], Field(discriminator="type")]


class Message(WireModel):
    """Single chat turn."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    role: Literal["user", "assistant"]
    parts: list[Part] = Field(default_factory=list)

    @classmethod
    def user(cls, text: str = "", files: list[FilePart] | None = None) -> "Message":
        """Factory for a user message with optional text and file parts."""
        parts: list[Any] = []
        if text.strip():
            parts.append(TextPart(text=text))
        parts.extend(files or [])
        return cls(role="user", parts=parts)

    @property
    def text(self) -> str:
        return " ".join(p.text for p in self.parts if isinstance(p, TextPart) and p.text)

    @property
    def file_parts(self) -> list[FilePart]:
        return [p for p in self.parts if isinstance(p, FilePart)]

    @property
    def tool_invocations(self) -> list[ToolInvocationPart]:
        return [p for p in self.parts if isinstance(p, ToolInvocationPart)]


class ChatReferenceImage(WireModel):
    """Image attached to the input box but not yet sent."""

    id: str
    src: str


class GalleryImage(WireModel):
    """Read-only view of a gallery entry. Extra gallery fields are ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")
    id: str
    src: str


class PendingExternalEdit(WireModel):
    """Decision reported back by the full-screen image editor."""

    tool_call_id: str = Field(alias="toolCallId")
    result: Literal["approved", "rejected"]
    image_url: str | None = Field(default=None, alias="imageUrl")
    error: str | None = None


class ImageEditRequest(WireModel):
    """Request for the external editor to open on an ``editImage`` tool call."""

    tool_call_id: str = Field(alias="toolCallId")
    tool_name: str = Field(alias="toolName")
    prompt: str = ""
    image_id: str = Field(default="", alias="imageId")


class DataStreamEventType(str, Enum):
    """Known side-channel notifications."""

    IMAGE_GENERATING = "imageGenerating"
    IMAGE_CREATED = "imageCreated"
    IMAGE_EDITING = "imageEditing"
    IMAGE_EDITED = "imageEdited"
    LOGO_GENERATING = "logoGenerating"
    LOGO_CREATED = "logoCreated"
    IMAGE_ERROR = "imageError"
    LOGO_ERROR = "logoError"


class DataStreamEvent(WireModel):
    """Out-of-band notification emitted alongside the transcript stream."""

    # Tag without the ``data-`` wire prefix; unknown tags are kept as-is
    type: str
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def wire_type(self) -> str:
        return f"data-{self.type}"
