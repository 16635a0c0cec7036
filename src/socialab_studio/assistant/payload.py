"""Request bodies sent to the agent chat endpoint."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable
from urllib.parse import urlparse

from socialab_studio.assistant.models import Message
from socialab_studio.config.constants import (
    ALLOWED_CHAT_MODELS,
    DEFAULT_CHAT_MODEL,
    DEFAULT_IMAGE_MEDIA_TYPE,
    IMAGE_EXT_MEDIA_TYPES,
    STRIPPED_IMAGE_PLACEHOLDER,
    TRUNCATED_TEXT_SUFFIX,
    Limits,
)
from socialab_studio.config.logging import get_logger
from socialab_studio.config.settings import Settings, get_settings

logger = get_logger(__name__)


def infer_image_media_type(url: str) -> str:
    """Guess an image media type from a URL or data URL (defaults to PNG)."""
    if url.startswith("data:"):
        mime = url[5:].split(",", 1)[0].split(";", 1)[0].strip().lower()
        return mime if mime.startswith("image/") else DEFAULT_IMAGE_MEDIA_TYPE
    path = urlparse(url).path.lower()
    for ext, mime in IMAGE_EXT_MEDIA_TYPES.items():
        if path.endswith(ext):
            return mime
    # Signed CDN URLs sometimes bury the extension mid-path
    lower = url.lower()
    if ".jpg" in lower or ".jpeg" in lower:
        return "image/jpeg"
    if ".webp" in lower:
        return "image/webp"
    return DEFAULT_IMAGE_MEDIA_TYPE


def resolve_chat_model(
    requested: str | None,
    allowed: Iterable[str] = ALLOWED_CHAT_MODELS,
    default: str = DEFAULT_CHAT_MODEL,
) -> str:
    """Force the requested model into the allowlist."""
    allowed = tuple(allowed)
    if requested in allowed:
        return requested  # type: ignore[return-value]
    if requested:
        logger.warning("Chat model %r not allowed, using %s", requested, default)
    return default


def truncate_messages(
    messages: list[dict[str, Any]],
    max_messages: int = Limits.MAX_MESSAGES,
    intact_recent: int = Limits.INTACT_RECENT_MESSAGES,
    max_text_length: int = Limits.MAX_TEXT_LENGTH,
) -> list[dict[str, Any]]:
    """Keep the newest messages and lighten the older ones.

    Applies only when there are more than ``max_messages``. Of the kept
    messages, all but the last ``intact_recent`` have inline (``data:``) image
    URLs replaced by a placeholder and long text cut. Input is not modified.
    """
    if len(messages) <= max_messages:
        return messages
    logger.debug("Truncating messages: %d -> %d", len(messages), max_messages)
    kept = copy.deepcopy(messages[-max_messages:])
    cutoff = len(kept) - intact_recent
    for msg in kept[:cutoff]:
        for part in msg.get("parts", []):
            if part.get("type") == "file" and str(part.get("url", "")).startswith("data:"):
                part["url"] = STRIPPED_IMAGE_PLACEHOLDER
            elif part.get("type") == "text" and len(part.get("text", "")) > max_text_length:
                part["text"] = part["text"][:max_text_length] + TRUNCATED_TEXT_SUFFIX
    return kept


@dataclass
class RequestBuilder:
    """Builds the JSON bodies for new turns and resumed turns.

    Attributes:
        chat_id: Conversation id sent with every request
        model: Requested chat model (forced into ``allowed_models``)
        extras: Callback returning extra body fields at request time
            (for example ``brandProfile`` and ``chatReferenceImage``)
    """

    chat_id: str
    model: str = DEFAULT_CHAT_MODEL
    allowed_models: tuple[str, ...] = ALLOWED_CHAT_MODELS
    max_messages: int = Limits.MAX_MESSAGES
    intact_recent: int = Limits.INTACT_RECENT_MESSAGES
    max_text_length: int = Limits.MAX_TEXT_LENGTH
    extras: Callable[[], dict[str, Any]] | None = field(default=None, repr=False)

    @classmethod
    def from_settings(
        cls,
        chat_id: str,
        settings: Settings | None = None,
        extras: Callable[[], dict[str, Any]] | None = None,
    ) -> "RequestBuilder":
        s = settings or get_settings()
        return cls(
            chat_id=chat_id,
            model=s.socialab_chat_model,
            allowed_models=tuple(s.socialab_allowed_chat_models),
            max_messages=s.socialab_max_messages,
            intact_recent=s.socialab_intact_recent_messages,
            max_text_length=s.socialab_max_text_length,
            extras=extras,
        )

    def _base(self) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if self.extras:
            body.update({k: v for k, v in self.extras().items() if v is not None})
        body["id"] = self.chat_id
        allowed = self.allowed_models or (DEFAULT_CHAT_MODEL,)
        fallback = DEFAULT_CHAT_MODEL if DEFAULT_CHAT_MODEL in allowed else allowed[0]
        body["selectedChatModel"] = resolve_chat_model(self.model, allowed, fallback)
        return body

    def for_send(self, message: Message) -> dict[str, Any]:
        """Body for a new turn: only the new user message."""
        body = self._base()
        body["message"] = message.to_wire()
        return body

    def for_resume(self, messages: list[Message]) -> dict[str, Any]:
        """Body for continuing a turn: the (truncated) transcript carries tool results."""
        body = self._base()
        body["messages"] = truncate_messages(
            [m.to_wire() for m in messages],
            max_messages=self.max_messages,
            intact_recent=self.intact_recent,
            max_text_length=self.max_text_length,
        )
        return body
