"""Centralized constants for the assistant."""


# Timeouts in seconds
class Timeouts:
    STREAM_CONNECT = 10.0
    STREAM_READ = 120.0
    NOTICE_TTL = 5.0


# Transcript and payload limits
class Limits:
    MAX_MESSAGES = 20
    INTACT_RECENT_MESSAGES = 5
    MAX_TEXT_LENGTH = 10000
    MAX_STREAM_RETRIES = 3


DEFAULT_CHAT_MODEL = "x-ai/grok-4.1-fast"
ALLOWED_CHAT_MODELS = ("openai/gpt-5.2", "x-ai/grok-4.1-fast")
# Tools whose approval happens in the full-screen editor instead of the chat
EXTERNAL_EDIT_TOOLS = ("editImage",)

ALLOWED_IMAGE_MEDIA_TYPES = frozenset(
    {"image/jpeg", "image/png", "image/webp", "image/heic", "image/heif"}
)
IMAGE_EXT_MEDIA_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".png": "image/png",
    ".heic": "image/heic",
    ".heif": "image/heif",
}
DEFAULT_IMAGE_MEDIA_TYPE = "image/png"

# Stand-in text for stripped inline images in older messages
STRIPPED_IMAGE_PLACEHOLDER = "[image removed to save tokens]"
TRUNCATED_TEXT_SUFFIX = "... [truncated]"

ATTACHED_IMAGE_TEXT = "See the attached image"
UPLOADED_REFERENCE_TEXT = "I've uploaded this reference for us to use."
DROPPED_IMAGE_TEXT = "I've dropped this image in: {name}"
EDIT_REJECTED_TEXT = "Edit rejected by user"
EDIT_MISSING_IMAGE_TEXT = "Editor returned no image"
