"""Centralized exception classes for socialab-studio.

This module provides a hierarchy of exceptions for better error handling
and user-friendly error messages throughout the assistant.
"""


class SocialabStudioError(Exception):
    """Base exception for all socialab-studio errors.

    All custom exceptions should inherit from this class.
    """

    def __init__(self, message: str, details: str | None = None):
        """Initialize the exception.

        Args:
            message: User-friendly error message.
            details: Additional technical details for debugging.
        """
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}\n  Details: {self.details}"
        return self.message


class ConfigurationError(SocialabStudioError):
    """Raised when configuration is missing or invalid."""

    pass


class ValidationError(SocialabStudioError):
    """Raised when input validation fails."""

    pass


class APIError(SocialabStudioError):
    """Base class for agent-service errors."""

    pass


class StreamError(APIError):
    """Raised when the agent stream fails to open or breaks mid-turn."""

    def __init__(self, message: str, details: str | None = None, status_code: int | None = None):
        super().__init__(message, details)
        self.status_code = status_code


class RateLimitError(StreamError):
    """Raised when the agent service rejects a turn with 429."""

    pass


class ChatBusyError(SocialabStudioError):
    """Raised when starting a turn while another one is still running."""

    pass


class ToolInvocationNotFoundError(SocialabStudioError, LookupError):
    """Raised when a tool call or approval id is not in the transcript."""

    pass


class UnsupportedAttachmentError(ValidationError):
    """Raised when a dropped or uploaded file is not an image."""

    pass


class UploadError(SocialabStudioError):
    """Raised when an attachment cannot be converted or published."""

    pass
