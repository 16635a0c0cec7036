"""Result shape returned by every chat surface intent.

Intents such as ``send``, ``approve`` or ``receive_external_edit`` never raise
to the caller; the panel reads ``success`` and shows ``error`` as a notice.
"""

from dataclasses import asdict, dataclass
from typing import Any

__all__ = [
    "BridgeResponse",
    "bridge_ok",
    "bridge_error",
]


@dataclass
class BridgeResponse:
    """Outcome of one surface intent.

    Attributes:
        success: False when the intent was refused (busy chat, empty input,
            unsupported attachment, failed upload or stream).
        data: Intent payload, e.g. ``{"messageId": ...}`` after a send or
            ``{"recorded": bool}`` after an approval.
        error: User-facing reason when ``success`` is False.
    """

    success: bool
    data: Any = None
    error: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def bridge_ok(data: Any = None) -> dict:
    """Intent accepted, with its payload."""
    return BridgeResponse(success=True, data=data).to_dict()


def bridge_error(error: str) -> dict:
    """Intent refused with a message the panel can show."""
    return BridgeResponse(success=False, error=error).to_dict()
