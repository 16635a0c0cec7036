"""Conversational assistant components.

Keep imports lazy so lightweight modules (like `models` or `extractor`) can be
used without importing the HTTP and imaging dependencies.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

__all__ = [
    "ApprovalBridge",
    "ChatSurface",
    "DataStreamDispatcher",
    "HttpChatTransport",
    "ImageReferenceSynchronizer",
    "MessageStreamClient",
    "Transcript",
]

if TYPE_CHECKING:
    from .approval_bridge import ApprovalBridge as ApprovalBridge
    from .data_stream import DataStreamDispatcher as DataStreamDispatcher
    from .image_sync import ImageReferenceSynchronizer as ImageReferenceSynchronizer
    from .stream_client import MessageStreamClient as MessageStreamClient
    from .surface import ChatSurface as ChatSurface
    from .transcript import Transcript as Transcript
    from .transport import HttpChatTransport as HttpChatTransport


def __getattr__(name: str):
    if name == "ApprovalBridge":
        from .approval_bridge import ApprovalBridge

        return ApprovalBridge
    if name == "ChatSurface":
        from .surface import ChatSurface

        return ChatSurface
    if name == "DataStreamDispatcher":
        from .data_stream import DataStreamDispatcher

        return DataStreamDispatcher
    if name == "HttpChatTransport":
        from .transport import HttpChatTransport

        return HttpChatTransport
    if name == "ImageReferenceSynchronizer":
        from .image_sync import ImageReferenceSynchronizer

        return ImageReferenceSynchronizer
    if name == "MessageStreamClient":
        from .stream_client import MessageStreamClient

        return MessageStreamClient
    if name == "Transcript":
        from .transcript import Transcript

        return Transcript
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
