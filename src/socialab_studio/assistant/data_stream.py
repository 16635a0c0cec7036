"""Side-channel event dispatcher.

Generation progress (``data-imageCreated`` and friends) arrives alongside the
transcript stream. Each event is handled once, in the order it was appended,
no matter how often ``dispatch`` is called on the same list.
"""

from __future__ import annotations

from typing import Callable, Sequence

from socialab_studio.assistant.models import DataStreamEvent, DataStreamEventType
from socialab_studio.config.logging import get_logger

logger = get_logger(__name__)
EventHandler = Callable[[DataStreamEvent], None]
T = DataStreamEventType


def _log_progress(field: str) -> EventHandler:
    def handler(event: DataStreamEvent) -> None:
        logger.debug("[%s] %s", event.type, event.data.get(field, ""))

    return handler


def _log_error(event: DataStreamEvent) -> None:
    logger.error("[%s] %s", event.type, event.data.get("error", "unknown error"))


_DEFAULT_HANDLERS: dict[str, EventHandler] = {
    T.IMAGE_GENERATING.value: _log_progress("description"),
    T.IMAGE_CREATED.value: _log_progress("url"),
    T.IMAGE_EDITING.value: _log_progress("prompt"),
    T.IMAGE_EDITED.value: _log_progress("url"),
    T.LOGO_GENERATING.value: _log_progress("prompt"),
    T.LOGO_CREATED.value: _log_progress("url"),
    T.IMAGE_ERROR.value: _log_error,
    T.LOGO_ERROR.value: _log_error,
}


class DataStreamDispatcher:
    """Cursor over an append-only event list."""

    def __init__(self) -> None:
        self._cursor = 0
        self._handlers: dict[str, list[EventHandler]] = {
            k: [h] for k, h in _DEFAULT_HANDLERS.items()
        }

    @property
    def cursor(self) -> int:
        return self._cursor

    def register(self, event_type: str | DataStreamEventType, handler: EventHandler) -> None:
        """Add a handler for a tag, after the ones already registered."""
        key = event_type.value if isinstance(event_type, DataStreamEventType) else event_type
        self._handlers.setdefault(key, []).append(handler)

    def dispatch(self, events: Sequence[DataStreamEvent]) -> int:
        """Handle events appended since the last call. Returns how many were new."""
        if len(events) < self._cursor:
            # List was replaced (new chat); start over from its current end
            logger.debug("Event list shrank from %d to %d", self._cursor, len(events))
            self._cursor = len(events)
            return 0
        new = list(events[self._cursor :])
        self._cursor = len(events)
        for event in new:
            handlers = self._handlers.get(event.type)
            if not handlers:
                logger.warning("Unknown data stream event: %s", event.wire_type)
                continue
            for handler in handlers:
                try:
                    handler(event)
                except Exception:
                    logger.exception("Handler for %s failed", event.wire_type)
        return len(new)
