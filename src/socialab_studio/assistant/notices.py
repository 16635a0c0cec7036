"""Transient, auto-dismissing notices shown above the chat."""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable
from uuid import uuid4

from socialab_studio.config.constants import Timeouts


class NoticeLevel(str, Enum):
    INFO = "info"
    ERROR = "error"


@dataclass
class Notice:
    id: str
    level: NoticeLevel
    message: str
    expires_at: float

    def to_dict(self) -> dict:
        return {"id": self.id, "level": self.level.value, "message": self.message}


class NoticeBoard:
    """Notices expire ``ttl`` seconds after they are pushed.

    Supports dependency injection of the clock for testing.
    """

    def __init__(
        self,
        ttl: float = Timeouts.NOTICE_TTL,
        time_fn: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl
        self._time_fn = time_fn
        self._notices: list[Notice] = []

    def push(self, message: str, level: NoticeLevel = NoticeLevel.ERROR) -> Notice:
        notice = Notice(
            id=str(uuid4()),
            level=level,
            message=message,
            expires_at=self._time_fn() + self._ttl,
        )
        self._notices.append(notice)
        return notice

    def active(self) -> list[Notice]:
        """Unexpired notices, oldest first. Expired ones are pruned."""
        now = self._time_fn()
        self._notices = [n for n in self._notices if n.expires_at > now]
        return list(self._notices)

    def dismiss(self, notice_id: str) -> bool:
        before = len(self._notices)
        self._notices = [n for n in self._notices if n.id != notice_id]
        return len(self._notices) < before

    def clear(self) -> None:
        self._notices.clear()
