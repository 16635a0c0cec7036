"""Single serialized update queue.

Producers on any thread (editor callbacks, gallery watchers) post updates;
the surface drains them on its own loop in arrival order, so transcript
mutations never interleave.
"""

from __future__ import annotations

import inspect
import queue
from typing import Any, Callable

from socialab_studio.config.logging import get_logger

logger = get_logger(__name__)


class UpdateQueue:
    """Thread-safe FIFO of deferred calls."""

    def __init__(self) -> None:
        self._queue: queue.Queue[tuple[Callable[..., Any], tuple[Any, ...]]] = queue.Queue()

    def post(self, fn: Callable[..., Any], *args: Any) -> None:
        """Schedule ``fn(*args)`` for the next drain. Safe from any thread."""
        self._queue.put((fn, args))

    def __len__(self) -> int:
        return self._queue.qsize()

    async def drain(self) -> int:
        """Run queued updates in order; coroutine results are awaited in turn.

        A failing update is logged and does not stop the ones after it.
        Returns the number of updates run.
        """
        count = 0
        while True:
            try:
                fn, args = self._queue.get_nowait()
            except queue.Empty:
                return count
            count += 1
            try:
                result = fn(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Queued update %s failed", getattr(fn, "__name__", fn))
