"""
Progress Channel
================

Per-session fan-out of Progress notifications.

Publishing never waits on a consumer: each subscriber owns an unbounded
queue, and listeners are plain callables invoked inline. A failing
listener is logged and skipped.
"""

import asyncio
import logging
from typing import AsyncIterator, Callable, List, Optional

from .session import Progress

logger = logging.getLogger(__name__)

Listener = Callable[[Progress], None]

_CLOSED = object()


class ProgressChannel:
    """Broadcasts a session's progress to any number of observers."""

    def __init__(self):
        self._queues: List[asyncio.Queue] = []
        self._listeners: List[Listener] = []
        self._history: List[Progress] = []
        self._closed = False

    @property
    def latest(self) -> Optional[Progress]:
        return self._history[-1] if self._history else None

    @property
    def history(self) -> List[Progress]:
        return list(self._history)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def publish(self, progress: Progress) -> None:
        """Deliver a notification to every observer without blocking."""
        if self._closed:
            logger.debug(f"Dropping progress after close: {progress.message}")
            return

        self._history.append(progress)
        for queue in self._queues:
            queue.put_nowait(progress)
        for listener in self._listeners:
            try:
                listener(progress)
            except Exception as e:
                logger.warning(f"Progress listener failed: {e}")

    def subscribe(self) -> AsyncIterator[Progress]:
        """
        Iterate over notifications published from this call on.

        The subscription is registered immediately, so nothing published
        between this call and the first ``async for`` step is lost.
        Iteration ends when the channel closes.
        """
        queue: asyncio.Queue = asyncio.Queue()
        if self._closed:
            queue.put_nowait(_CLOSED)
        else:
            self._queues.append(queue)
        return self._drain(queue)

    async def _drain(self, queue: asyncio.Queue) -> AsyncIterator[Progress]:
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            if queue in self._queues:
                self._queues.remove(queue)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for queue in self._queues:
            queue.put_nowait(_CLOSED)
