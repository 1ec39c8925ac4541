"""Human-readable progress messages for observers of a packing session."""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import AsyncIterator, Deque, List, Set

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusMessage:
    text: str
    timestamp: float


class StatusFeed:
    """Bounded history of status lines fanned out to async subscribers."""

    def __init__(self, history: int = 50) -> None:
        self._history: Deque[StatusMessage] = deque(maxlen=history)
        self._subscribers: Set[asyncio.Queue] = set()

    @property
    def latest(self) -> str:
        return self._history[-1].text if self._history else ""

    def history(self) -> List[StatusMessage]:
        return list(self._history)

    def publish(self, text: str) -> None:
        message = StatusMessage(text=text, timestamp=time.time())
        self._history.append(message)
        logger.debug("status: %s", text)
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                # slow subscriber: drop its oldest line
                queue.get_nowait()
                queue.put_nowait(message)

    async def subscribe(self, maxsize: int = 100) -> AsyncIterator[StatusMessage]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers.discard(queue)
