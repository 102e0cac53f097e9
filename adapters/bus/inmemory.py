# adapters/bus/inmemory.py
import asyncio
from collections import defaultdict
from typing import AsyncIterator, DefaultDict, Set

from mailing.models import Notification

_CLOSED = object()


class InMemoryBus:
    """
    Per-topic asyncio queues carrying store notifications.

    Each topic has a single consumer, so every notification is delivered once.
    close() lets the consumer drain the backlog and then ends its subscription.
    """

    def __init__(self, maxsize: int = 2000):
        self._topics: DefaultDict[str, asyncio.Queue] = defaultdict(
            lambda: asyncio.Queue(maxsize=maxsize)
        )
        self._closed: Set[str] = set()

    async def publish(self, topic: str, note: Notification) -> None:
        if topic in self._closed:
            raise RuntimeError(f"topic {topic!r} is closed")
        await self._topics[topic].put(note)

    async def subscribe(self, topic: str) -> AsyncIterator[Notification]:
        q = self._topics[topic]
        while True:
            note = await q.get()
            try:
                if note is _CLOSED:
                    return
                yield note
            finally:
                q.task_done()

    async def close(self, topic: str) -> None:
        if topic in self._closed:
            return
        self._closed.add(topic)
        await self._topics[topic].put(_CLOSED)

    def is_closed(self, topic: str) -> bool:
        return topic in self._closed
