# mailing/services/controller.py
from __future__ import annotations

import asyncio
import contextlib
from typing import Dict, List, Optional, Set

from mailing.config import ReconcilerSettings
from mailing.errors import ValidationError
from mailing.event_bus import TOPIC_RECONCILE_FAILED
from mailing.models import Result
from mailing.stores.mail_store import TOPIC_MAIL
from utils.logger import logger as _default_logger


class WorkQueue:
    """
    Deduplicating key queue.

    A key is queued at most once. A key added while a worker holds it is
    parked as dirty and handed out again only after done(), so the same key is
    never processed by two workers at once.
    """

    def __init__(self, backoff_base_s: float = 1.0, backoff_max_s: float = 300.0) -> None:
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._dirty: Set[str] = set()
        self._processing: Set[str] = set()
        self._failures: Dict[str, int] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._backoff_base_s = backoff_base_s
        self._backoff_max_s = backoff_max_s
        self._shutting_down = False

    def add(self, key: str) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.put_nowait(key)

    def add_after(self, key: str, delay_s: float) -> None:
        if self._shutting_down:
            return
        if delay_s <= 0:
            self.add(key)
            return
        old = self._timers.pop(key, None)
        if old is not None:
            old.cancel()
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(delay_s, self._fire, key)

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        self.add(key)

    def backoff_for(self, key: str) -> float:
        n = self._failures.get(key, 0)
        if n <= 0:
            return 0.0
        return min(self._backoff_base_s * (2 ** (n - 1)), self._backoff_max_s)

    def add_rate_limited(self, key: str) -> float:
        """Re-add after an exponential, capped delay; returns the delay used."""
        self._failures[key] = self._failures.get(key, 0) + 1
        delay = self.backoff_for(key)
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        return self._failures.get(key, 0)

    def is_scheduled(self, key: str) -> bool:
        return key in self._timers

    async def get(self) -> str:
        key = await self._queue.get()
        self._processing.add(key)
        self._dirty.discard(key)
        return key

    def done(self, key: str) -> None:
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.put_nowait(key)

    def shutdown(self) -> None:
        self._shutting_down = True
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def __len__(self) -> int:
        return self._queue.qsize()


class Controller:
    """
    Feeds store notifications and periodic resyncs into the work queue and
    runs `workers` reconcile loops over it.
    """

    def __init__(self, reconciler, store, bus, settings: ReconcilerSettings, *,
                 event_bus=None, topic: str = TOPIC_MAIL, logger=None) -> None:
        self._reconciler = reconciler
        self._store = store
        self._bus = bus
        self._settings = settings
        self._events = event_bus
        self._topic = topic
        self._log = logger or _default_logger
        self.queue = WorkQueue(settings.backoff_base_s, settings.backoff_max_s)
        self._tasks: List[asyncio.Task] = []

    async def start(self) -> None:
        if self._tasks:
            raise RuntimeError("Controller already started")
        for key in await self._store.list_keys():
            self.queue.add(key)
        self._tasks.append(asyncio.create_task(self._watch(), name="mail-watch"))
        self._tasks.append(asyncio.create_task(self._periodic_resync(), name="mail-resync"))
        for i in range(self._settings.workers):
            self._tasks.append(asyncio.create_task(self._worker(), name=f"mail-worker-{i}"))
        self._log.info(f"Controller started with {self._settings.workers} workers")

    async def stop(self) -> None:
        self.queue.shutdown()
        for t in self._tasks:
            t.cancel()
        for t in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await t
        self._tasks.clear()
        self._log.info("Controller stopped")

    async def _watch(self) -> None:
        async for note in self._bus.subscribe(self._topic):
            self._log.debug(f"[{note.key}] notification {note.kind.value}")
            self.queue.add(note.key)
        self._log.info(f"Notification stream for {self._topic!r} closed")

    async def _periodic_resync(self) -> None:
        while True:
            await asyncio.sleep(self._settings.resync_interval_s)
            try:
                keys = await self._store.list_keys()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._log.warning(f"Resync listing failed: {e}")
                continue
            for key in keys:
                self.queue.add(key)

    async def _worker(self) -> None:
        while True:
            key = await self.queue.get()
            try:
                await self.process(key)
            finally:
                self.queue.done(key)

    async def process(self, key: str) -> Optional[Result]:
        """Run one reconcile attempt for `key` and schedule what comes next."""
        try:
            result = await self._reconciler.reconcile(key)
        except asyncio.CancelledError:
            raise
        except ValidationError as e:
            # retried only once a new spec generation produces a notification
            self.queue.forget(key)
            self._log.error(f"[{key}] {e}")
            self._publish_failure(key, e)
            return None
        except Exception as e:
            delay = self.queue.add_rate_limited(key)
            self._log.warning(
                f"[{key}] reconcile failed ({type(e).__name__}: {e}), retry #{self.queue.num_requeues(key)} in {delay:.1f}s"
            )
            self._publish_failure(key, e)
            return None

        self.queue.forget(key)
        if result.requeue_after is not None:
            self.queue.add_after(key, result.requeue_after)
        elif result.requeue:
            self.queue.add(key)
        return result

    def _publish_failure(self, key: str, err: Exception) -> None:
        if self._events is not None:
            self._events.publish(TOPIC_RECONCILE_FAILED, {"key": key, "error": type(err).__name__, "message": str(err)})
