# mailing/stores/mail_store.py
import asyncio
import copy
from typing import Callable, Dict, List, Optional, Protocol
from datetime import datetime

from mailing.enums import NotificationKind
from mailing.errors import ConcurrentModificationError, NotFoundError
from mailing.idempotency import make_uid
from mailing.models import MailRequest, Notification
from utils.time import utc_now

TOPIC_MAIL = "mail"


class MailStore(Protocol):
    async def get(self, key: str) -> MailRequest: ...
    async def create(self, mail: MailRequest) -> MailRequest: ...
    async def update(self, mail: MailRequest) -> MailRequest: ...
    async def update_status(self, mail: MailRequest) -> MailRequest: ...
    async def delete(self, key: str) -> None: ...
    async def list_keys(self) -> List[str]: ...


class InMemoryMailStore:
    """
    In-memory MailRequest store keyed by namespace/name.

    Writes are optimistic: the caller's resource_version must match the stored
    one or ConcurrentModificationError is raised. Desired state (spec + metadata)
    and observed state (status) are written through separate calls; only spec
    changes bump the generation. Every returned record is a private copy.
    """

    def __init__(self, bus=None, *, topic: str = TOPIC_MAIL,
                 clock: Callable[[], datetime] = utc_now) -> None:
        self._items: Dict[str, MailRequest] = {}
        self._lock = asyncio.Lock()
        self._bus = bus
        self._topic = topic
        self._clock = clock

    async def _notify(self, kind: NotificationKind, key: str) -> None:
        if self._bus is not None:
            await self._bus.publish(self._topic, Notification(kind=kind, key=key))

    def _current(self, key: str, resource_version: Optional[int] = None) -> MailRequest:
        cur = self._items.get(key)
        if cur is None:
            raise NotFoundError(key)
        if resource_version is not None and resource_version != cur.meta.resource_version:
            raise ConcurrentModificationError(key, expected=resource_version, actual=cur.meta.resource_version)
        return cur

    async def get(self, key: str) -> MailRequest:
        async with self._lock:
            return copy.deepcopy(self._current(key))

    async def create(self, mail: MailRequest) -> MailRequest:
        async with self._lock:
            if mail.key in self._items:
                raise ValueError(f"{mail.key} already exists")
            new = copy.deepcopy(mail)
            new.meta.uid = new.meta.uid or make_uid()
            new.meta.generation = 1
            new.meta.resource_version = 1
            new.meta.creation_timestamp = self._clock()
            new.meta.deletion_timestamp = None
            self._items[new.key] = new
            out = copy.deepcopy(new)
        await self._notify(NotificationKind.CREATED, out.key)
        return out

    async def update(self, mail: MailRequest) -> MailRequest:
        """Write spec, finalizers and annotations. Status in `mail` is ignored."""
        async with self._lock:
            cur = self._current(mail.key, mail.meta.resource_version)
            new = copy.deepcopy(cur)
            if mail.spec != cur.spec:
                new.spec = copy.deepcopy(mail.spec)
                new.meta.generation += 1
            new.meta.finalizers = list(mail.meta.finalizers)
            new.meta.annotations = dict(mail.meta.annotations)
            new.meta.resource_version += 1
            removed = new.is_deleting and not new.meta.finalizers
            if removed:
                del self._items[new.key]
            else:
                self._items[new.key] = new
            out = copy.deepcopy(new)
        if not removed:
            await self._notify(NotificationKind.UPDATED, out.key)
        return out

    async def update_status(self, mail: MailRequest) -> MailRequest:
        """Write the status channel only; does not notify."""
        async with self._lock:
            cur = self._current(mail.key, mail.meta.resource_version)
            new = copy.deepcopy(cur)
            new.status = copy.deepcopy(mail.status)
            new.meta.resource_version += 1
            self._items[new.key] = new
            return copy.deepcopy(new)

    async def delete(self, key: str) -> None:
        """Delete intent: records holding finalizers only get a deletion timestamp."""
        async with self._lock:
            cur = self._current(key)
            if not cur.meta.finalizers:
                del self._items[key]
                return
            if cur.is_deleting:
                return
            cur.meta.deletion_timestamp = self._clock()
            cur.meta.resource_version += 1
        await self._notify(NotificationKind.DELETE_REQUESTED, key)

    async def list_keys(self) -> List[str]:
        async with self._lock:
            return sorted(self._items)

    def __contains__(self, key: str) -> bool:
        return key in self._items
