# mailing/services/deletion_guard.py
from __future__ import annotations
from typing import Optional, Tuple

from mailing.config import ReconcilerSettings
from mailing.enums import GuardDecision
from mailing.event_bus import TOPIC_ORDER_CANCELLED
from mailing.models import MailRequest
from utils.logger import logger as _default_logger

_TRUTHY = {"1", "true", "t", "yes", "y", "on"}


def parse_bool(raw: Optional[str]) -> bool:
    return str(raw or "").strip().lower() in _TRUTHY


class DeletionGuard:
    """
    Keeps a protection marker on every MailRequest and only releases it once
    the provider order is fulfilled or cancelled, or the operator override
    annotation is set.

    The marker is removed strictly after the cancel call succeeded, so a record
    never disappears while its order is still live on the provider side.
    """

    def __init__(self, store, gateway, settings: ReconcilerSettings,
                 event_bus=None, logger=None) -> None:
        self._store = store
        self._gateway = gateway
        self._settings = settings
        self._events = event_bus
        self._log = logger or _default_logger

    def override_requested(self, mail: MailRequest) -> bool:
        return parse_bool(mail.meta.annotations.get(self._settings.override_annotation))

    async def handle(self, mail: MailRequest, pending_order_id: Optional[str] = None,
                     ) -> Tuple[GuardDecision, Optional[MailRequest]]:
        """
        Returns (CONTINUE, fresh record) when no deletion is pending, or
        (DELETION_UNBLOCKED, None) once the record may go away.
        `pending_order_id` is an order created for this record whose id never
        made it into the status; it is cancelled like a persisted one.
        Gateway failures propagate with the marker still attached.
        """
        finalizer = self._settings.finalizer

        if not mail.is_deleting:
            if mail.meta.add_finalizer(finalizer):
                mail = await self._store.update(mail)
                self._log.debug(f"[{mail.key}] protection marker attached")
            return GuardDecision.CONTINUE, mail

        if finalizer not in mail.meta.finalizers:
            return GuardDecision.DELETION_UNBLOCKED, None

        if self.override_requested(mail):
            self._log.warning(
                f"[{mail.key}] override annotation set, releasing without cancelling order={mail.status.order_id or pending_order_id or '-'}"
            )
            await self._release(mail)
            return GuardDecision.DELETION_UNBLOCKED, None

        order_id = mail.status.order_id or pending_order_id
        if order_id:
            order = await self._gateway.get_order(order_id)
            if order.order_state.is_terminal:
                self._log.info(f"[{mail.key}] order {order_id} already {order.state}, nothing to cancel")
            else:
                await self._gateway.cancel_order(order_id)
                self._log.info(f"[{mail.key}] order {order_id} cancelled before deletion (was {order.state})")
                if self._events is not None:
                    self._events.publish(TOPIC_ORDER_CANCELLED, {"key": mail.key, "order_id": order_id})

        await self._release(mail)
        return GuardDecision.DELETION_UNBLOCKED, None

    async def _release(self, mail: MailRequest) -> None:
        mail.meta.remove_finalizer(self._settings.finalizer)
        await self._store.update(mail)
        self._log.info(f"[{mail.key}] deletion unblocked")
