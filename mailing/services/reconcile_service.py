# mailing/services/reconcile_service.py
from __future__ import annotations
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from mailing.conditions import find_condition, set_condition
from mailing.config import ReconcilerSettings
from mailing.enums import ConditionStatus, ConditionType, GuardDecision, OrderState
from mailing.errors import ConcurrentModificationError, NotFoundError
from mailing.event_bus import TOPIC_ORDER_CREATED
from mailing.models import MailRequest, Order, OrderPayload, Result
from mailing.services.deletion_guard import DeletionGuard
from mailing.services.order_builder import OrderRequestBuilder
from utils.logger import logger as _default_logger
from utils.time import utc_now


class ReconcileService:
    """
    Drives one MailRequest towards its provider order's terminal state.

    Per attempt, strictly in this order:
    deletion guard → validation → create (once) → fetch → merge status.
    Order creation is the only non-idempotent step; it only runs while the
    persisted order_id is empty, and the new id is persisted before any other
    gateway call.
    """

    def __init__(self, store, gateway, settings: ReconcilerSettings, *,
                 builder: Optional[OrderRequestBuilder] = None,
                 guard: Optional[DeletionGuard] = None,
                 event_bus=None,
                 clock: Callable[[], datetime] = utc_now,
                 logger=None) -> None:
        self._store = store
        self._gateway = gateway
        self._settings = settings
        self._builder = builder or OrderRequestBuilder(settings.services)
        self._events = event_bus
        self._clock = clock
        self._log = logger or _default_logger
        self._guard = guard or DeletionGuard(store, gateway, settings, event_bus=event_bus, logger=self._log)
        # uid -> order id created by an attempt that has not managed to persist it yet
        self._unpersisted_orders: Dict[str, str] = {}

    async def reconcile(self, key: str) -> Result:
        """Run one attempt; store conflicts restart it from a fresh load."""
        attempts = self._settings.max_conflict_retries
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._reconcile_once(key)
            except ConcurrentModificationError as e:
                if attempt >= attempts:
                    raise
                self._log.debug(f"[{key}] {e}, reloading (attempt {attempt}/{attempts})")

    async def _reconcile_once(self, key: str) -> Result:
        try:
            mail = await self._store.get(key)
        except NotFoundError:
            self._log.debug(f"[{key}] gone, nothing to do")
            return Result()

        uid = mail.meta.uid
        decision, mail = await self._guard.handle(mail, pending_order_id=self._unpersisted_orders.get(uid))
        if decision is GuardDecision.DELETION_UNBLOCKED:
            self._unpersisted_orders.pop(uid, None)
            return Result()

        st = mail.status
        if st.sent or st.order_state is OrderState.CANCELLED:
            return Result()

        if not st.order_id:
            mail, payload = await self._validate(mail)
            if payload is None:
                return Result()
            mail = await self._create(mail, payload)
        elif st.observed_generation != mail.meta.generation:
            self._log.warning(
                f"[{key}] spec generation {mail.meta.generation} ignored, order {st.order_id} already exists"
            )

        order = await self._gateway.get_order(mail.status.order_id)
        mail = await self._observe(mail, order)

        if mail.status.order_state.is_terminal:
            return Result()
        return Result(requeue_after=self._settings.sync_interval_s)

    async def _validate(self, mail: MailRequest) -> Tuple[MailRequest, Optional[OrderPayload]]:
        """
        Returns the payload to create, or None when this generation already
        failed validation. Raises ValidationError on a fresh failure.
        """
        st, gen = mail.status, mail.meta.generation
        cond = find_condition(st.conditions, ConditionType.VALIDATION)
        if st.observed_generation == gen and cond is not None and cond.status is ConditionStatus.FALSE:
            self._log.debug(f"[{mail.key}] generation {gen} is invalid, waiting for a spec change")
            return mail, None

        payload = self._builder.build(mail)
        if st.valid and st.observed_generation == gen:
            return mail, payload

        result = self._builder.validate(payload)
        now = self._clock()
        st.observed_generation = gen
        if not result.ok:
            set_condition(st.conditions, ConditionType.VALIDATION, ConditionStatus.FALSE,
                          "ValidationFailed", result.message, now, gen)
            st.last_attempt_message = result.message
            await self._store.update_status(mail)
            result.raise_for_errors()

        st.valid = True
        st.last_attempt_message = ""
        set_condition(st.conditions, ConditionType.VALIDATION, ConditionStatus.TRUE,
                      "Validated", "mail request passed validation", now, gen)
        mail = await self._store.update_status(mail)
        return mail, payload

    async def _create(self, mail: MailRequest, payload: OrderPayload) -> MailRequest:
        uid = mail.meta.uid
        order_id = self._unpersisted_orders.get(uid)
        state = ""
        if order_id:
            self._log.warning(f"[{mail.key}] reusing order {order_id} from an earlier attempt")
        else:
            order = await self._gateway.create_order(payload)
            order_id, state = order.order_id, order.state
            self._unpersisted_orders[uid] = order_id
            self._log.info(f"[{mail.key}] order {order_id} created ({state or 'no state'})")
            if self._events is not None:
                self._events.publish(TOPIC_ORDER_CREATED, {"key": mail.key, "order_id": order_id})

        mail = await self._persist_order_id(mail, order_id, state)
        self._unpersisted_orders.pop(uid, None)
        return mail

    async def _persist_order_id(self, mail: MailRequest, order_id: str, state: str) -> MailRequest:
        attempts = self._settings.max_conflict_retries
        attempt = 0
        while True:
            attempt += 1
            mail.status.order_id = order_id
            if state:
                mail.status.state = state
            try:
                return await self._store.update_status(mail)
            except ConcurrentModificationError:
                if attempt >= attempts:
                    raise
                mail = await self._store.get(mail.key)

    async def _observe(self, mail: MailRequest, order: Order) -> MailRequest:
        st = mail.status
        st.state = order.state
        st.total = order.total
        st.created = order.created
        st.modified = order.modified
        st.cancelled = order.cancelled
        st.cancellation_reason = order.cancellation_reason
        st.sent = order.order_state is OrderState.FULFILLED
        st.observed_generation = mail.meta.generation
        st.last_attempt_message = ""

        now = self._clock()
        gen = mail.meta.generation
        if st.sent:
            set_condition(st.conditions, ConditionType.FULFILLMENT, ConditionStatus.TRUE,
                          "Fulfilled", f"order {st.order_id} fulfilled", now, gen)
        elif order.order_state is OrderState.CANCELLED:
            set_condition(st.conditions, ConditionType.FULFILLMENT, ConditionStatus.FALSE,
                          "Cancelled", order.cancellation_reason or f"order {st.order_id} cancelled", now, gen)
        else:
            set_condition(st.conditions, ConditionType.FULFILLMENT, ConditionStatus.FALSE,
                          "AwaitingFulfillment", f"order {st.order_id} is {order.state or 'unknown'}", now, gen)
        return await self._store.update_status(mail)
