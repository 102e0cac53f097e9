# mailing/event_bus.py
from typing import Any, Callable, Dict, List

from utils.logger import logger

Handler = Callable[[Dict[str, Any]], None]

TOPIC_ORDER_CREATED = "order.created"
TOPIC_ORDER_CANCELLED = "order.cancelled"
TOPIC_RECONCILE_FAILED = "reconcile.failed"
LIFECYCLE_TOPICS = (TOPIC_ORDER_CREATED, TOPIC_ORDER_CANCELLED, TOPIC_RECONCILE_FAILED)


class EventBus:
    """
    Synchronous fan-out of mail request lifecycle events.

    Payloads are plain dicts carrying at least the record `key`. A failing
    handler is logged and does not stop delivery to the remaining ones.
    """

    def __init__(self) -> None:
        self._subs: Dict[str, List[Handler]] = {}

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Register a callback; returns a function that removes it again."""
        self._subs.setdefault(topic, []).append(handler)

        def _unsubscribe() -> None:
            handlers = self._subs.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def publish(self, topic: str, payload: Dict[str, Any]) -> int:
        """Deliver to the current subscribers; returns how many handled it cleanly."""
        delivered = 0
        for h in list(self._subs.get(topic, [])):
            try:
                h(payload)
            except Exception as e:
                logger.warning(f"[{payload.get('key', '-')}] {topic} handler failed: {e}")
                continue
            delivered += 1
        return delivered
