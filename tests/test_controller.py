# tests/test_controller.py
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import asyncio
import pytest

from adapters.bus.inmemory import InMemoryBus
from mailing.errors import GatewayTransientError, ValidationError
from mailing.models import FieldViolation, Result
from mailing.services.controller import Controller, WorkQueue
from mailing.services.reconcile_service import ReconcileService
from mailing.stores.mail_store import InMemoryMailStore
from fakes import make_mail, wait_until


class StubReconciler:
    """Returns (or raises) queued outcomes in order, then Result()."""

    def __init__(self, *outcomes, delay: float = 0.0):
        self.outcomes = list(outcomes)
        self.delay = delay
        self.seen = []
        self.inflight = 0
        self.max_inflight = 0

    async def reconcile(self, key):
        self.seen.append(key)
        self.inflight += 1
        self.max_inflight = max(self.max_inflight, self.inflight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            outcome = self.outcomes.pop(0) if self.outcomes else Result()
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            self.inflight -= 1


# ---- WorkQueue ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_queue_deduplicates():
    q = WorkQueue()
    q.add("a")
    q.add("a")
    q.add("b")
    assert len(q) == 2
    assert await q.get() == "a"
    assert await q.get() == "b"


@pytest.mark.asyncio
async def test_key_added_while_processing_is_redelivered_after_done():
    q = WorkQueue()
    q.add("a")
    key = await q.get()
    q.add("a")
    q.add("a")
    assert len(q) == 0
    q.done(key)
    assert len(q) == 1
    assert await q.get() == "a"
    q.done("a")
    assert len(q) == 0


@pytest.mark.asyncio
async def test_backoff_is_exponential_and_capped():
    q = WorkQueue(backoff_base_s=1.0, backoff_max_s=5.0)
    assert q.backoff_for("a") == 0.0
    delays = [q.add_rate_limited("a") for _ in range(5)]
    assert delays == [1.0, 2.0, 4.0, 5.0, 5.0]
    assert q.num_requeues("a") == 5
    q.forget("a")
    assert q.num_requeues("a") == 0
    q.shutdown()


@pytest.mark.asyncio
async def test_add_after_fires_once():
    q = WorkQueue()
    q.add_after("a", 0.02)
    q.add_after("a", 0.01)
    assert q.is_scheduled("a")
    assert len(q) == 0
    await asyncio.sleep(0.05)
    assert not q.is_scheduled("a")
    assert len(q) == 1


@pytest.mark.asyncio
async def test_shutdown_drops_timers_and_adds():
    q = WorkQueue()
    q.add_after("a", 0.01)
    q.shutdown()
    q.add("b")
    await asyncio.sleep(0.02)
    assert len(q) == 0


# ---- Controller.process -------------------------------------------------------------

@pytest.fixture
def make_controller(store, settings, events):
    def _make(reconciler):
        return Controller(reconciler, store, InMemoryBus(), settings, event_bus=events)
    return _make


@pytest.mark.asyncio
async def test_process_schedules_requeue_after(make_controller):
    ctl = make_controller(StubReconciler(Result(requeue_after=10.0)))
    await ctl.process("default/a")
    assert ctl.queue.is_scheduled("default/a")
    ctl.queue.shutdown()


@pytest.mark.asyncio
async def test_process_requeue_now(make_controller):
    ctl = make_controller(StubReconciler(Result(requeue=True)))
    await ctl.process("default/a")
    assert len(ctl.queue) == 1


@pytest.mark.asyncio
async def test_process_done_does_not_schedule(make_controller):
    ctl = make_controller(StubReconciler(Result()))
    await ctl.process("default/a")
    assert len(ctl.queue) == 0
    assert not ctl.queue.is_scheduled("default/a")


@pytest.mark.asyncio
async def test_transient_failure_backs_off_then_recovers(make_controller, events):
    err = GatewayTransientError("get_order", "HTTP 503")
    ctl = make_controller(StubReconciler(err, err, Result()))

    assert await ctl.process("default/a") is None
    assert ctl.queue.num_requeues("default/a") == 1
    assert ctl.queue.is_scheduled("default/a")
    await ctl.process("default/a")
    assert ctl.queue.num_requeues("default/a") == 2

    await ctl.process("default/a")
    assert ctl.queue.num_requeues("default/a") == 0
    failures = [ev for topic, ev in events.received if topic == "reconcile.failed"]
    assert len(failures) == 2
    assert failures[0]["error"] == "GatewayTransientError"
    ctl.queue.shutdown()


@pytest.mark.asyncio
async def test_validation_failure_is_not_retried(make_controller, events):
    err = ValidationError([FieldViolation("service", "is required")])
    ctl = make_controller(StubReconciler(err))
    await ctl.process("default/a")
    assert len(ctl.queue) == 0
    assert not ctl.queue.is_scheduled("default/a")
    assert ctl.queue.num_requeues("default/a") == 0
    assert events.received[-1][1]["error"] == "ValidationError"


# ---- running controller --------------------------------------------------------------

@pytest.mark.asyncio
async def test_same_key_is_never_processed_concurrently(store, settings):
    stub = StubReconciler(delay=0.02)
    ctl = Controller(stub, store, InMemoryBus(), settings)
    await ctl.start()
    try:
        ctl.queue.add("default/a")
        await wait_until(lambda: stub.inflight == 1)
        ctl.queue.add("default/a")
        ctl.queue.add("default/a")
        await wait_until(lambda: len(stub.seen) == 2 and stub.inflight == 0)
        await asyncio.sleep(0.03)
    finally:
        await ctl.stop()
    assert stub.max_inflight == 1
    assert stub.seen == ["default/a", "default/a"]


@pytest.mark.asyncio
async def test_start_enqueues_existing_records(store, settings):
    await store.create(make_mail("a"))
    await store.create(make_mail("b"))
    stub = StubReconciler()
    ctl = Controller(stub, store, InMemoryBus(), settings)
    await ctl.start()
    try:
        await wait_until(lambda: len(stub.seen) == 2)
    finally:
        await ctl.stop()
    assert sorted(stub.seen) == ["default/a", "default/b"]


@pytest.mark.asyncio
async def test_start_twice_is_rejected(store, settings):
    ctl = Controller(StubReconciler(), store, InMemoryBus(), settings)
    await ctl.start()
    try:
        with pytest.raises(RuntimeError):
            await ctl.start()
    finally:
        await ctl.stop()


@pytest.mark.asyncio
async def test_end_to_end_create_retry_and_delete(gateway, settings, clock, events):
    bus = InMemoryBus()
    store = InMemoryMailStore(bus, clock=clock)
    reconciler = ReconcileService(store, gateway, settings, event_bus=events, clock=clock)
    ctl = Controller(reconciler, store, bus, settings, event_bus=events)
    gateway.failures["create"].append(GatewayTransientError("create_order", "HTTP 502"))

    await ctl.start()
    try:
        await store.create(make_mail("letter"))

        async def order_persisted():
            return (await store.get("default/letter")).status.order_id == "order-123"

        await wait_until(order_persisted)
        assert gateway.calls["create"] == 2
        assert any(topic == "reconcile.failed" for topic, _ in events.received)

        await store.delete("default/letter")
        await wait_until(lambda: "default/letter" not in store)
    finally:
        await ctl.stop()

    assert gateway.calls["cancel"] == 1
    assert gateway.orders["order-123"].state == "cancelled"
    assert len(gateway.orders) == 1


@pytest.mark.asyncio
async def test_shutdown_stops_workers_before_closing_watch(store, settings):
    from app.run_controller import shutdown

    order = []
    bus = InMemoryBus()
    ctl = Controller(StubReconciler(), store, bus, settings)

    class Container:
        async def stop(self):
            order.append(("container", bus.is_closed("mail")))

    real_stop = ctl.stop

    async def stop():
        order.append(("controller", bus.is_closed("mail")))
        await real_stop()

    ctl.stop = stop
    await ctl.start()
    await shutdown(ctl, bus, Container())

    assert order == [("controller", False), ("container", True)]
