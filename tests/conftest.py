# tests/conftest.py
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest
import pytest_asyncio

from infra.http_client import HttpClient
from mailing.config import ReconcilerSettings
from mailing.event_bus import EventBus
from mailing.services.reconcile_service import ReconcileService
from mailing.stores.mail_store import InMemoryMailStore
from fakes import FakeClock, FakeGateway

BASE = "https://mail.test/api/v1"


@pytest.fixture
def settings():
    return ReconcilerSettings(
        sync_interval_s=30.0,
        backoff_base_s=0.01,
        backoff_max_s=0.05,
        max_conflict_retries=3,
        workers=2,
        resync_interval_s=3600.0,
        services=("USPS_FIRST_CLASS", "USPS_CERTIFIED"),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def store():
    return InMemoryMailStore()


@pytest.fixture
def events():
    bus = EventBus()
    bus.received = []
    for topic in ("order.created", "order.cancelled", "reconcile.failed"):
        bus.subscribe(topic, lambda ev, topic=topic: bus.received.append((topic, ev)))
    return bus


@pytest.fixture
def reconciler(store, gateway, settings, clock, events):
    return ReconcileService(store, gateway, settings, event_bus=events, clock=clock)


@pytest.fixture
def test_cfg():
    return {
        "provider": {"base_url": BASE, "api_key": "test_api_key_123456"},
        "timeouts": {"rest_ms": 2000},
        "retries": {"rest_max_attempts": 3, "backoff_ms": 1},
    }


@pytest_asyncio.fixture
async def http_client(test_cfg):
    """
    HttpClient as an async context manager, session cleaned up after the test.
    """
    async with HttpClient(test_cfg) as client:
        yield client
