# app/run_controller.py
import asyncio, signal, os, argparse
from pathlib import Path

import yaml

from adapters.bus.inmemory import InMemoryBus
from infra import HttpContainer
from mailing.config import make_settings_from_cfg
from mailing.event_bus import EventBus, LIFECYCLE_TOPICS
from mailing.models import MailRequest
from mailing.services.controller import Controller
from mailing.services.endpoints import make_endpoints_from_cfg
from mailing.services.gateway import HttpFulfillmentGateway
from mailing.services.reconcile_service import ReconcileService
from mailing.stores.mail_store import InMemoryMailStore, TOPIC_MAIL
from utils import configure_logging, logger, load_cfg


def build_parser():
    p = argparse.ArgumentParser("mail-controller")
    p.add_argument("--config-path", default=os.getenv("MAILING_CONFIG", None))
    p.add_argument("--manifests", default=None, help="YAML file with one MailRequest manifest per document")
    p.add_argument("--workers", type=int, default=0)
    p.add_argument("--log-level", default=None, help="console log level, e.g. DEBUG")
    return p


def load_manifests(path: str) -> list[MailRequest]:
    with open(Path(path), "r", encoding="utf-8") as f:
        docs = [d for d in yaml.safe_load_all(f) if d]
    return [MailRequest.from_manifest(d) for d in docs]


async def shutdown(controller, bus, container) -> None:
    """Workers stop before the notification stream closes, so no store write hits a closed topic."""
    await controller.stop()
    await bus.close(TOPIC_MAIL)
    await container.stop()


async def main():
    args = build_parser().parse_args()
    if args.log_level:
        configure_logging(level=args.log_level)
    cfg = load_cfg(args.config_path)
    settings = make_settings_from_cfg(cfg)
    if args.workers:
        settings.workers = args.workers

    container = await HttpContainer.start(cfg)
    bus = InMemoryBus(maxsize=2000)
    events = EventBus()
    for topic in LIFECYCLE_TOPICS:
        events.subscribe(topic, lambda ev, topic=topic: logger.info(f"[event] {topic} {ev}"))

    store = InMemoryMailStore(bus)
    gateway = HttpFulfillmentGateway(container.http, make_endpoints_from_cfg(cfg))
    reconciler = ReconcileService(store, gateway, settings, event_bus=events)
    controller = Controller(reconciler, store, bus, settings, event_bus=events)

    await controller.start()
    if args.manifests:
        for mail in load_manifests(args.manifests):
            await store.create(mail)
            logger.info(f"[{mail.key}] submitted")

    stop_event = asyncio.Event()

    def _graceful(*_):
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _graceful)
        except NotImplementedError:
            # no loop signal handlers on this platform
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))

    try:
        await stop_event.wait()
    finally:
        await shutdown(controller, bus, container)


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
