# mailing/config.py
from dataclasses import dataclass, field
from typing import Any, Mapping, Tuple

from utils.time import parse_duration

DEFAULT_FINALIZER = "mailing.io/order-protection"
DEFAULT_OVERRIDE_ANNOTATION = "mailing.io/skip-cancellation"


@dataclass
class ReconcilerSettings:
    """Reconciler runtime configuration."""
    sync_interval_s: float = 60.0           # poll cadence while an order is not terminal
    backoff_base_s: float = 1.0             # first retry delay after a failed attempt
    backoff_max_s: float = 300.0
    max_conflict_retries: int = 3           # reload-and-retry budget for store conflicts
    workers: int = 2
    resync_interval_s: float = 600.0

    finalizer: str = DEFAULT_FINALIZER
    override_annotation: str = DEFAULT_OVERRIDE_ANNOTATION
    services: Tuple[str, ...] = field(default_factory=tuple)   # empty = accept any service


def make_settings_from_cfg(cfg: Mapping[str, Any]) -> ReconcilerSettings:
    rc = cfg.get("reconciler") or {}
    defaults = ReconcilerSettings()
    try:
        settings = ReconcilerSettings(
            sync_interval_s=parse_duration(rc.get("sync_interval", defaults.sync_interval_s)),
            backoff_base_s=parse_duration(rc.get("backoff_base", defaults.backoff_base_s)),
            backoff_max_s=parse_duration(rc.get("backoff_max", defaults.backoff_max_s)),
            max_conflict_retries=int(rc.get("max_conflict_retries", defaults.max_conflict_retries)),
            workers=int(rc.get("workers", defaults.workers)),
            resync_interval_s=parse_duration(rc.get("resync_interval", defaults.resync_interval_s)),
            finalizer=str(rc.get("finalizer") or defaults.finalizer),
            override_annotation=str(rc.get("override_annotation") or defaults.override_annotation),
            services=tuple(str(s).strip() for s in (rc.get("services") or []) if str(s).strip()),
        )
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid reconciler cfg: {e}") from e

    if settings.sync_interval_s <= 0:
        raise ValueError("reconciler.sync_interval must be > 0")
    if settings.backoff_base_s <= 0 or settings.backoff_max_s < settings.backoff_base_s:
        raise ValueError("reconciler backoff must satisfy 0 < backoff_base <= backoff_max")
    if settings.max_conflict_retries < 1:
        raise ValueError("reconciler.max_conflict_retries must be >= 1")
    if settings.workers < 1:
        raise ValueError("reconciler.workers must be >= 1")
    return settings
