# mailing/services/endpoints.py
from dataclasses import dataclass


@dataclass
class Endpoints:
    # provider REST paths, relative to provider.base_url
    orders: str = "/orders"
    order: str = "/orders/{order_id}"
    cancel_order: str = "/orders/{order_id}"

    def order_path(self, order_id: str) -> str:
        return self.order.format(order_id=order_id)

    def cancel_path(self, order_id: str) -> str:
        return self.cancel_order.format(order_id=order_id)


def make_endpoints_from_cfg(cfg: dict) -> Endpoints:
    paths = (cfg.get("provider") or {}).get("paths") or {}
    defaults = Endpoints()
    ep = Endpoints(
        orders=str(paths.get("orders", defaults.orders)),
        order=str(paths.get("order", defaults.order)),
        cancel_order=str(paths.get("cancel_order", defaults.cancel_order)),
    )
    for name in ("orders", "order", "cancel_order"):
        value = getattr(ep, name)
        if not value.startswith("/"):
            raise ValueError(f"Invalid cfg provider.paths.{name}: must start with '/', got {value!r}")
    for name in ("order", "cancel_order"):
        if "{order_id}" not in getattr(ep, name):
            raise ValueError(f"Invalid cfg provider.paths.{name}: missing {{order_id}} placeholder")
    return ep
