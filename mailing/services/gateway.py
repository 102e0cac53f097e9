# mailing/services/gateway.py
from __future__ import annotations
import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol

import aiohttp
from pydantic import BaseModel

from infra import HttpPort
from infra.http_client import HttpError, ProviderApiError
from mailing.errors import GatewayTransientError
from mailing.models import Address, Order, OrderPayload
from mailing.services.endpoints import Endpoints
from utils.logger import logger as _default_logger


class FulfillmentGateway(Protocol):
    async def create_order(self, payload: OrderPayload) -> Order: ...
    async def get_order(self, order_id: str) -> Order: ...
    async def cancel_order(self, order_id: str) -> None: ...


class OrderResource(BaseModel):
    """Order object as returned in the provider's `data` envelope."""
    id: str
    state: str = ""
    total: int = 0
    created: Optional[datetime] = None
    modified: Optional[datetime] = None
    cancelled: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    def to_order(self, raw: Optional[dict] = None) -> Order:
        return Order(
            order_id=self.id,
            state=self.state,
            total=self.total,
            created=self.created,
            modified=self.modified,
            cancelled=self.cancelled,
            cancellation_reason=self.cancellation_reason or "",
            raw=raw,
        )


def _flag(v: bool) -> str:
    return "true" if v else "false"


def _address_fields(prefix: str, addr: Address) -> Dict[str, str]:
    fields = {
        f"{prefix}_name": addr.name,
        f"{prefix}_organization": addr.organization,
        f"{prefix}_address_1": addr.address1,
        f"{prefix}_address_2": addr.address2,
        f"{prefix}_city": addr.city,
        f"{prefix}_state": addr.state,
        f"{prefix}_postcode": addr.postcode,
        f"{prefix}_country": addr.country,
    }
    return {k: v for k, v in fields.items() if v}


def order_form_fields(payload: OrderPayload) -> Dict[str, str]:
    """Flat form fields for order creation (the document itself is attached separately)."""
    fields: Dict[str, str] = {"service": payload.service}
    optional = {
        "url": payload.url,
        "customer_reference": payload.customer_reference,
        "webhook": payload.webhook,
        "company": payload.company,
        "message": payload.message,
    }
    fields.update({k: v for k, v in optional.items() if v})
    fields.update({
        "simplex": _flag(payload.simplex),
        "color": _flag(payload.color),
        "flat": _flag(payload.flat),
        "stamp": _flag(payload.stamp),
    })
    fields.update(_address_fields("to", payload.to))
    fields.update(_address_fields("from", payload.from_))
    return fields


def parse_order(resp: Mapping[str, Any]) -> Order:
    data = resp.get("data", resp) if isinstance(resp, Mapping) else None
    if not isinstance(data, Mapping):
        raise ValueError(f"unexpected order payload: {resp!r}")
    return OrderResource.model_validate(data).to_order(raw=dict(data))


class HttpFulfillmentGateway:
    """
    REST order create/fetch/cancel against the fulfillment provider.
    Every failure surfaces as GatewayTransientError.
    """

    def __init__(self, http_client: HttpPort, endpoints: Endpoints, logger=None) -> None:
        self._http = http_client
        self._ep = endpoints
        self._log = logger or _default_logger

    async def _build_form(self, payload: OrderPayload) -> aiohttp.FormData:
        form = aiohttp.FormData()
        for k, v in order_form_fields(payload).items():
            form.add_field(k, v)
        if payload.file_path:
            path = Path(payload.file_path)
            content = await asyncio.to_thread(path.read_bytes)
            form.add_field("file", content, filename=path.name, content_type="application/pdf")
        return form

    async def create_order(self, payload: OrderPayload) -> Order:
        """POST /orders → provider-assigned order."""
        headers = {"Idempotency-Key": payload.idempotency_key} if payload.idempotency_key else None
        try:
            form = await self._build_form(payload)
            resp = await self._http.post(self._ep.orders, form=form, headers=headers)
            order = parse_order(resp)
        except OSError as e:
            raise GatewayTransientError("create_order", f"cannot read document {payload.file_path}: {e}") from e
        except (HttpError, ProviderApiError, ValueError) as e:
            raise GatewayTransientError("create_order", str(e)) from e
        self._log.info(f"Order created id={order.order_id} state={order.state} service={payload.service}")
        return order

    async def get_order(self, order_id: str) -> Order:
        """GET /orders/{order_id} → current provider view of the order."""
        try:
            resp = await self._http.get(self._ep.order_path(order_id))
            return parse_order(resp)
        except (HttpError, ProviderApiError, ValueError) as e:
            raise GatewayTransientError("get_order", str(e), order_id=order_id) from e

    async def cancel_order(self, order_id: str) -> None:
        """DELETE /orders/{order_id}."""
        try:
            await self._http.delete(self._ep.cancel_path(order_id))
        except (HttpError, ProviderApiError) as e:
            raise GatewayTransientError("cancel_order", str(e), order_id=order_id) from e
        self._log.info(f"Order cancelled id={order_id}")
