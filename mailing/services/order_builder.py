# mailing/services/order_builder.py
from __future__ import annotations
from typing import Iterable, List, Optional

from mailing.idempotency import make_idempotency_key
from mailing.models import Address, FieldViolation, MailRequest, OrderPayload, ValidationResult

_REQUIRED_ADDRESS_FIELDS = ("name", "address1", "city", "state", "postcode", "country")


def _blank(value: Optional[str]) -> bool:
    return not (value or "").strip()


def _address_violations(prefix: str, addr: Optional[Address]) -> List[FieldViolation]:
    if addr is None:
        return [FieldViolation(prefix, "address is required")]
    return [
        FieldViolation(f"{prefix}.{name}", "is required")
        for name in _REQUIRED_ADDRESS_FIELDS
        if _blank(getattr(addr, name))
    ]


class OrderRequestBuilder:
    """
    Maps a MailRequest onto the provider's order-creation payload and
    checks it before any gateway call is made.
    """

    def __init__(self, services: Iterable[str] = ()) -> None:
        self._services = frozenset(s.strip() for s in services if s and s.strip())

    def build(self, request: MailRequest) -> OrderPayload:
        spec = request.spec
        return OrderPayload(
            service=spec.service.strip(),
            to=spec.to,
            from_=spec.from_,
            file_path=spec.file_path.strip(),
            url=spec.url.strip(),
            customer_reference=spec.customer_reference,
            webhook=spec.webhook,
            company=spec.company,
            message=spec.message,
            simplex=spec.simplex,
            color=spec.color,
            flat=spec.flat,
            stamp=spec.stamp,
            idempotency_key=make_idempotency_key(request.meta.uid) if request.meta.uid else None,
        )

    def validate(self, payload: OrderPayload) -> ValidationResult:
        """Collect every violation; never stops at the first one."""
        violations: List[FieldViolation] = []

        if _blank(payload.service):
            violations.append(FieldViolation("service", "is required"))
        elif self._services and payload.service not in self._services:
            violations.append(FieldViolation(
                "service",
                f"unsupported service {payload.service!r}, expected one of {sorted(self._services)}",
            ))

        has_file = not _blank(payload.file_path)
        has_url = not _blank(payload.url)
        if not has_file and not has_url:
            violations.append(FieldViolation("document", "one of filePath or url is required"))
        elif has_file and has_url:
            violations.append(FieldViolation("document", "filePath and url are mutually exclusive"))

        violations.extend(_address_violations("to", payload.to))
        violations.extend(_address_violations("from", payload.from_))
        return ValidationResult(violations=violations)
