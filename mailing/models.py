# mailing/models.py
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List

from mailing.enums import OrderState, ConditionType, ConditionStatus, NotificationKind
from mailing.errors import ValidationError


@dataclass
class Address:
    name: str = ""
    address1: str = ""
    city: str = ""
    state: str = ""
    postcode: str = ""
    country: str = ""
    organization: str = ""
    address2: str = ""

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "Address":
        raw = raw or {}
        return cls(
            name=str(raw.get("name") or ""),
            address1=str(raw.get("address1") or ""),
            city=str(raw.get("city") or ""),
            state=str(raw.get("state") or ""),
            postcode=str(raw.get("postcode") or ""),
            country=str(raw.get("country") or ""),
            organization=str(raw.get("organization") or ""),
            address2=str(raw.get("address2") or ""),
        )


@dataclass
class MailRequestSpec:
    service: str
    to: Address
    from_: Address
    file_path: str = ""                 # local document, uploaded with the order
    url: str = ""                       # remote document, fetched by the provider
    customer_reference: str = ""
    webhook: str = ""
    company: str = ""
    message: str = ""
    simplex: bool = False
    color: bool = False
    flat: bool = False
    stamp: bool = False

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "MailRequestSpec":
        """Parse the camelCase manifest form ({"service": ..., "filePath": ..., "from": {...}})."""
        return cls(
            service=str(raw.get("service") or ""),
            to=Address.from_dict(raw.get("to")),
            from_=Address.from_dict(raw.get("from")),
            file_path=str(raw.get("filePath") or ""),
            url=str(raw.get("url") or ""),
            customer_reference=str(raw.get("customerReference") or ""),
            webhook=str(raw.get("webhook") or ""),
            company=str(raw.get("company") or ""),
            message=str(raw.get("message") or ""),
            simplex=bool(raw.get("simplex", False)),
            color=bool(raw.get("color", False)),
            flat=bool(raw.get("flat", False)),
            stamp=bool(raw.get("stamp", False)),
        )


@dataclass
class Condition:
    type: ConditionType
    status: ConditionStatus
    reason: str
    message: str
    last_transition_time: datetime
    observed_generation: Optional[int] = None


@dataclass
class MailRequestStatus:
    order_id: str = ""
    state: str = ""                     # provider label, mirrored verbatim
    valid: bool = False
    sent: bool = False
    total: int = 0
    created: Optional[datetime] = None
    modified: Optional[datetime] = None
    cancelled: Optional[datetime] = None
    cancellation_reason: str = ""
    observed_generation: int = 0
    last_attempt_message: str = ""
    conditions: List[Condition] = field(default_factory=list)

    @property
    def order_state(self) -> OrderState:
        return OrderState.parse(self.state)


@dataclass
class ObjectMeta:
    name: str
    namespace: str = "default"
    uid: str = ""
    generation: int = 0                 # bumped by the store on spec changes only
    resource_version: int = 0           # bumped by the store on every write
    finalizers: List[str] = field(default_factory=list)
    annotations: Dict[str, str] = field(default_factory=dict)
    deletion_timestamp: Optional[datetime] = None
    creation_timestamp: Optional[datetime] = None

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def add_finalizer(self, finalizer: str) -> bool:
        if finalizer in self.finalizers:
            return False
        self.finalizers.append(finalizer)
        return True

    def remove_finalizer(self, finalizer: str) -> bool:
        if finalizer not in self.finalizers:
            return False
        self.finalizers = [f for f in self.finalizers if f != finalizer]
        return True


@dataclass
class MailRequest:
    meta: ObjectMeta
    spec: MailRequestSpec
    status: MailRequestStatus = field(default_factory=MailRequestStatus)

    @property
    def key(self) -> str:
        return self.meta.key

    @property
    def is_deleting(self) -> bool:
        return self.meta.deletion_timestamp is not None

    @classmethod
    def from_manifest(cls, raw: Dict[str, Any]) -> "MailRequest":
        """Build a new (status-less) record from {"metadata": {...}, "spec": {...}}."""
        md = raw.get("metadata") or {}
        if not md.get("name"):
            raise ValueError("manifest metadata.name is required")
        meta = ObjectMeta(
            name=str(md["name"]),
            namespace=str(md.get("namespace") or "default"),
            annotations={str(k): str(v) for k, v in (md.get("annotations") or {}).items()},
        )
        return cls(meta=meta, spec=MailRequestSpec.from_dict(raw.get("spec") or {}))


@dataclass
class OrderPayload:
    service: str
    to: Address
    from_: Address
    file_path: str = ""
    url: str = ""
    customer_reference: str = ""
    webhook: str = ""
    company: str = ""
    message: str = ""
    simplex: bool = False
    color: bool = False
    flat: bool = False
    stamp: bool = False
    idempotency_key: Optional[str] = None


@dataclass
class Order:
    order_id: str
    state: str
    total: int = 0
    created: Optional[datetime] = None
    modified: Optional[datetime] = None
    cancelled: Optional[datetime] = None
    cancellation_reason: str = ""
    raw: Optional[dict] = None

    @property
    def order_state(self) -> OrderState:
        return OrderState.parse(self.state)


@dataclass(frozen=True)
class FieldViolation:
    field: str
    message: str


@dataclass
class ValidationResult:
    violations: List[FieldViolation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations

    @property
    def message(self) -> str:
        return "; ".join(f"{v.field}: {v.message}" for v in self.violations)

    def raise_for_errors(self) -> None:
        if self.violations:
            raise ValidationError(self.violations)


@dataclass(frozen=True)
class Result:
    """Scheduling directive returned by one reconciliation attempt."""
    requeue: bool = False
    requeue_after: Optional[float] = None   # seconds

    @property
    def done(self) -> bool:
        return not self.requeue and self.requeue_after is None


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    key: str
