# mailing/enums.py
from enum import Enum


class OrderState(str, Enum):
    QUEUED = "queued"
    AWAITING_FULFILLMENT = "awaiting_fulfillment"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: str | None) -> "OrderState":
        """Map a provider label onto the closed set; anything unrecognized is UNKNOWN."""
        if not raw:
            return cls.UNKNOWN
        norm = "_".join(str(raw).strip().lower().replace("-", " ").replace("_", " ").split())
        if norm == "canceled":
            return cls.CANCELLED
        try:
            return cls(norm)
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_terminal(self) -> bool:
        return self in (OrderState.FULFILLED, OrderState.CANCELLED)


class ConditionType(str, Enum):
    VALIDATION = "Validation"
    FULFILLMENT = "Fulfillment"


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class GuardDecision(Enum):
    CONTINUE = "continue"
    DELETION_UNBLOCKED = "deletion_unblocked"


class NotificationKind(Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETE_REQUESTED = "delete_requested"
