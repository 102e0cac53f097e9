# mailing/errors.py
from typing import Optional, Sequence


class MailingError(Exception):
    """Base mailing error."""
    def __init__(self, msg: str = "", **ctx):
        super().__init__(msg)
        self.msg = msg
        self.ctx = {k: v for k, v in ctx.items() if v is not None}

    def __str__(self):
        base = self.msg or self.__class__.__name__
        if self.ctx:
            details = ", ".join(f"{k}={v}" for k, v in self.ctx.items())
            return f"{base} [{details}]"
        return base


class ValidationError(MailingError):
    """Desired state failed structural or business-rule validation."""

    def __init__(self, violations: Sequence, msg: str = ""):
        self.violations = list(violations)
        summary = "; ".join(f"{v.field}: {v.message}" for v in self.violations)
        super().__init__(msg or f"invalid mail request: {summary}")


class GatewayTransientError(MailingError):
    """Create/fetch/cancel against the fulfillment provider failed."""

    def __init__(self, operation: str, msg: str, **ctx):
        super().__init__(f"{operation} failed: {msg}", **ctx)
        self.operation = operation


class ConcurrentModificationError(MailingError):
    """Optimistic-concurrency write lost against another writer."""

    def __init__(self, key: str, expected: Optional[int] = None, actual: Optional[int] = None):
        super().__init__(f"{key} was modified concurrently", expected=expected, actual=actual)
        self.key = key


class NotFoundError(MailingError):
    """Record does not exist (or no longer exists) in the store."""

    def __init__(self, key: str):
        super().__init__(f"{key} not found")
        self.key = key
