# mailing/idempotency.py
import uuid


def make_uid() -> str:
    """Store-assigned identity for a new record."""
    return uuid.uuid4().hex


def make_idempotency_key(uid: str, prefix: str = "mail") -> str:
    """Deterministic per-record key sent with order creation, so provider-side dedupe can kick in."""
    return f"{prefix}-{uid}"
