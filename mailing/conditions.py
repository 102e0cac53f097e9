# mailing/conditions.py
"""
Named boolean observations attached to a MailRequest status.

At most one condition per type; list order is first-set order. The transition
timestamp only moves when the status actually flips.
"""
from datetime import datetime
from typing import List, Optional

from mailing.enums import ConditionType, ConditionStatus
from mailing.models import Condition


def find_condition(conditions: List[Condition], ctype: ConditionType) -> Optional[Condition]:
    for c in conditions:
        if c.type == ctype:
            return c
    return None


def is_condition_true(conditions: List[Condition], ctype: ConditionType) -> bool:
    c = find_condition(conditions, ctype)
    return c is not None and c.status == ConditionStatus.TRUE


def set_condition(
    conditions: List[Condition],
    ctype: ConditionType,
    status: ConditionStatus,
    reason: str,
    message: str,
    now: datetime,
    observed_generation: Optional[int] = None,
) -> bool:
    """
    Insert or update the condition of `ctype` in place.
    Returns True when anything stored changed.
    """
    current = find_condition(conditions, ctype)
    if current is None:
        conditions.append(Condition(
            type=ctype,
            status=status,
            reason=reason,
            message=message,
            last_transition_time=now,
            observed_generation=observed_generation,
        ))
        return True

    changed = False
    if current.status != status:
        current.status = status
        current.last_transition_time = now
        changed = True
    if current.reason != reason or current.message != message:
        current.reason = reason
        current.message = message
        changed = True
    if observed_generation is not None and current.observed_generation != observed_generation:
        current.observed_generation = observed_generation
        changed = True
    return changed
