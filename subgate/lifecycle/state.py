"""
Subscription state machine (pure).

    active  --(period ended, inside grace)-->  past_due
    active | past_due  --(period end <= now - grace)-->  expired

expired and cancelled are terminal; only a confirmed payment starts a new period.
The grace edge itself belongs to expired.
"""
from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

TERMINAL_STATUSES = frozenset({"expired", "cancelled"})
LAPSING_STATUSES = ("active", "past_due")


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (some drivers drop tzinfo on read)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def grace_cutoff(now: datetime, grace_days: int) -> datetime:
    return now - timedelta(days=grace_days)


def classify(status: str, current_period_end: datetime | None, now: datetime, grace_days: int) -> str:
    """Status a subscription should have at `now`."""
    if status in TERMINAL_STATUSES or current_period_end is None:
        return status
    end = as_utc(current_period_end)
    if end >= now:
        return status
    if end <= grace_cutoff(now, grace_days):
        return "expired" if status in LAPSING_STATUSES else status
    if status == "active":
        return "past_due"
    return status


def is_entitling(status: str, current_period_end: datetime | None, now: datetime) -> bool:
    return status == "active" and current_period_end is not None and as_utc(current_period_end) >= now


def days_until(moment: datetime, now: datetime) -> int:
    """Whole days left, rounded up (an hour left counts as 1 day)."""
    seconds = (as_utc(moment) - now).total_seconds()
    return max(0, math.ceil(seconds / 86400))
