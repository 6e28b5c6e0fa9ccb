"""
Lifecycle config: typed wrappers over subgate.core.config.settings.
"""
from __future__ import annotations

from subgate.core.config import settings


def get_grace_period_days() -> int:
    return settings.grace_period_days


def get_renewal_reminder_days() -> int:
    return settings.renewal_reminder_days


def get_expired_notice_window_days() -> int:
    return settings.expired_notice_window_days


def get_free_plan_slug() -> str:
    return settings.free_plan_slug


def get_sweep_lock_ttl() -> int:
    return settings.sweep_lock_ttl


def build_renew_url(product_id: str) -> str:
    return f"{settings.app_url.rstrip('/')}/checkout/{product_id}"
