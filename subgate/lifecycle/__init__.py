"""
Subscription lifecycle: state classification, sweeps and lifecycle notices.
Celery tasks live in subgate.lifecycle.tasks (imported by the worker only).
"""
from subgate.lifecycle.models import ExpiringSubscription, PlatformSweepResult, SweepResult
from subgate.lifecycle.payments import expire_pending_payments
from subgate.lifecycle.platform import FreePlanMissingError, PlatformBillingService, run_platform_sweep
from subgate.lifecycle.service import SubscriptionLifecycleService, run_subscription_sweep
from subgate.lifecycle.state import classify, is_entitling

__all__ = [
    "ExpiringSubscription",
    "FreePlanMissingError",
    "PlatformBillingService",
    "PlatformSweepResult",
    "SubscriptionLifecycleService",
    "SweepResult",
    "classify",
    "expire_pending_payments",
    "is_entitling",
    "run_platform_sweep",
    "run_subscription_sweep",
]
