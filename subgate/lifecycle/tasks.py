"""
Celery beat tasks: subscription sweeps and pending-payment expiry.
Same services as the cron HTTP endpoints, for deployments that run a worker.
"""
import logging

from subgate.core.celery_app import celery_app
from subgate.db.session import SessionLocal
from subgate.lifecycle.payments import expire_pending_payments as _expire_pending_payments
from subgate.lifecycle.platform import FreePlanMissingError, run_platform_sweep
from subgate.lifecycle.service import run_subscription_sweep

logger = logging.getLogger(__name__)


@celery_app.task(
    name="subgate.lifecycle.tasks.sweep_subscriptions",
    time_limit=900,
    soft_time_limit=870,
)
def sweep_subscriptions() -> dict:
    """active -> past_due -> expired, renewal reminders and expiration notices."""
    db = SessionLocal()
    try:
        result = run_subscription_sweep(db)
        return {"ok": True, **result.model_dump(mode="json", by_alias=True)}
    except Exception:
        db.rollback()
        logger.exception("sweep_subscriptions_error")
        return {"ok": False}
    finally:
        db.close()


@celery_app.task(
    name="subgate.lifecycle.tasks.sweep_platform_subscriptions",
    time_limit=300,
    soft_time_limit=270,
)
def sweep_platform_subscriptions() -> dict:
    """Expired trials and lapsed platform plans fall back to the free plan."""
    db = SessionLocal()
    try:
        result = run_platform_sweep(db)
        return {"ok": True, **result.model_dump(mode="json", by_alias=True)}
    except FreePlanMissingError:
        logger.error("sweep_platform_free_plan_missing")
        return {"ok": False, "error": "free_plan_missing"}
    except Exception:
        db.rollback()
        logger.exception("sweep_platform_subscriptions_error")
        return {"ok": False}
    finally:
        db.close()


@celery_app.task(
    name="subgate.lifecycle.tasks.expire_pending_payments",
    time_limit=60,
    soft_time_limit=55,
)
def expire_pending_payments() -> dict:
    db = SessionLocal()
    try:
        return {"ok": True, **_expire_pending_payments(db)}
    except Exception:
        db.rollback()
        logger.exception("expire_pending_payments_error")
        return {"ok": False}
    finally:
        db.close()
