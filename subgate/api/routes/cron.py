"""
Cron endpoints hit by an external scheduler. All share verify_cron_secret.
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from subgate.api.deps import get_dispatcher, verify_cron_secret
from subgate.db.session import get_db
from subgate.lifecycle.config import get_grace_period_days
from subgate.lifecycle.lock import SweepLock
from subgate.lifecycle.models import SweepResult
from subgate.lifecycle.payments import expire_pending_payments
from subgate.lifecycle.platform import FreePlanMissingError, run_platform_sweep
from subgate.lifecycle.service import run_subscription_sweep
from subgate.services.notifications.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cron"], dependencies=[Depends(verify_cron_secret)])


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sweep(db: Session, dispatcher: NotificationDispatcher) -> tuple[SweepResult, str | None]:
    """Counts gathered before an unexpected failure are kept in the returned result."""
    result = SweepResult()
    try:
        return run_subscription_sweep(db, dispatcher, lock=SweepLock("merchant"), result=result), None
    except Exception as e:
        db.rollback()
        logger.exception("cron_subscription_sweep_error")
        return result, str(e)


@router.api_route("/api/cron/subscriptions", methods=["GET", "POST"])
def cron_subscriptions(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Daily sweep: status transitions, renewal reminders, expiration notices."""
    result, error = _sweep(db, dispatcher)
    if error is not None:
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": error,
                "results": result.model_dump(mode="json", by_alias=True),
            },
        )
    return {
        "success": True,
        "timestamp": _now_iso(),
        "results": result.model_dump(mode="json", by_alias=True),
    }


@router.get("/api/cron/check-trials")
def cron_check_trials(db: Session = Depends(get_db)):
    """Expired trials and lapsed paid platform plans fall back to the free plan."""
    try:
        result = run_platform_sweep(db, lock=SweepLock("platform"))
    except FreePlanMissingError:
        return JSONResponse(status_code=500, content={"error": "Free plan not found"})
    except Exception as e:
        db.rollback()
        logger.exception("cron_check_trials_error")
        return JSONResponse(status_code=500, content={"error": str(e)})
    body = {"success": True, **result.model_dump(mode="json", by_alias=True)}
    if result.processed == 0 and not result.skipped:
        body["message"] = "No expired trials found"
    return body


@router.get("/api/cron/expire-payments")
def cron_expire_payments(db: Session = Depends(get_db)):
    try:
        outcome = expire_pending_payments(db)
    except Exception as e:
        db.rollback()
        logger.exception("cron_expire_payments_error")
        return JSONResponse(status_code=500, content={"error": str(e)})
    return {"success": True, **outcome}


@router.post("/api/subscriptions/process-expiry")
def process_expiry(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    result, error = _sweep(db, dispatcher)
    processed = {
        "markedPastDue": result.marked_past_due,
        "markedExpired": result.marked_expired,
        "expiringNotificationsSent": result.expiring_notifications_sent,
        "expiredNotificationsSent": result.expired_notifications_sent,
    }
    if error is None and result.transitions_failed:
        error = "; ".join(result.errors)
    if error is not None:
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Failed to process subscriptions",
                "details": error,
                "processed": processed,
                "errors": result.errors,
            },
        )
    return {
        "success": True,
        "processed": processed,
        "skipped": result.skipped,
        "errors": result.errors,
        "timestamp": _now_iso(),
    }


@router.get("/api/subscriptions/process-expiry")
def process_expiry_info():
    return {
        "message": "Use POST to process subscription expiry",
        "gracePeriodDays": get_grace_period_days(),
    }
