"""
PlatformBillingService runs the same lifecycle one level up, for merchants'
platform subscriptions. Expired trials and lapsed paid plans fall back to
the free plan, on both the platform subscription and the user row.
"""
import logging
import time
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from subgate.lifecycle.config import get_free_plan_slug, get_grace_period_days
from subgate.lifecycle.lock import SweepLock
from subgate.lifecycle.models import PlatformSweepResult
from subgate.lifecycle.state import LAPSING_STATUSES, grace_cutoff
from subgate.models.platform import PlatformPlan, PlatformSubscription
from subgate.models.user import User
from subgate.services.audit.service import AuditService
from subgate.utils.metrics import subscription_transitions_total, sweep_duration_seconds

logger = logging.getLogger(__name__)


class FreePlanMissingError(Exception):
    """The fallback plan row does not exist; nothing can be downgraded."""


class PlatformBillingService:
    def __init__(self, db: Session, grace_days: int | None = None):
        self.db = db
        self.grace_days = get_grace_period_days() if grace_days is None else grace_days

    def get_free_plan(self) -> PlatformPlan | None:
        return self.db.query(PlatformPlan).filter(PlatformPlan.slug == get_free_plan_slug()).one_or_none()

    def get_user_plan(self, user_id: str) -> PlatformPlan | None:
        """Plan of the user's platform subscription, or the free plan if none."""
        sub = self.db.query(PlatformSubscription).filter(PlatformSubscription.user_id == user_id).one_or_none()
        if sub is not None:
            plan = self.db.query(PlatformPlan).filter(PlatformPlan.id == sub.plan_id).one_or_none()
            if plan is not None:
                return plan
        return self.get_free_plan()

    def can_use_feature(self, user_id: str, feature: str) -> bool:
        plan = self.get_user_plan(user_id)
        return plan.allows(feature) if plan is not None else False

    def downgrade_to_free(self, sub_id: str, user_id: str, free_plan_id: str, expected: tuple[str, ...], now: datetime) -> bool:
        """Expire one platform subscription and move its user to the free plan.
        Conditional on the status still being one of `expected`."""
        result = self.db.execute(
            update(PlatformSubscription)
            .where(PlatformSubscription.id == sub_id, PlatformSubscription.status.in_(expected))
            .values(status="expired", plan_id=free_plan_id, expired_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if (result.rowcount or 0) != 1:
            self.db.rollback()
            return False
        self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(platform_plan_id=free_plan_id)
            .execution_options(synchronize_session=False)
        )
        AuditService(self.db).record(
            action="platform_plan_downgraded",
            entity_type="platform_subscription",
            entity_id=sub_id,
            payload={"user_id": user_id, "from_status": list(expected), "plan_id": free_plan_id},
            commit=False,
        )
        self.db.commit()
        subscription_transitions_total.labels(kind="platform", status="expired").inc()
        return True

    def sweep(self, now: datetime | None = None) -> PlatformSweepResult:
        now = now or datetime.now(timezone.utc)
        started = time.monotonic()
        free_plan = self.get_free_plan()
        if free_plan is None:
            raise FreePlanMissingError("Free plan not found")
        result = PlatformSweepResult()
        cutoff = grace_cutoff(now, self.grace_days)

        # 1. Expired trials
        trials = (
            self.db.query(PlatformSubscription.id, PlatformSubscription.user_id)
            .filter(PlatformSubscription.status == "trialing", PlatformSubscription.trial_end < now)
            .all()
        )
        for sub_id, user_id in trials:
            try:
                if self.downgrade_to_free(sub_id, user_id, free_plan.id, ("trialing",), now):
                    result.trials_expired += 1
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.exception("platform_trial_expire_error", extra={"subscription_id": sub_id})
                result.errors.append(f"User {user_id}: {e}")

        # 2. Paid plans inside the grace window
        try:
            res = self.db.execute(
                update(PlatformSubscription)
                .where(
                    PlatformSubscription.status == "active",
                    PlatformSubscription.current_period_end < now,
                    PlatformSubscription.current_period_end > cutoff,
                )
                .values(status="past_due", updated_at=now)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            result.marked_past_due = res.rowcount or 0
            if result.marked_past_due:
                subscription_transitions_total.labels(kind="platform", status="past_due").inc(result.marked_past_due)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("platform_past_due_error")
            result.errors.append(f"Paid subscriptions: {e}")

        # 3. Past the grace edge
        lapsed = (
            self.db.query(PlatformSubscription.id, PlatformSubscription.user_id)
            .filter(
                PlatformSubscription.status.in_(LAPSING_STATUSES),
                PlatformSubscription.current_period_end <= cutoff,
            )
            .all()
        )
        for sub_id, user_id in lapsed:
            try:
                if self.downgrade_to_free(sub_id, user_id, free_plan.id, LAPSING_STATUSES, now):
                    result.marked_expired += 1
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.exception("platform_expire_error", extra={"subscription_id": sub_id})
                result.errors.append(f"Past due {user_id}: {e}")

        sweep_duration_seconds.labels(kind="platform").observe(time.monotonic() - started)
        logger.info("platform_sweep_done", extra={"processed": result.processed})
        return result


def run_platform_sweep(db: Session, now: datetime | None = None, lock: SweepLock | None = None) -> PlatformSweepResult:
    lock = lock or SweepLock("platform")
    if not lock.acquire():
        logger.warning("platform_sweep_skipped_locked")
        return PlatformSweepResult(skipped=True)
    try:
        return PlatformBillingService(db).sweep(now)
    finally:
        lock.release()
