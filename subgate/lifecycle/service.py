"""
SubscriptionLifecycleService: advances customer subscriptions through
active -> past_due -> expired and sends renewal/expiration notices.

Responsibilities:
- Bulk conditional status updates (re-running them is a no-op)
- Claiming each notice with a watermark column before sending, so two
  overlapping sweeps never notify the same subscription twice
- Per-channel isolated fan-out to customer and merchant
"""
import logging
import time
from datetime import datetime, timedelta, timezone

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from subgate.core.config import settings
from subgate.lifecycle.config import (
    build_renew_url,
    get_expired_notice_window_days,
    get_grace_period_days,
    get_renewal_reminder_days,
)
from subgate.lifecycle.lock import SweepLock
from subgate.lifecycle.models import ExpiringSubscription, SweepResult
from subgate.lifecycle.state import LAPSING_STATUSES, days_until, grace_cutoff
from subgate.models.product import Product
from subgate.models.subscription import Subscription
from subgate.models.user import User
from subgate.services.notifications import templates
from subgate.services.notifications.dispatcher import Notification, NotificationDispatcher
from subgate.utils.metrics import subscription_transitions_total, sweep_duration_seconds

logger = logging.getLogger(__name__)


class SubscriptionLifecycleService:
    def __init__(
        self,
        db: Session,
        dispatcher: NotificationDispatcher,
        grace_days: int | None = None,
        reminder_days: int | None = None,
        notice_window_days: int | None = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.grace_days = get_grace_period_days() if grace_days is None else grace_days
        self.reminder_days = get_renewal_reminder_days() if reminder_days is None else reminder_days
        self.notice_window_days = (
            get_expired_notice_window_days() if notice_window_days is None else notice_window_days
        )

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def mark_past_due(self, now: datetime) -> int:
        """active -> past_due for periods that ended inside the grace window."""
        cutoff = grace_cutoff(now, self.grace_days)
        result = self.db.execute(
            update(Subscription)
            .where(
                Subscription.status == "active",
                Subscription.current_period_end < now,
                Subscription.current_period_end > cutoff,
            )
            .values(status="past_due", updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        count = result.rowcount or 0
        if count:
            subscription_transitions_total.labels(kind="merchant", status="past_due").inc(count)
        return count

    def mark_expired(self, now: datetime) -> int:
        """active/past_due -> expired once the period end is at or beyond the grace edge."""
        cutoff = grace_cutoff(now, self.grace_days)
        result = self.db.execute(
            update(Subscription)
            .where(
                Subscription.status.in_(LAPSING_STATUSES),
                Subscription.current_period_end <= cutoff,
            )
            .values(status="expired", expired_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        count = result.rowcount or 0
        if count:
            subscription_transitions_total.labels(kind="merchant", status="expired").inc(count)
        return count

    # ------------------------------------------------------------------
    # Notification claims
    # ------------------------------------------------------------------

    def _claim(self, subscription_id: str, column, now: datetime) -> bool:
        """Set the watermark if still empty. Only the sweep that flips it sends."""
        result = self.db.execute(
            update(Subscription)
            .where(Subscription.id == subscription_id, column.is_(None))
            .values({column.key: now})
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return (result.rowcount or 0) == 1

    def _release(self, subscription_id: str, column) -> None:
        """Give the claim back so the next sweep retries."""
        self.db.execute(
            update(Subscription)
            .where(Subscription.id == subscription_id)
            .values({column.key: None})
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

    def expiring_candidates(self, now: datetime) -> list[Subscription]:
        horizon = now + timedelta(days=self.reminder_days)
        return (
            self.db.query(Subscription)
            .filter(
                Subscription.status == "active",
                Subscription.current_period_end >= now,
                Subscription.current_period_end <= horizon,
                Subscription.renewal_reminder_sent_at.is_(None),
            )
            .order_by(Subscription.current_period_end)
            .all()
        )

    def recently_expired_candidates(self, now: datetime) -> list[Subscription]:
        since = now - timedelta(days=self.notice_window_days)
        return (
            self.db.query(Subscription)
            .filter(
                Subscription.status == "expired",
                Subscription.expired_at >= since,
                Subscription.expiry_notice_sent_at.is_(None),
            )
            .all()
        )

    def _lookups(self, subs: list[Subscription]) -> tuple[dict[str, Product], dict[str, User]]:
        product_ids = {s.product_id for s in subs}
        merchant_ids = {s.merchant_id for s in subs}
        products = {p.id: p for p in self.db.query(Product).filter(Product.id.in_(product_ids)).all()} if product_ids else {}
        merchants = {u.id: u for u in self.db.query(User).filter(User.id.in_(merchant_ids)).all()} if merchant_ids else {}
        return products, merchants

    def _notify(
        self,
        sub: Subscription,
        merchant: User | None,
        event: str,
        customer_content,
        merchant_content,
    ) -> tuple[bool, list[str]]:
        notifications = [
            Notification(
                recipient_type="customer",
                event=event,
                content=customer_content,
                email=sub.customer_email,
                phone=sub.customer_phone,
            )
        ]
        if merchant is not None:
            notifications.append(
                Notification(
                    recipient_type="merchant",
                    event=event,
                    content=merchant_content,
                    email=merchant.email,
                    phone=merchant.phone,
                )
            )
        delivered = False
        errors: list[str] = []
        for notification in notifications:
            outcome = self.dispatcher.dispatch(notification)
            delivered = delivered or outcome.delivered
            errors.extend(outcome.errors)
        return delivered, errors

    def send_renewal_reminders(self, now: datetime, result: SweepResult) -> None:
        subs = self.expiring_candidates(now)
        if not subs:
            return
        products, merchants = self._lookups(subs)
        for sub in subs:
            sub_id = sub.id
            try:
                if not self._claim(sub_id, Subscription.renewal_reminder_sent_at, now):
                    continue
                product = products.get(sub.product_id)
                merchant = merchants.get(sub.merchant_id)
                product_name = product.name if product else "subscription"
                merchant_name = (merchant.business_name or merchant.full_name) if merchant else None
                days_left = days_until(sub.current_period_end, now)
                delivered, errors = self._notify(
                    sub,
                    merchant,
                    "renewal_reminder",
                    templates.renewal_reminder_customer(
                        product_name,
                        days_left,
                        build_renew_url(sub.product_id),
                        merchant_name or settings.brand_name,
                    ),
                    templates.renewal_reminder_merchant(product_name, sub.customer_phone, days_left),
                )
                result.errors.extend(errors)
                result.expiring_soon.append(
                    ExpiringSubscription(
                        subscription_id=sub_id,
                        product_id=sub.product_id,
                        product_name=product.name if product else None,
                        customer_phone=sub.customer_phone,
                        current_period_end=sub.current_period_end,
                        days_left=days_left,
                    )
                )
                if delivered:
                    result.expiring_notifications_sent += 1
                elif errors:
                    self._release(sub_id, Subscription.renewal_reminder_sent_at)
            except Exception as e:
                self.db.rollback()
                logger.exception("renewal_reminder_error", extra={"subscription_id": sub_id})
                result.errors.append(f"Reminder error for {sub_id}: {e}")

    def send_expiration_notices(self, now: datetime, result: SweepResult) -> None:
        subs = self.recently_expired_candidates(now)
        if not subs:
            return
        products, merchants = self._lookups(subs)
        for sub in subs:
            sub_id = sub.id
            try:
                if not self._claim(sub_id, Subscription.expiry_notice_sent_at, now):
                    continue
                product = products.get(sub.product_id)
                merchant = merchants.get(sub.merchant_id)
                product_name = product.name if product else "subscription"
                merchant_name = (merchant.business_name or merchant.full_name) if merchant else None
                delivered, errors = self._notify(
                    sub,
                    merchant,
                    "expiration_notice",
                    templates.expiration_notice_customer(
                        product_name,
                        build_renew_url(sub.product_id),
                        merchant_name or settings.brand_name,
                    ),
                    templates.expiration_notice_merchant(product_name, sub.customer_phone),
                )
                result.errors.extend(errors)
                if delivered:
                    result.expired_notifications_sent += 1
                elif errors:
                    self._release(sub_id, Subscription.expiry_notice_sent_at)
            except Exception as e:
                self.db.rollback()
                logger.exception("expiration_notice_error", extra={"subscription_id": sub_id})
                result.errors.append(f"Expiration notice error for {sub_id}: {e}")

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    def sweep(self, now: datetime | None = None, result: SweepResult | None = None) -> SweepResult:
        """One full pass. Every stage is isolated; failures land in result.errors.
        Pass `result` to keep partial counts if the pass is interrupted."""
        now = now or datetime.now(timezone.utc)
        started = time.monotonic()
        result = result if result is not None else SweepResult()

        try:
            result.marked_past_due = self.mark_past_due(now)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("sweep_past_due_error")
            result.transitions_failed = True
            result.errors.append(f"Status processing error (past_due): {e}")

        try:
            result.marked_expired = self.mark_expired(now)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("sweep_expired_error")
            result.transitions_failed = True
            result.errors.append(f"Status processing error (expired): {e}")

        try:
            self.send_renewal_reminders(now, result)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("sweep_expiring_fetch_error")
            result.errors.append(f"Expiring fetch error: {e}")

        try:
            self.send_expiration_notices(now, result)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("sweep_expired_fetch_error")
            result.errors.append(f"Expired fetch error: {e}")

        sweep_duration_seconds.labels(kind="merchant").observe(time.monotonic() - started)
        logger.info(
            "subscription_sweep_done",
            extra={
                "marked_past_due": result.marked_past_due,
                "marked_expired": result.marked_expired,
                "reminders_sent": result.expiring_notifications_sent,
                "notices_sent": result.expired_notifications_sent,
            },
        )
        return result


def run_subscription_sweep(
    db: Session,
    dispatcher: NotificationDispatcher | None = None,
    now: datetime | None = None,
    lock: SweepLock | None = None,
    result: SweepResult | None = None,
) -> SweepResult:
    """Sweep under the "merchant" lock; a run that finds the lock taken is skipped."""
    lock = lock or SweepLock("merchant")
    if not lock.acquire():
        logger.warning("subscription_sweep_skipped_locked")
        return SweepResult(skipped=True)
    own_dispatcher = dispatcher is None
    dispatcher = dispatcher or NotificationDispatcher.from_settings()
    try:
        return SubscriptionLifecycleService(db, dispatcher).sweep(now, result)
    finally:
        if own_dispatcher:
            dispatcher.close()
        lock.release()
