"""Tests for SubscriptionLifecycleService: transitions, notices, claims, isolation."""
from datetime import timedelta
from unittest.mock import MagicMock

from conftest import FakeSender, make_merchant, make_product, make_subscription
from subgate.lifecycle.service import SubscriptionLifecycleService, run_subscription_sweep
from subgate.models import Subscription
from subgate.services.notifications.dispatcher import NotificationDispatcher


def _dispatcher(sms=None, whatsapp=None):
    return NotificationDispatcher(
        email=None,
        sms=sms or FakeSender("sms"),
        whatsapp=whatsapp or FakeSender("whatsapp"),
    )


def _svc(db, dispatcher):
    return SubscriptionLifecycleService(db, dispatcher, grace_days=7, reminder_days=7, notice_window_days=1)


def _reload(db, sub_id) -> Subscription:
    db.expire_all()
    return db.get(Subscription, sub_id)


class TestTransitions:
    def test_ended_yesterday_becomes_past_due(self, db, now):
        merchant = make_merchant(db)
        product, _ = make_product(db, merchant)
        sub = make_subscription(db, product, period_end=now - timedelta(days=1))

        result = _svc(db, _dispatcher()).sweep(now)

        assert result.marked_past_due == 1
        assert result.marked_expired == 0
        assert result.errors == []
        assert _reload(db, sub.id).status == "past_due"

    def test_past_due_beyond_grace_expires_and_notifies(self, db, now):
        merchant = make_merchant(db)
        product, _ = make_product(db, merchant, name="Gold")
        sub = make_subscription(db, product, status="past_due", period_end=now - timedelta(days=10))
        sms = FakeSender("sms")
        whatsapp = FakeSender("whatsapp")

        result = _svc(db, _dispatcher(sms, whatsapp)).sweep(now)

        assert result.marked_expired == 1
        assert result.expired_notifications_sent == 1
        row = _reload(db, sub.id)
        assert row.status == "expired"
        assert row.expired_at is not None
        assert row.expiry_notice_sent_at is not None
        recipients = [r for r, _ in sms.sent]
        assert recipients == ["+211900000001", "+211911000000"]
        assert "has expired" in sms.sent[0][1]
        assert len(whatsapp.sent) == 2

    def test_active_exactly_at_grace_edge_expires(self, db, now):
        merchant = make_merchant(db)
        product, _ = make_product(db, merchant)
        sub = make_subscription(db, product, period_end=now - timedelta(days=7))

        result = _svc(db, _dispatcher()).sweep(now)

        assert result.marked_past_due == 0
        assert result.marked_expired == 1
        assert _reload(db, sub.id).status == "expired"

    def test_cancelled_and_running_rows_untouched(self, db, now):
        merchant = make_merchant(db)
        product, _ = make_product(db, merchant)
        cancelled = make_subscription(db, product, status="cancelled", period_end=now - timedelta(days=30))
        running = make_subscription(db, product, phone="+211900000002", period_end=now + timedelta(days=20))

        result = _svc(db, _dispatcher()).sweep(now)

        assert result.processed == 0
        assert _reload(db, cancelled.id).status == "cancelled"
        assert _reload(db, running.id).status == "active"

    def test_second_sweep_is_a_no_op(self, db, now):
        merchant = make_merchant(db)
        product, _ = make_product(db, merchant)
        make_subscription(db, product, period_end=now - timedelta(days=1))
        make_subscription(db, product, phone="+211900000002", status="past_due", period_end=now - timedelta(days=10))
        make_subscription(db, product, phone="+211900000003", period_end=now + timedelta(days=2))
        sms = FakeSender("sms")
        svc = _svc(db, _dispatcher(sms))

        first = svc.sweep(now)
        sent_after_first = len(sms.sent)
        second = svc.sweep(now + timedelta(minutes=5))

        assert first.processed == 4
        assert second.processed == 0
        assert second.expiring_soon == []
        assert len(sms.sent) == sent_after_first


class TestRenewalReminders:
    def test_reminder_sent_once_per_period(self, db, now):
        merchant = make_merchant(db)
        product, _ = make_product(db, merchant, name="Gold")
        sub = make_subscription(db, product, period_end=now + timedelta(days=3))
        sms = FakeSender("sms")
        svc = _svc(db, _dispatcher(sms))

        result = svc.sweep(now)

        assert result.expiring_notifications_sent == 1
        assert len(result.expiring_soon) == 1
        entry = result.expiring_soon[0]
        assert entry.subscription_id == sub.id
        assert entry.days_left == 3
        assert entry.product_name == "Gold"
        assert "expires in 3 days" in sms.sent[0][1]
        assert _reload(db, sub.id).renewal_reminder_sent_at is not None

        again = svc.sweep(now + timedelta(days=1))
        assert again.expiring_notifications_sent == 0
        assert len(sms.sent) == 2  # customer + merchant from the first sweep only

    def test_outside_window_not_reminded(self, db, now):
        merchant = make_merchant(db)
        product, _ = make_product(db, merchant)
        make_subscription(db, product, period_end=now + timedelta(days=8))

        result = _svc(db, _dispatcher()).sweep(now)
        assert result.expiring_soon == []

    def test_one_channel_failing_does_not_block_others(self, db, now):
        merchant = make_merchant(db)
        product, _ = make_product(db, merchant)
        sub = make_subscription(db, product, period_end=now + timedelta(days=2))
        whatsapp = FakeSender("whatsapp")

        result = _svc(db, _dispatcher(sms=FakeSender("sms", fail=True), whatsapp=whatsapp)).sweep(now)

        assert result.expiring_notifications_sent == 1
        assert len(whatsapp.sent) == 2
        assert "sms:+211900000001: sms down" in result.errors
        assert _reload(db, sub.id).renewal_reminder_sent_at is not None

    def test_sender_exception_is_isolated(self, db, now):
        merchant = make_merchant(db)
        product, _ = make_product(db, merchant)
        make_subscription(db, product, period_end=now + timedelta(days=2))
        whatsapp = FakeSender("whatsapp")

        result = _svc(db, _dispatcher(sms=FakeSender("sms", raises=RuntimeError("boom")), whatsapp=whatsapp)).sweep(now)

        assert result.expiring_notifications_sent == 1
        assert any(e.startswith("sms:") and "boom" in e for e in result.errors)

    def test_claim_released_when_nothing_delivered(self, db, now):
        merchant = make_merchant(db)
        product, _ = make_product(db, merchant)
        sub = make_subscription(db, product, period_end=now + timedelta(days=2))
        failing = _dispatcher(sms=FakeSender("sms", fail=True), whatsapp=FakeSender("whatsapp", fail=True))

        result = _svc(db, failing).sweep(now)

        assert result.expiring_notifications_sent == 0
        assert len(result.errors) == 4
        assert _reload(db, sub.id).renewal_reminder_sent_at is None

        sms = FakeSender("sms")
        retry = _svc(db, _dispatcher(sms)).sweep(now + timedelta(hours=1))
        assert retry.expiring_notifications_sent == 1

    def test_no_channel_configured_keeps_claim(self, db, now):
        merchant = make_merchant(db)
        product, _ = make_product(db, merchant)
        sub = make_subscription(db, product, period_end=now + timedelta(days=2))
        silent = _dispatcher(sms=FakeSender("sms", enabled=False), whatsapp=FakeSender("whatsapp", enabled=False))

        result = _svc(db, silent).sweep(now)

        assert result.expiring_notifications_sent == 0
        assert result.errors == []
        assert _reload(db, sub.id).renewal_reminder_sent_at is not None


class TestExpirationNotices:
    def test_old_expiry_not_notified(self, db, now):
        merchant = make_merchant(db)
        product, _ = make_product(db, merchant)
        make_subscription(
            db, product, status="expired", period_end=now - timedelta(days=40), expired_at=now - timedelta(days=30)
        )
        sms = FakeSender("sms")

        result = _svc(db, _dispatcher(sms)).sweep(now)

        assert result.expired_notifications_sent == 0
        assert sms.sent == []


class TestRunSubscriptionSweep:
    def test_skipped_when_lock_held(self, db, now):
        lock = MagicMock()
        lock.acquire.return_value = False
        dispatcher = MagicMock()

        result = run_subscription_sweep(db, dispatcher, now=now, lock=lock)

        assert result.skipped is True
        assert result.processed == 0
        dispatcher.dispatch.assert_not_called()
        lock.release.assert_not_called()

    def test_lock_released_after_sweep(self, db, now):
        lock = MagicMock()
        lock.acquire.return_value = True
        merchant = make_merchant(db)
        product, _ = make_product(db, merchant)
        make_subscription(db, product, period_end=now - timedelta(days=1))

        result = run_subscription_sweep(db, _dispatcher(), now=now, lock=lock)

        assert result.marked_past_due == 1
        lock.release.assert_called_once()

    def test_result_serialises_camel_case(self):
        from subgate.lifecycle.models import SweepResult

        dumped = SweepResult(marked_past_due=2, marked_expired=1).model_dump(mode="json", by_alias=True)
        assert dumped["markedPastDue"] == 2
        assert dumped["processed"] == 3
        assert dumped["statusUpdates"] == {"expired": 1, "past_due": 2}
