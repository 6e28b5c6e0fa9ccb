"""Tests for PaymentService: checkout, customer submission, confirmation and its side effects."""
import json
from datetime import timedelta
from decimal import Decimal

import httpx
import pytest
from sqlalchemy.orm import sessionmaker

from conftest import FakeSender, make_merchant, make_payment, make_product, make_subscription
from subgate.lifecycle.state import as_utc
from subgate.models import AuditLog, Payment, PlatformPlan, PlatformSubscription, Subscription, Webhook, WebhookDelivery
from subgate.services.notifications.dispatcher import NotificationDispatcher
from subgate.services.payments.service import (
    PaymentNotFoundError,
    PaymentService,
    PaymentStateError,
    PriceNotFoundError,
    period_length,
)
from subgate.services.webhooks.service import WebhookService


class TestConfirmPayment:
    def test_first_payment_creates_subscription(self, db, now):
        merchant = make_merchant(db)
        product, price = make_product(db, merchant, billing_cycle="monthly")
        payment = make_payment(db, price, merchant, reference_code="SG-NEW001")
        sms = FakeSender("sms")

        confirmation = PaymentService(db, NotificationDispatcher(sms=sms)).confirm_payment(
            payment.id, "merchant-admin", now=now
        )

        assert confirmation.created is True
        sub = confirmation.subscription
        assert sub.status == "active"
        assert sub.product_id == product.id
        assert as_utc(sub.current_period_end) == now + timedelta(days=30)
        db.expire_all()
        assert db.get(Payment, payment.id).status == "confirmed"
        audit = db.query(AuditLog).one()
        assert audit.action == "payment_confirmed"
        assert audit.payload["subscription_created"] is True
        assert "SG-NEW001" in sms.sent[0][1]

    def test_early_renewal_stacks_on_running_period(self, db, now):
        merchant = make_merchant(db)
        product, price = make_product(db, merchant)
        existing = make_subscription(db, product, period_end=now + timedelta(days=5), renewal_reminder_sent_at=now)
        payment = make_payment(db, price, merchant)

        confirmation = PaymentService(db).confirm_payment(payment.id, None, now=now)

        assert confirmation.created is False
        db.expire_all()
        sub = db.get(Subscription, existing.id)
        assert as_utc(sub.current_period_end) == now + timedelta(days=35)
        assert sub.renewal_reminder_sent_at is None

    def test_expired_subscription_restarts_period(self, db, now):
        merchant = make_merchant(db)
        product, price = make_product(db, merchant, billing_cycle="weekly")
        existing = make_subscription(
            db,
            product,
            status="expired",
            period_end=now - timedelta(days=20),
            expired_at=now - timedelta(days=13),
            expiry_notice_sent_at=now - timedelta(days=13),
        )
        payment = make_payment(db, price, merchant, status="matched")

        PaymentService(db).confirm_payment(payment.id, "admin", now=now)

        db.expire_all()
        sub = db.get(Subscription, existing.id)
        assert sub.status == "active"
        assert as_utc(sub.current_period_start) == now
        assert as_utc(sub.current_period_end) == now + timedelta(days=7)
        assert sub.expired_at is None
        assert sub.expiry_notice_sent_at is None

    def test_unknown_payment(self, db):
        with pytest.raises(PaymentNotFoundError):
            PaymentService(db).confirm_payment("missing", None)

    @pytest.mark.parametrize("status", ["confirmed", "failed", "expired"])
    def test_non_confirmable_status(self, db, now, status):
        merchant = make_merchant(db)
        _, price = make_product(db, merchant)
        payment = make_payment(db, price, merchant, status=status)

        with pytest.raises(PaymentStateError):
            PaymentService(db).confirm_payment(payment.id, None, now=now)
        assert db.query(Subscription).count() == 0

    def test_notification_failure_does_not_undo_confirmation(self, db, now):
        merchant = make_merchant(db)
        _, price = make_product(db, merchant)
        payment = make_payment(db, price, merchant)

        confirmation = PaymentService(
            db, NotificationDispatcher(sms=FakeSender("sms", fail=True))
        ).confirm_payment(payment.id, None, now=now)

        assert confirmation.subscription.status == "active"
        db.expire_all()
        assert db.get(Payment, payment.id).status == "confirmed"


def test_unknown_billing_cycle_defaults_to_monthly():
    assert period_length("fortnightly") == timedelta(days=30)
    assert period_length("yearly") == timedelta(days=365)


class TestConcurrentConfirmation:
    def test_second_confirmation_of_same_payment_is_refused(self, db, engine, now):
        merchant = make_merchant(db)
        _, price = make_product(db, merchant, billing_cycle="monthly")
        payment = make_payment(db, price, merchant)

        other = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
        try:
            # This session has already seen the payment as pending.
            assert db.get(Payment, payment.id).status == "pending"

            PaymentService(other).confirm_payment(payment.id, "merchant", now=now)

            with pytest.raises(PaymentStateError):
                PaymentService(db).confirm_payment(payment.id, "admin", now=now)
        finally:
            other.close()

        db.expire_all()
        sub = db.query(Subscription).one()
        assert as_utc(sub.current_period_end) - as_utc(sub.current_period_start) == timedelta(days=30)
        assert db.get(Payment, payment.id).confirmed_by == "merchant"
        assert db.query(AuditLog).count() == 1


class TestCheckout:
    def test_creates_pending_payment(self, db, now):
        merchant = make_merchant(db)
        _, price = make_product(db, merchant, price_amount="25.00")

        payment, _, product = PaymentService(db).create_checkout(
            merchant.id, price.id, "+211900000001", customer_email="a@b.test", now=now
        )

        assert payment.status == "pending"
        assert payment.reference_code.isdigit() and len(payment.reference_code) == 10
        assert payment.amount == Decimal("25.00")
        assert as_utc(payment.expires_at) == now + timedelta(hours=24)
        assert product.merchant_id == merchant.id

    def test_reference_codes_are_unique(self, db, now):
        merchant = make_merchant(db)
        _, price = make_product(db, merchant)
        svc = PaymentService(db)

        codes = {svc.create_checkout(merchant.id, price.id, "+211900000001", now=now)[0].reference_code for _ in range(5)}
        assert len(codes) == 5

    def test_other_merchants_price_not_found(self, db, now):
        merchant = make_merchant(db)
        _, price = make_product(db, make_merchant(db))

        with pytest.raises(PriceNotFoundError):
            PaymentService(db).create_checkout(merchant.id, price.id, "+211900000001", now=now)
        assert db.query(Payment).count() == 0

    def test_inactive_price_not_found(self, db, now):
        merchant = make_merchant(db)
        _, price = make_product(db, merchant)
        price.is_active = False
        db.commit()

        with pytest.raises(PriceNotFoundError):
            PaymentService(db).create_checkout(merchant.id, price.id, "+211900000001", now=now)


class TestSubmitPayment:
    def test_pending_becomes_matched(self, db, now):
        merchant = make_merchant(db)
        _, price = make_product(db, merchant)
        make_payment(db, price, merchant, reference_code="4821730965")

        payment = PaymentService(db).submit_payment("4821730965", "MP240315.1200.A1", now=now)

        assert payment.status == "matched"
        assert payment.transaction_id == "MP240315.1200.A1"
        assert as_utc(payment.matched_at) == now

    def test_second_submit_is_refused(self, db, now):
        merchant = make_merchant(db)
        _, price = make_product(db, merchant)
        make_payment(db, price, merchant, reference_code="4821730965")
        svc = PaymentService(db)
        svc.submit_payment("4821730965", None, now=now)

        with pytest.raises(PaymentNotFoundError):
            svc.submit_payment("4821730965", "late", now=now)

    def test_expired_checkout_cannot_be_submitted(self, db, now):
        merchant = make_merchant(db)
        _, price = make_product(db, merchant)
        make_payment(db, price, merchant, reference_code="4821730965", expires_at=now - timedelta(minutes=5))

        with pytest.raises(PaymentNotFoundError):
            PaymentService(db).submit_payment("4821730965", None, now=now)
        db.expire_all()
        assert db.query(Payment).one().status == "pending"

    def test_unknown_reference(self, db, now):
        with pytest.raises(PaymentNotFoundError):
            PaymentService(db).submit_payment("0000000000", None, now=now)


class TestConfirmationWebhooks:
    @pytest.fixture
    def captured(self):
        return []

    @pytest.fixture
    def webhooks(self, db, captured):
        def handler(request: httpx.Request) -> httpx.Response:
            captured.append((request.headers["X-SubGate-Event"], json.loads(request.content)))
            return httpx.Response(200, text="ok")

        return WebhookService(db, client=httpx.Client(transport=httpx.MockTransport(handler)))

    def _plans(self, db, merchant, webhooks_enabled):
        free = PlatformPlan(slug="free", name="Free", limits={"webhooks": False})
        db.add(free)
        if webhooks_enabled:
            pro = PlatformPlan(slug="pro", name="Pro", limits={"webhooks": True})
            db.add(pro)
            db.flush()
            db.add(PlatformSubscription(user_id=merchant.id, plan_id=pro.id, status="active"))
        db.commit()

    def _hook(self, db, merchant):
        db.add(
            Webhook(
                merchant_id=merchant.id,
                url="https://merchant.test/hooks",
                secret="whsec",
                events=["payment.confirmed", "subscription.created", "subscription.renewed"],
            )
        )
        db.commit()

    def test_new_subscription_fires_confirmed_and_created(self, db, now, webhooks, captured):
        merchant = make_merchant(db)
        self._plans(db, merchant, webhooks_enabled=True)
        self._hook(db, merchant)
        _, price = make_product(db, merchant)
        payment = make_payment(db, price, merchant, reference_code="1234567890")

        PaymentService(db, webhooks=webhooks).confirm_payment(payment.id, "merchant", now=now)

        assert [event for event, _ in captured] == ["payment.confirmed", "subscription.created"]
        assert captured[0][1]["data"]["payment"]["reference_code"] == "1234567890"
        assert db.query(WebhookDelivery).count() == 2

    def test_renewal_fires_renewed(self, db, now, webhooks, captured):
        merchant = make_merchant(db)
        self._plans(db, merchant, webhooks_enabled=True)
        self._hook(db, merchant)
        product, price = make_product(db, merchant)
        make_subscription(db, product, period_end=now + timedelta(days=3))
        payment = make_payment(db, price, merchant)

        PaymentService(db, webhooks=webhooks).confirm_payment(payment.id, "merchant", now=now)

        assert captured[1][0] == "subscription.renewed"

    def test_plan_without_webhooks_sends_nothing(self, db, now, webhooks, captured):
        merchant = make_merchant(db)
        self._plans(db, merchant, webhooks_enabled=False)
        self._hook(db, merchant)
        _, price = make_product(db, merchant)
        payment = make_payment(db, price, merchant)

        confirmation = PaymentService(db, webhooks=webhooks).confirm_payment(payment.id, "merchant", now=now)

        assert confirmation.subscription.status == "active"
        assert captured == []
        assert db.query(WebhookDelivery).count() == 0
