"""
PaymentService: checkout and manual confirmation of off-platform payments.

Responsibilities:
- Checkout: a pending Payment with a unique reference code and an expiry
- Customer submission: pending -> matched, with the transfer's transaction id
- Confirmation: pending/matched -> confirmed, stamped with who confirmed it
- Creating or renewing the customer's subscription for the paid product
  (the only way a subscription gains a new period)
- Audit entry, then best-effort customer message and merchant webhooks
"""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import update
from sqlalchemy.orm import Session

from subgate.core.config import settings
from subgate.lifecycle.platform import PlatformBillingService
from subgate.lifecycle.state import as_utc
from subgate.models.payment import Payment
from subgate.models.product import Price, Product
from subgate.models.subscription import Subscription
from subgate.models.user import User
from subgate.services.audit.service import AuditService
from subgate.services.notifications import templates
from subgate.services.notifications.dispatcher import Notification, NotificationDispatcher
from subgate.services.webhooks.service import (
    PAYMENT_CONFIRMED,
    SUBSCRIPTION_CREATED,
    SUBSCRIPTION_RENEWED,
    WebhookService,
)

logger = logging.getLogger(__name__)

BILLING_CYCLE_DAYS = {
    "weekly": 7,
    "monthly": 30,
    "quarterly": 90,
    "yearly": 365,
    "one_time": 36500,  # lifetime access
}
CONFIRMABLE_STATUSES = ("pending", "matched")
REFERENCE_CODE_DIGITS = 10
REFERENCE_CODE_ATTEMPTS = 5


class PaymentNotFoundError(Exception):
    pass


class PaymentStateError(Exception):
    pass


class PriceNotFoundError(Exception):
    pass


@dataclass
class Confirmation:
    payment: Payment
    subscription: Subscription
    created: bool


def period_length(billing_cycle: str) -> timedelta:
    return timedelta(days=BILLING_CYCLE_DAYS.get(billing_cycle, BILLING_CYCLE_DAYS["monthly"]))


def generate_reference_code() -> str:
    """Digits only, so customers can type it into a mobile money comment."""
    return "".join(secrets.choice("0123456789") for _ in range(REFERENCE_CODE_DIGITS))


class PaymentService:
    def __init__(
        self,
        db: Session,
        dispatcher: NotificationDispatcher | None = None,
        webhooks: WebhookService | None = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.webhooks = webhooks

    def get_payment(self, payment_id: str) -> Payment | None:
        return self.db.query(Payment).filter(Payment.id == payment_id).one_or_none()

    def latest_subscription(self, merchant_id: str, customer_phone: str, product_id: str) -> Subscription | None:
        return (
            self.db.query(Subscription)
            .filter(
                Subscription.merchant_id == merchant_id,
                Subscription.customer_phone == customer_phone,
                Subscription.product_id == product_id,
                Subscription.status != "cancelled",
            )
            .order_by(Subscription.current_period_end.desc())
            .first()
        )

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    def _unused_reference_code(self) -> str:
        for _ in range(REFERENCE_CODE_ATTEMPTS):
            code = generate_reference_code()
            if self.db.query(Payment.id).filter(Payment.reference_code == code).first() is None:
                return code
        raise RuntimeError("Could not allocate a unique reference code")

    def create_checkout(
        self,
        merchant_id: str,
        price_id: str,
        customer_phone: str,
        customer_email: str | None = None,
        payment_method: str = "mobile_money",
        now: datetime | None = None,
    ) -> tuple[Payment, Price, Product]:
        """Pending payment for one of the merchant's active prices."""
        now = now or datetime.now(timezone.utc)
        row = (
            self.db.query(Price, Product)
            .join(Product, Product.id == Price.product_id)
            .filter(Price.id == price_id, Price.is_active.is_(True))
            .one_or_none()
        )
        if row is None or row[1].merchant_id != merchant_id:
            raise PriceNotFoundError(price_id)
        price, product = row

        payment = Payment(
            merchant_id=merchant_id,
            price_id=price.id,
            customer_phone=customer_phone,
            customer_email=customer_email,
            reference_code=self._unused_reference_code(),
            amount=price.amount,
            currency=price.currency,
            payment_method=payment_method,
            status="pending",
            expires_at=now + timedelta(hours=settings.checkout_expiry_hours),
        )
        self.db.add(payment)
        self.db.commit()
        logger.info(
            "checkout_created",
            extra={"payment_id": payment.id, "merchant_id": merchant_id, "reference_code": payment.reference_code},
        )
        return payment, price, product

    def submit_payment(self, reference_code: str, transaction_id: str | None, now: datetime | None = None) -> Payment:
        """Customer reports the transfer: pending -> matched. Only unexpired pending payments move."""
        now = now or datetime.now(timezone.utc)
        result = self.db.execute(
            update(Payment)
            .where(
                Payment.reference_code == reference_code,
                Payment.status == "pending",
                Payment.expires_at > now,
            )
            .values(status="matched", matched_at=now, transaction_id=transaction_id or None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if (result.rowcount or 0) != 1:
            self.db.rollback()
            raise PaymentNotFoundError(reference_code)
        self.db.commit()
        payment = (
            self.db.query(Payment)
            .filter(Payment.reference_code == reference_code)
            .populate_existing()
            .one()
        )
        logger.info("payment_matched", extra={"payment_id": payment.id, "merchant_id": payment.merchant_id})
        return payment

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    def confirm_payment(self, payment_id: str, confirmed_by: str | None, now: datetime | None = None) -> Confirmation:
        now = now or datetime.now(timezone.utc)
        payment = self.get_payment(payment_id)
        if payment is None:
            raise PaymentNotFoundError(payment_id)

        # Claim the transition in one conditional UPDATE; a concurrent
        # confirmation of the same payment matches zero rows here.
        claimed = self.db.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status.in_(CONFIRMABLE_STATUSES))
            .values(status="confirmed", confirmed_at=now, confirmed_by=confirmed_by, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if (claimed.rowcount or 0) != 1:
            self.db.rollback()
            self.db.refresh(payment)
            raise PaymentStateError(f"Payment is {payment.status}")
        self.db.refresh(payment)

        price = self.db.query(Price).filter(Price.id == payment.price_id).one()
        product = self.db.query(Product).filter(Product.id == price.product_id).one()

        length = period_length(price.billing_cycle)
        sub = self.latest_subscription(payment.merchant_id, payment.customer_phone, product.id)
        created = sub is None
        if sub is None:
            sub = Subscription(
                merchant_id=payment.merchant_id,
                product_id=product.id,
                customer_phone=payment.customer_phone,
                current_period_start=now,
                current_period_end=now + length,
            )
        elif sub.status == "active" and as_utc(sub.current_period_end) > now:
            # Early renewal: stack the new period on the running one.
            sub.current_period_end = as_utc(sub.current_period_end) + length
        else:
            sub.current_period_start = now
            sub.current_period_end = now + length

        sub.status = "active"
        sub.price_id = price.id
        sub.payment_id = payment.id
        sub.customer_email = payment.customer_email or sub.customer_email
        sub.expired_at = None
        sub.renewal_reminder_sent_at = None
        sub.expiry_notice_sent_at = None
        self.db.add(sub)
        self.db.flush()

        AuditService(self.db).record(
            actor_type="merchant",
            actor_id=confirmed_by,
            action="payment_confirmed",
            entity_type="payment",
            entity_id=payment.id,
            payload={
                "reference_code": payment.reference_code,
                "subscription_id": sub.id,
                "subscription_created": created,
                "current_period_end": as_utc(sub.current_period_end).isoformat(),
            },
            commit=False,
        )
        self.db.commit()
        logger.info(
            "payment_confirmed",
            extra={"payment_id": payment.id, "subscription_id": sub.id, "merchant_id": payment.merchant_id},
        )

        self._notify_customer(payment, product)
        self._fire_webhooks(payment, price, product, sub, created)
        return Confirmation(payment=payment, subscription=sub, created=created)

    def _notify_customer(self, payment: Payment, product: Product) -> None:
        if self.dispatcher is None:
            return
        merchant = self.db.query(User).filter(User.id == payment.merchant_id).one_or_none()
        merchant_name = (merchant.business_name or merchant.full_name) if merchant else None
        outcome = self.dispatcher.dispatch(
            Notification(
                recipient_type="customer",
                event="payment_confirmed",
                content=templates.payment_confirmed_customer(
                    product.name,
                    f"{payment.currency} {payment.amount}",
                    payment.reference_code,
                    merchant_name or settings.brand_name,
                ),
                email=payment.customer_email,
                phone=payment.customer_phone,
            )
        )
        if outcome.errors:
            logger.warning(
                "payment_confirmation_notify_failed",
                extra={"payment_id": payment.id, "error": "; ".join(outcome.errors)},
            )

    def _fire_webhooks(self, payment: Payment, price: Price, product: Product, sub: Subscription, created: bool) -> None:
        """Best effort: merchants on a plan with webhooks get the confirmation and subscription events."""
        if self.webhooks is None:
            return
        try:
            if not PlatformBillingService(self.db).can_use_feature(payment.merchant_id, "webhooks"):
                return
            product_data = {"id": product.id, "name": product.name}
            self.webhooks.deliver(
                payment.merchant_id,
                PAYMENT_CONFIRMED,
                {
                    "payment": {
                        "id": payment.id,
                        "reference_code": payment.reference_code,
                        "amount": str(payment.amount),
                        "currency": payment.currency,
                        "status": payment.status,
                        "customer_phone": payment.customer_phone,
                        "customer_email": payment.customer_email,
                        "confirmed_at": as_utc(payment.confirmed_at).isoformat(),
                    },
                    "product": product_data,
                    "price": {"id": price.id, "name": price.name, "billing_cycle": price.billing_cycle},
                },
            )
            self.webhooks.deliver(
                payment.merchant_id,
                SUBSCRIPTION_CREATED if created else SUBSCRIPTION_RENEWED,
                {
                    "subscription": {
                        "id": sub.id,
                        "status": sub.status,
                        "customer_phone": sub.customer_phone,
                        "customer_email": sub.customer_email,
                        "current_period_start": as_utc(sub.current_period_start).isoformat(),
                        "current_period_end": as_utc(sub.current_period_end).isoformat(),
                    },
                    "product": product_data,
                },
            )
        except Exception:
            self.db.rollback()
            logger.exception("payment_webhooks_error", extra={"payment_id": payment.id})
