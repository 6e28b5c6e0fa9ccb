from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from subgate.api.deps import get_current_user, get_dispatcher, get_webhooks
from subgate.db.session import get_db
from subgate.lifecycle.state import as_utc
from subgate.models.user import User
from subgate.services.notifications.dispatcher import NotificationDispatcher
from subgate.services.payments.service import PaymentNotFoundError, PaymentService, PaymentStateError
from subgate.services.webhooks.service import WebhookService


router = APIRouter(prefix="/api/payments", tags=["payments"])


class ConfirmPaymentRequest(BaseModel):
    payment_id: str


class SubmitPaymentRequest(BaseModel):
    reference_code: str
    transaction_id: str | None = None


@router.post("/submit")
def submit_payment(body: SubmitPaymentRequest, db: Session = Depends(get_db)):
    """Customer says they sent the money; the payment waits for the merchant as `matched`."""
    try:
        payment = PaymentService(db).submit_payment(body.reference_code, body.transaction_id)
    except PaymentNotFoundError:
        raise HTTPException(status_code=404, detail="Payment not found or already processed")
    return {
        "success": True,
        "payment": {
            "id": payment.id,
            "reference_code": payment.reference_code,
            "status": payment.status,
            "matched_at": as_utc(payment.matched_at).isoformat(),
        },
    }


@router.post("/confirm")
def confirm_payment(
    body: ConfirmPaymentRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    webhooks: WebhookService = Depends(get_webhooks),
):
    """The payment's merchant (or an admin) confirms a verified payment; grants or renews access."""
    svc = PaymentService(db, dispatcher, webhooks)
    payment = svc.get_payment(body.payment_id)
    if payment is None:
        raise HTTPException(status_code=404, detail="Payment not found")
    if user.role != "admin" and user.id != payment.merchant_id:
        raise HTTPException(status_code=403, detail="Not allowed to confirm this payment")

    try:
        confirmation = svc.confirm_payment(payment.id, user.id)
    except PaymentNotFoundError:
        raise HTTPException(status_code=404, detail="Payment not found")
    except PaymentStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    sub = confirmation.subscription
    return {
        "success": True,
        "message": "Payment confirmed",
        "subscription": {
            "id": sub.id,
            "status": sub.status,
            "created": confirmation.created,
            "current_period_start": sub.current_period_start.isoformat(),
            "current_period_end": sub.current_period_end.isoformat(),
        },
    }
