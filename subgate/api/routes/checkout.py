"""
Merchant API checkout: starts a manual payment the customer completes off-platform.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from subgate.api.deps import get_api_merchant_id
from subgate.api.errors import ApiError
from subgate.core.config import settings
from subgate.db.session import get_db
from subgate.lifecycle.state import as_utc
from subgate.services.payments.service import PaymentService, PriceNotFoundError


router = APIRouter(prefix="/api/v1/checkout", tags=["checkout"])


class CheckoutRequest(BaseModel):
    price_id: str
    customer_phone: str
    customer_email: str | None = None
    payment_method: str = "mobile_money"


@router.post("/create")
def create_checkout(
    body: CheckoutRequest,
    merchant_id: str = Depends(get_api_merchant_id),
    db: Session = Depends(get_db),
):
    try:
        payment, price, product = PaymentService(db).create_checkout(
            merchant_id,
            body.price_id,
            body.customer_phone,
            customer_email=body.customer_email,
            payment_method=body.payment_method,
        )
    except PriceNotFoundError:
        raise ApiError("Price not found", 404)

    return {
        "success": True,
        "checkout_session": {
            "id": payment.id,
            "url": f"{settings.app_url}/checkout/{product.id}?payment={payment.id}",
            "reference_code": payment.reference_code,
            "amount": str(payment.amount),
            "currency": payment.currency,
            "expires_at": as_utc(payment.expires_at).isoformat(),
            "product": {"id": product.id, "name": product.name, "type": product.product_type},
            "price": {"id": price.id, "name": price.name, "billing_cycle": price.billing_cycle},
        },
    }
