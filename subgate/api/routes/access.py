"""
Access decisions for server-rendered content/community pages, plus the
merchant-facing v1 access check (API key auth).
"""
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from subgate.access.models import AccessDecision
from subgate.access.service import ContentAccessService
from subgate.api.deps import get_api_merchant_id, get_viewer_id
from subgate.api.errors import ApiError
from subgate.db.session import get_db
from subgate.lifecycle.config import get_grace_period_days
from subgate.lifecycle.state import as_utc, days_until, is_entitling
from subgate.models.product import Product
from subgate.models.subscription import Subscription


router = APIRouter(tags=["access"])


@router.get("/api/content/{content_ref}/access", response_model=AccessDecision)
def content_access(
    content_ref: str,
    phone: str | None = Query(None, description="Viewer phone; takes precedence over the profile phone"),
    current_url: str = Query("/", description="Page URL to return to after login"),
    viewer_id: str | None = Depends(get_viewer_id),
    db: Session = Depends(get_db),
) -> AccessDecision:
    return ContentAccessService(db).decide_content(
        content_ref,
        user_id=viewer_id,
        viewer_phone=phone or None,
        current_url=current_url,
    )


@router.get("/api/communities/{creator_ref}/access", response_model=AccessDecision)
def community_access(
    creator_ref: str,
    phone: str | None = Query(None),
    current_url: str = Query("/"),
    viewer_id: str | None = Depends(get_viewer_id),
    db: Session = Depends(get_db),
) -> AccessDecision:
    return ContentAccessService(db).decide_community(
        creator_ref,
        user_id=viewer_id,
        viewer_phone=phone or None,
        current_url=current_url,
    )


class AccessCheckRequest(BaseModel):
    product_id: str
    customer_phone: str


@router.post("/api/v1/access/check")
def v1_access_check(
    body: AccessCheckRequest,
    merchant_id: str = Depends(get_api_merchant_id),
    db: Session = Depends(get_db),
):
    """Does this customer currently have access to one of the merchant's products?"""
    product = db.query(Product).filter(Product.id == body.product_id).one_or_none()
    if product is None or product.merchant_id != merchant_id:
        raise ApiError("Product not found", 404)

    sub = (
        db.query(Subscription)
        .filter(
            Subscription.product_id == body.product_id,
            Subscription.customer_phone == body.customer_phone,
        )
        .order_by(Subscription.current_period_end.desc())
        .first()
    )
    if sub is None:
        return {
            "success": True,
            "has_access": False,
            "subscription": None,
            "message": "No subscription found for this customer",
        }

    now = datetime.now(timezone.utc)
    period_end = as_utc(sub.current_period_end)
    return {
        "success": True,
        "has_access": is_entitling(sub.status, period_end, now),
        "subscription": {
            "id": sub.id,
            "status": sub.status,
            "current_period_end": period_end.isoformat(),
            "grace_period_end": (period_end + timedelta(days=get_grace_period_days())).isoformat(),
            "days_remaining": days_until(period_end, now),
            "is_renewable": sub.status != "cancelled",
            "product_type": product.product_type,
        },
    }
