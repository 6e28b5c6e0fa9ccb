"""
ContentAccessService: loads content/creators, resolves the viewer's phone,
looks up entitlement and records views; the verdict itself comes from
decide_access.

Entitlement lookups fail closed: a database error becomes
paywall/entitlement_unavailable, never granted.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from subgate.access.decision import decide_access, requires_entitlement
from subgate.access.models import (
    AccessContext,
    AccessDecision,
    EntitlementState,
    PaywallPrice,
    PaywallProduct,
)
from subgate.models.content import ContentItem, ContentView
from subgate.models.creator import Creator
from subgate.models.product import Price, Product
from subgate.models.subscription import Subscription
from subgate.models.user import User
from subgate.utils.metrics import access_decisions_total, entitlement_lookup_failures_total

logger = logging.getLogger(__name__)


class ContentAccessService:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_content(self, content_ref: str) -> ContentItem | None:
        """By id first, then by slug."""
        content = self.db.query(ContentItem).filter(ContentItem.id == content_ref).one_or_none()
        if content is not None:
            return content
        return self.db.query(ContentItem).filter(ContentItem.slug == content_ref).first()

    def get_creator(self, creator_ref: str) -> Creator | None:
        return (
            self.db.query(Creator)
            .filter(or_(Creator.id == creator_ref, Creator.username == creator_ref))
            .first()
        )

    def resolve_phone(self, user_id: str | None, viewer_phone: str | None) -> str | None:
        """A supplied phone always wins over the stored profile phone."""
        if viewer_phone:
            return viewer_phone
        if not user_id:
            return None
        user = self.db.query(User).filter(User.id == user_id).one_or_none()
        return user.phone if user is not None and user.phone else None

    def has_active_subscription(self, phone: str, product_ids: list[str], now: datetime) -> bool:
        if not phone or not product_ids:
            return False
        row = (
            self.db.query(Subscription.id)
            .filter(
                Subscription.customer_phone == phone,
                Subscription.product_id.in_(product_ids),
                Subscription.status == "active",
                Subscription.current_period_end >= now,
            )
            .first()
        )
        return row is not None

    def merchant_product_ids(self, merchant_id: str) -> list[str]:
        return [pid for (pid,) in self.db.query(Product.id).filter(Product.merchant_id == merchant_id).all()]

    def paywall_products(self, product_ids: list[str] | None = None, merchant_id: str | None = None) -> list[PaywallProduct]:
        """Active products (by id list or by merchant) with their cheapest active price."""
        query = self.db.query(Product).filter(Product.is_active.is_(True))
        if merchant_id is not None:
            query = query.filter(Product.merchant_id == merchant_id)
        else:
            if not product_ids:
                return []
            query = query.filter(Product.id.in_(product_ids))
        products = query.order_by(Product.created_at).all()
        if not products:
            return []

        prices = (
            self.db.query(Price)
            .filter(Price.product_id.in_([p.id for p in products]), Price.is_active.is_(True))
            .order_by(Price.amount.asc())
            .all()
        )
        cheapest: dict[str, Price] = {}
        for price in prices:
            cheapest.setdefault(price.product_id, price)

        result = []
        for product in products:
            price = cheapest.get(product.id)
            result.append(
                PaywallProduct(
                    id=product.id,
                    name=product.name,
                    description=product.description,
                    merchant_id=product.merchant_id,
                    price=PaywallPrice(
                        id=price.id,
                        name=price.name,
                        amount=price.amount,
                        currency=price.currency,
                        billing_cycle=price.billing_cycle,
                    ) if price is not None else None,
                )
            )
        return result

    # ------------------------------------------------------------------
    # Entitlement (fail closed)
    # ------------------------------------------------------------------

    def _entitlement(
        self,
        user_id: str | None,
        viewer_phone: str | None,
        product_ids: list[str],
        now: datetime,
    ) -> EntitlementState:
        try:
            phone = self.resolve_phone(user_id, viewer_phone)
            if self.has_active_subscription(phone, product_ids, now):
                return "entitled"
            return "not_entitled"
        except SQLAlchemyError:
            self.db.rollback()
            entitlement_lookup_failures_total.inc()
            logger.exception("entitlement_lookup_failed", extra={"viewer_user_id": user_id})
            return "unavailable"

    def _paywall_products_safe(self, **kwargs) -> list[PaywallProduct]:
        try:
            return self.paywall_products(**kwargs)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("paywall_products_lookup_failed")
            return []

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def record_view(self, content: ContentItem, user_id: str | None, viewer_phone: str | None) -> None:
        """Append to the view log and bump view_count. Best-effort."""
        try:
            self.db.add(
                ContentView(
                    content_id=content.id,
                    creator_id=content.creator_id,
                    viewer_user_id=user_id,
                    viewer_phone=viewer_phone,
                    is_premium=not content.is_free,
                )
            )
            self.db.execute(
                update(ContentItem)
                .where(ContentItem.id == content.id)
                .values(view_count=ContentItem.view_count + 1)
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("content_view_record_failed", extra={"content_id": content.id})

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def decide_content(
        self,
        content_ref: str,
        user_id: str | None = None,
        viewer_phone: str | None = None,
        current_url: str = "/",
        now: datetime | None = None,
    ) -> AccessDecision:
        now = now or datetime.now(timezone.utc)
        content = self.get_content(content_ref)
        ctx = AccessContext(
            exists=content is not None,
            status=content.status if content is not None else None,
            is_premium=not content.is_free if content is not None else True,
            user_id=user_id,
            viewer_phone=viewer_phone,
            current_url=current_url,
        )

        if requires_entitlement(ctx):
            product_ids = list(content.product_ids or [])
            entitlement = self._entitlement(user_id, viewer_phone, product_ids, now)
            products = []
            if entitlement == "not_entitled":
                products = self._paywall_products_safe(product_ids=product_ids)
            ctx = ctx.model_copy(update={"entitlement": entitlement, "products": products})

        decision = decide_access(ctx)
        self._observe(decision, content_id=content.id if content is not None else content_ref)

        if decision.granted:
            self.record_view(content, user_id, viewer_phone)
        return decision

    def decide_community(
        self,
        creator_ref: str,
        user_id: str | None = None,
        viewer_phone: str | None = None,
        current_url: str = "/",
        now: datetime | None = None,
    ) -> AccessDecision:
        now = now or datetime.now(timezone.utc)
        creator = self.get_creator(creator_ref)
        ctx = AccessContext(
            exists=creator is not None,
            status="published" if creator is not None else None,
            is_premium=creator.community_premium if creator is not None else True,
            user_id=user_id,
            viewer_phone=viewer_phone,
            current_url=current_url,
        )

        if requires_entitlement(ctx):
            try:
                product_ids = self.merchant_product_ids(creator.user_id)
            except SQLAlchemyError:
                self.db.rollback()
                entitlement_lookup_failures_total.inc()
                logger.exception("community_products_lookup_failed", extra={"creator_id": creator.id})
                entitlement, products = "unavailable", []
            else:
                entitlement = self._entitlement(user_id, viewer_phone, product_ids, now)
                products = []
                if entitlement == "not_entitled":
                    products = self._paywall_products_safe(merchant_id=creator.user_id)
            ctx = ctx.model_copy(update={"entitlement": entitlement, "products": products})

        decision = decide_access(ctx)
        self._observe(decision, creator_id=creator.id if creator is not None else creator_ref)
        return decision

    def _observe(self, decision: AccessDecision, **extra) -> None:
        access_decisions_total.labels(access=decision.access, reason=decision.reason).inc()
        logger.info(
            "access_decision",
            extra={"access": decision.access, "reason": decision.reason, **extra},
        )
