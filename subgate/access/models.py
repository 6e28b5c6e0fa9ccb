"""
DTO access: AccessContext (input of decide_access), AccessDecision, paywall products.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field


AccessKind = Literal["granted", "auth_required", "paywall", "denied"]
EntitlementState = Literal["not_checked", "entitled", "not_entitled", "unavailable"]


# ----- Upsell options shown on the paywall -----


class PaywallPrice(BaseModel):
    id: str
    name: str
    amount: Decimal
    currency: str
    billing_cycle: str

    model_config = {"frozen": True}


class PaywallProduct(BaseModel):
    """An active product with its cheapest active price (None if it has no active price)."""

    id: str
    name: str
    description: str | None = None
    merchant_id: str
    price: PaywallPrice | None = None

    model_config = {"frozen": True}


# ----- Input of decide_access (single contract instead of sprawling signatures) -----


class AccessContext(BaseModel):
    """Everything decide_access needs, already loaded from the database."""

    exists: bool
    status: str | None = None
    is_premium: bool = True
    user_id: str | None = None
    viewer_phone: str | None = None
    current_url: str = "/"
    # Filled by the service only when requires_entitlement(ctx) is True.
    entitlement: EntitlementState = "not_checked"
    products: list[PaywallProduct] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def has_viewer_identity(self) -> bool:
        return bool(self.user_id or self.viewer_phone)


# ----- Decision (pure logic, no I/O) -----


class AccessDecision(BaseModel):
    access: AccessKind
    reason: str = Field(
        ...,
        description="free / entitled / premium_no_auth / not_entitled / entitlement_unavailable / not_found / not_published",
    )
    redirect_url: str | None = Field(None, description="Login URL that returns to the page (auth_required only)")
    products: list[PaywallProduct] = Field(default_factory=list, description="Upsell options (paywall only)")

    model_config = {"frozen": True}

    @property
    def granted(self) -> bool:
        return self.access == "granted"
