"""
Access decisions for gated content and creator communities.
Decision (decide_access) and I/O (ContentAccessService) are split; contract via AccessContext.
"""
from subgate.access.decision import build_login_redirect, decide_access, requires_entitlement
from subgate.access.models import (
    AccessContext,
    AccessDecision,
    PaywallPrice,
    PaywallProduct,
)
from subgate.access.service import ContentAccessService

__all__ = [
    "AccessContext",
    "AccessDecision",
    "ContentAccessService",
    "PaywallPrice",
    "PaywallProduct",
    "build_login_redirect",
    "decide_access",
    "requires_entitlement",
]
