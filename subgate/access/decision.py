"""
Decision only: decide_access(ctx) -> AccessDecision.
Pure function, no I/O. The service loads rows and fills AccessContext;
entitlement is looked up only when requires_entitlement(ctx) says so.
"""
from __future__ import annotations

from urllib.parse import quote

from subgate.access.config import get_login_path
from subgate.access.models import AccessContext, AccessDecision


def build_login_redirect(current_url: str) -> str:
    return f"{get_login_path()}?next={quote(current_url, safe='')}"


def requires_entitlement(ctx: AccessContext) -> bool:
    """True when the outcome hinges on the viewer's subscriptions."""
    return (
        ctx.exists
        and ctx.status == "published"
        and ctx.is_premium
        and ctx.has_viewer_identity
    )


def decide_access(ctx: AccessContext) -> AccessDecision:
    """
    Four-way decision for gated content or a community.

    - missing target -> denied/not_found; not published -> denied/not_published
    - free target -> granted/free
    - premium, no user id and no phone -> auth_required with a login redirect
    - premium, entitled -> granted/entitled
    - premium, lookup failed -> paywall/entitlement_unavailable (fail closed, no upsell)
    - otherwise (including entitlement never checked) -> paywall/not_entitled
    """
    if not ctx.exists:
        return AccessDecision(access="denied", reason="not_found")

    if ctx.status != "published":
        return AccessDecision(access="denied", reason="not_published")

    if not ctx.is_premium:
        return AccessDecision(access="granted", reason="free")

    if not ctx.has_viewer_identity:
        return AccessDecision(
            access="auth_required",
            reason="premium_no_auth",
            redirect_url=build_login_redirect(ctx.current_url),
        )

    if ctx.entitlement == "entitled":
        return AccessDecision(access="granted", reason="entitled")

    if ctx.entitlement == "unavailable":
        return AccessDecision(access="paywall", reason="entitlement_unavailable")

    return AccessDecision(access="paywall", reason="not_entitled", products=list(ctx.products))
