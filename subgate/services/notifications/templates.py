"""
Message templates for lifecycle and payment notifications.
Plain text goes to SMS/WhatsApp, subject + html to email.
"""
from __future__ import annotations

from html import escape

from subgate.services.notifications.base import MessageContent


def _html(title: str, paragraphs: list[str], link: tuple[str, str] | None = None) -> str:
    parts = [f"<h2>{escape(title)}</h2>"]
    parts.extend(f"<p>{escape(p)}</p>" for p in paragraphs)
    if link:
        label, url = link
        parts.append(f'<p><a href="{escape(url, quote=True)}">{escape(label)}</a></p>')
    return "\n".join(parts)


def _days(n: int) -> str:
    return "1 day" if n == 1 else f"{n} days"


def renewal_reminder_customer(product_name: str, days_left: int, renew_url: str, merchant_name: str) -> MessageContent:
    text = f"Your {product_name} subscription expires in {_days(days_left)}. Renew now: {renew_url} - {merchant_name}"
    return MessageContent(
        subject=f"Your {product_name} subscription expires in {_days(days_left)}",
        text=text,
        html=_html(
            "Subscription Expiring Soon",
            [
                f"Your subscription to {product_name} will expire in {_days(days_left)}.",
                "To continue enjoying access, please renew your subscription.",
            ],
            ("Renew Now", renew_url),
        ),
    )


def renewal_reminder_merchant(product_name: str, customer_phone: str, days_left: int) -> MessageContent:
    text = f"Heads up: {customer_phone}'s {product_name} subscription expires in {_days(days_left)}."
    return MessageContent(
        subject=f"A {product_name} subscription expires in {_days(days_left)}",
        text=text,
        html=_html("Subscriber Expiring Soon", [text]),
    )


def expiration_notice_customer(product_name: str, renew_url: str, merchant_name: str) -> MessageContent:
    text = f"Your {product_name} subscription has expired. Renew to continue access: {renew_url} - {merchant_name}"
    return MessageContent(
        subject=f"Your {product_name} subscription has expired",
        text=text,
        html=_html(
            "Subscription Expired",
            [
                f"Your subscription to {product_name} has expired.",
                "To regain access, please renew your subscription.",
            ],
            ("Resubscribe Now", renew_url),
        ),
    )


def expiration_notice_merchant(product_name: str, customer_phone: str) -> MessageContent:
    text = f"{customer_phone}'s {product_name} subscription has expired."
    return MessageContent(
        subject=f"A {product_name} subscription has expired",
        text=text,
        html=_html("Subscriber Expired", [text]),
    )


def payment_confirmed_customer(
    product_name: str,
    amount: str,
    reference_code: str,
    merchant_name: str,
) -> MessageContent:
    text = (
        f"Payment Confirmed! Your payment of {amount} for {product_name} has been confirmed. "
        f"Ref: {reference_code}. Thank you! - {merchant_name}"
    )
    return MessageContent(
        subject=f"Payment confirmed: {product_name}",
        text=text,
        html=_html("Payment Confirmed", [text]),
    )
