"""
Signed merchant webhooks (httpx sync client).

Each active endpoint subscribed to the event gets one POST:
- body: {"event", "timestamp", "data"} as JSON
- X-SubGate-Signature: hex HMAC-SHA256 of "<timestamp>.<body>" keyed by the endpoint secret
- X-SubGate-Timestamp / X-SubGate-Event

Every attempt is written to webhook_deliveries. Delivery never raises; a
failing endpoint does not stop the others.
"""
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx
from sqlalchemy.orm import Session

from subgate.core.config import settings
from subgate.models.webhook import Webhook, WebhookDelivery
from subgate.utils.metrics import webhook_deliveries_total


logger = logging.getLogger(__name__)

PAYMENT_CONFIRMED = "payment.confirmed"
SUBSCRIPTION_CREATED = "subscription.created"
SUBSCRIPTION_RENEWED = "subscription.renewed"

SIGNATURE_HEADER = "X-SubGate-Signature"
TIMESTAMP_HEADER = "X-SubGate-Timestamp"
EVENT_HEADER = "X-SubGate-Event"

# Stored response bodies are truncated to this many characters.
MAX_RESPONSE_BODY = 2000


def sign(secret: str, timestamp: str, body: str) -> str:
    return hmac.new(secret.encode("utf-8"), f"{timestamp}.{body}".encode("utf-8"), hashlib.sha256).hexdigest()


@dataclass
class WebhookOutcome:
    delivered: int = 0
    total: int = 0
    errors: list[str] = field(default_factory=list)


class WebhookService:
    def __init__(self, db: Session, client: httpx.Client | None = None) -> None:
        self.db = db
        self._client = client

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=settings.http_client_timeout)
        return self._client

    def endpoints_for(self, merchant_id: str, event: str) -> list[Webhook]:
        hooks = (
            self.db.query(Webhook)
            .filter(Webhook.merchant_id == merchant_id, Webhook.is_active.is_(True))
            .all()
        )
        return [h for h in hooks if h.listens_to(event)]

    def deliver(self, merchant_id: str, event: str, data: dict) -> WebhookOutcome:
        outcome = WebhookOutcome()
        for hook in self.endpoints_for(merchant_id, event):
            outcome.total += 1
            ok, error = self._post(hook, event, data)
            if ok:
                outcome.delivered += 1
            else:
                outcome.errors.append(f"{hook.url}: {error}")
        if outcome.total:
            self.db.commit()
        return outcome

    def _post(self, hook: Webhook, event: str, data: dict) -> tuple[bool, str | None]:
        timestamp = str(int(time.time() * 1000))
        body = json.dumps(
            {"event": event, "timestamp": datetime.now(timezone.utc).isoformat(), "data": data},
            default=str,
        )
        delivery = WebhookDelivery(webhook_id=hook.id, event_type=event, payload=data)
        try:
            resp = self.client.post(
                hook.url,
                content=body,
                headers={
                    "Content-Type": "application/json",
                    SIGNATURE_HEADER: sign(hook.secret, timestamp, body),
                    TIMESTAMP_HEADER: timestamp,
                    EVENT_HEADER: event,
                },
            )
        except httpx.HTTPError as e:
            delivery.response_status = 0
            delivery.response_body = str(e)
            self.db.add(delivery)
            webhook_deliveries_total.labels(event=event, status="failed").inc()
            logger.warning("webhook_delivery_failed", extra={"webhook_id": hook.id, "event": event, "error": str(e)})
            return False, str(e)

        delivery.response_status = resp.status_code
        delivery.response_body = resp.text[:MAX_RESPONSE_BODY]
        delivery.delivered_at = datetime.now(timezone.utc)
        self.db.add(delivery)
        if resp.is_success:
            webhook_deliveries_total.labels(event=event, status="delivered").inc()
            return True, None
        webhook_deliveries_total.labels(event=event, status="failed").inc()
        logger.warning(
            "webhook_delivery_rejected",
            extra={"webhook_id": hook.id, "event": event, "status_code": resp.status_code},
        )
        return False, f"HTTP {resp.status_code}"

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
