"""
Shared FastAPI dependencies: cron secret, viewer identity, merchant API keys,
notification dispatcher and webhook sender.
"""
import hashlib
import hmac
import logging
from datetime import datetime, timezone

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from subgate.access.config import get_viewer_id_header
from subgate.api.errors import ApiError
from subgate.core.config import settings
from subgate.db.session import get_db
from subgate.models.api_key import ApiKey
from subgate.models.user import User
from subgate.services.notifications.dispatcher import NotificationDispatcher
from subgate.services.webhooks.service import WebhookService

logger = logging.getLogger(__name__)


def _bearer(request: Request) -> str | None:
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth[7:].strip() or None
    return None


def verify_cron_secret(request: Request) -> None:
    """
    CRON_SECRET set -> require "Authorization: Bearer <CRON_SECRET>".
    CRON_SECRET empty -> endpoint is open (scheduler on a private network).
    """
    secret = settings.cron_secret
    if not secret:
        return
    token = _bearer(request)
    if token is None or not hmac.compare_digest(token, secret):
        logger.warning("cron_unauthorized", extra={"path": request.url.path})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def get_viewer_id(request: Request) -> str | None:
    """Authenticated user id forwarded by the upstream auth layer, if any."""
    value = request.headers.get(get_viewer_id_header())
    return value.strip() if value and value.strip() else None


def hash_secret_key(secret_key: str) -> str:
    return hashlib.sha256(secret_key.encode("utf-8")).hexdigest()


def get_api_merchant_id(request: Request, db: Session = Depends(get_db)) -> str:
    """Merchant id behind a secret API key ("Authorization: Bearer sk_...")."""
    token = _bearer(request)
    if token is None:
        raise ApiError("Missing API key", status.HTTP_401_UNAUTHORIZED)
    key = (
        db.query(ApiKey)
        .filter(ApiKey.secret_key_hash == hash_secret_key(token), ApiKey.is_active.is_(True))
        .one_or_none()
    )
    if key is None:
        raise ApiError("Invalid API key", status.HTTP_401_UNAUTHORIZED)
    key.last_used_at = datetime.now(timezone.utc)
    db.add(key)
    db.commit()
    return key.merchant_id


def get_dispatcher():
    dispatcher = NotificationDispatcher.from_settings()
    try:
        yield dispatcher
    finally:
        dispatcher.close()


def get_webhooks(db: Session = Depends(get_db)):
    webhooks = WebhookService(db)
    try:
        yield webhooks
    finally:
        webhooks.close()


def get_current_user(viewer_id: str | None = Depends(get_viewer_id), db: Session = Depends(get_db)) -> User:
    """Authenticated, active user behind the upstream header; 401 otherwise."""
    if viewer_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    user = db.query(User).filter(User.id == viewer_id, User.is_active.is_(True)).one_or_none()
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return user
