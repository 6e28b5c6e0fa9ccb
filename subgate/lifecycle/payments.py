"""
Pending payments that were never confirmed expire after expires_at.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.orm import Session

from subgate.models.payment import Payment

logger = logging.getLogger(__name__)


def expire_pending_payments(db: Session, now: datetime | None = None) -> dict:
    now = now or datetime.now(timezone.utc)
    stale = (
        db.query(Payment.id, Payment.reference_code)
        .filter(Payment.status == "pending", Payment.expires_at < now)
        .all()
    )
    if not stale:
        return {"expired_count": 0, "expired_payments": []}

    ids = [pid for pid, _ in stale]
    result = db.execute(
        update(Payment)
        .where(Payment.id.in_(ids), Payment.status == "pending")
        .values(status="expired", updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    count = result.rowcount or 0
    logger.info("pending_payments_expired", extra={"expired_count": count})
    return {"expired_count": count, "expired_payments": [ref for _, ref in stale]}
