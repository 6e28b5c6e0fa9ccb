import logging

from fastapi import APIRouter, Depends, Response
import redis
from sqlalchemy import text
from sqlalchemy.orm import Session

from subgate.core.config import settings
from subgate.db.session import get_db

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Liveness probe - always returns 200 if app is running."""
    return {"status": "ok"}


def _check_database(db: Session) -> str | None:
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        return str(e)
    return None


def _check_redis() -> str | None:
    try:
        redis.Redis.from_url(settings.redis_url, socket_connect_timeout=2).ping()
    except redis.RedisError as e:
        return str(e)
    return None


@router.get("/ready")
def readiness(response: Response, db: Session = Depends(get_db)) -> dict:
    """Readiness probe - 503 with the failing checks if a dependency is down."""
    failures = {
        name: error
        for name, error in (("database", _check_database(db)), ("redis", _check_redis()))
        if error is not None
    }
    if failures:
        logger.warning("readiness_failed", extra={"error": "; ".join(f"{k}: {v}" for k, v in failures.items())})
        response.status_code = 503
        return {"status": "not_ready", "checks": failures}
    return {"status": "ready", "checks": {"database": "ok", "redis": "ok"}}
