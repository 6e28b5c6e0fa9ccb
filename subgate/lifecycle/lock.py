"""
Redis SET NX lock that keeps overlapping sweeps of the same kind apart.
Fails open: if Redis is down the sweep runs, and the per-row notification
watermarks still stop duplicate sends.
"""
import logging
from uuid import uuid4

import redis

from subgate.core.config import settings
from subgate.lifecycle.config import get_sweep_lock_ttl

logger = logging.getLogger(__name__)


class SweepLock:
    def __init__(self, name: str, ttl_seconds: int | None = None, client: redis.Redis | None = None) -> None:
        self.key = f"sweep_lock:{name}"
        self.ttl = ttl_seconds if ttl_seconds is not None else get_sweep_lock_ttl()
        self._client = client
        self._token = str(uuid4())
        self.held = False

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        return self._client

    def acquire(self) -> bool:
        try:
            created = self.client.set(self.key, self._token, nx=True, ex=self.ttl)
        except redis.RedisError as e:
            logger.warning("sweep_lock_redis_error", extra={"kind": self.key, "error": str(e)})
            return True  # Fail open
        self.held = bool(created)
        return self.held

    def release(self) -> None:
        if not self.held:
            return
        try:
            if self.client.get(self.key) == self._token:
                self.client.delete(self.key)
        except redis.RedisError as e:
            logger.warning("sweep_lock_release_error", extra={"kind": self.key, "error": str(e)})
        self.held = False

    def __enter__(self) -> bool:
        return self.acquire()

    def __exit__(self, *exc) -> None:
        self.release()
