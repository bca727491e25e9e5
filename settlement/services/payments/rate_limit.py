import logging

import redis

from settlement.core.config import settings

logger = logging.getLogger(__name__)


class PurchaseRateLimiter:
    """At most `limit` purchase initiations per `window` seconds per owner. Works across replicas."""

    def __init__(self, client: redis.Redis | None = None, limit: int | None = None, window: int | None = None):
        self._redis = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self.limit = limit if limit is not None else settings.purchase_rate_limit
        self.window = window if window is not None else settings.purchase_rate_window_seconds

    def allow(self, owner_id: str) -> bool:
        key = f"purchase_rate:{owner_id}"
        try:
            current = self._redis.incr(key)
            if current == 1:
                self._redis.expire(key, self.window)
            return current <= self.limit
        except redis.RedisError as e:
            logger.warning("purchase_rate_limit_redis_error", extra={"error": str(e)})
            return True  # fail open: Redis outage must not block checkout
