from __future__ import annotations

import logging
import os

import redis

logger = logging.getLogger(__name__)


def create_redis(url: str | None = None) -> redis.Redis:
    # Session documents, stream fields and lock tokens are all text.
    return redis.Redis.from_url(url or os.environ.get("REDIS_URL", "redis://localhost:6379/0"), decode_responses=True)


def redis_ready(r: redis.Redis) -> bool:
    try:
        return bool(r.ping())
    except redis.RedisError:
        logger.warning("Redis ping failed", exc_info=True)
        return False
