from __future__ import annotations

import logging
import os

import redis

logger = logging.getLogger(__name__)

DEFAULT_REDIS_URL = "redis://localhost:6379/0"


def get_redis_url() -> str:
    """`KALI_REDIS_URL` wins over the generic `REDIS_URL`."""

    return os.environ.get("KALI_REDIS_URL") or os.environ.get("REDIS_URL") or DEFAULT_REDIS_URL


def create_redis(url: str | None = None) -> redis.Redis:
    # Session state is stored as JSON text, so responses are decoded to str.
    return redis.Redis.from_url(url or get_redis_url(), decode_responses=True)


def redis_available(r: redis.Redis) -> bool:
    """True when the session store answers a PING."""

    try:
        return bool(r.ping())
    except redis.RedisError as e:
        logger.warning("Redis ping failed: %s", e)
        return False
