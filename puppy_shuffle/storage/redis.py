"""Redis client creation and the Redis-backed blob store."""

from __future__ import annotations

import logging
import os

from redis.asyncio import Redis
from redis.exceptions import RedisError

DEFAULT_REDIS_URL = "redis://localhost:6379/0"

logger = logging.getLogger(__name__)


def get_redis_url() -> str:
    return os.getenv("REDIS_URL", DEFAULT_REDIS_URL)


def create_redis_client(redis_url: str | None = None) -> Redis:
    return Redis.from_url(redis_url or get_redis_url(), decode_responses=True)


class RedisBlobStore:
    """Plain string keys in Redis; read and write errors degrade to misses."""

    def __init__(self, redis_client: Redis):
        self.redis = redis_client

    async def load(self, key: str) -> str | None:
        try:
            return await self.redis.get(key)
        except RedisError as exc:
            logger.warning("Redis read failed for %s: %s", key, exc)
            return None

    async def save(self, key: str, value: str) -> bool:
        try:
            await self.redis.set(key, value)
        except RedisError as exc:
            logger.warning("Redis write failed for %s: %s", key, exc)
            return False
        return True

    async def ping(self) -> bool:
        response = await self.redis.ping()
        return bool(response)

    async def aclose(self) -> None:
        await self.redis.aclose()
