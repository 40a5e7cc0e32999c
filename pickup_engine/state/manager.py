"""Redis connection manager shared by the Redis-backed repository."""

import json
from typing import Any

import redis.asyncio as redis
from redis.asyncio.client import Pipeline

from pickup_engine.config import get_settings
from pickup_engine.utils.logging import get_logger

logger = get_logger(__name__)


class StateManager:
    """Thin async wrapper around a Redis client."""

    def __init__(self, redis_url: str | None = None) -> None:
        settings = get_settings()
        self.redis_client: redis.Redis | None = None
        self.redis_url = redis_url or settings.redis_url

    async def connect(self) -> None:
        """Establish Redis connection."""
        if self.redis_client is None:
            self.redis_client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("redis_connected", url=self.redis_url)

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("redis_disconnected")

    async def client(self) -> redis.Redis:
        if not self.redis_client:
            await self.connect()
        return self.redis_client

    async def ping(self) -> bool:
        client = await self.client()
        return bool(await client.ping())

    async def pipeline(self, transaction: bool = True) -> Pipeline:
        """Pipeline for WATCH/MULTI/EXEC blocks."""
        client = await self.client()
        return client.pipeline(transaction=transaction)

    async def get(self, key: str) -> Any:
        """Get a value from Redis."""
        client = await self.client()
        value = await client.get(key)

        if value:
            try:
                return json.loads(value)
            except (json.JSONDecodeError, TypeError):
                return value

        return None

    async def mget(self, keys: list[str]) -> list[str | None]:
        if not keys:
            return []
        client = await self.client()
        return await client.mget(keys)

    async def smembers(self, key: str) -> set[str]:
        client = await self.client()
        return await client.smembers(key)

    async def lrange(self, key: str, start: int = 0, end: int = -1) -> list[str]:
        client = await self.client()
        return await client.lrange(key, start, end)

    async def zrangebyscore(
        self,
        key: str,
        min_score: float | str,
        max_score: float | str,
    ) -> list[str]:
        """Members of a sorted set scored within the given range."""
        client = await self.client()
        return await client.zrangebyscore(key, min_score, max_score)

    async def flush(self) -> None:
        """Drop every key in the current database."""
        client = await self.client()
        await client.flushdb()
        logger.warning("redis_flushed", url=self.redis_url)


# Global state manager instance
_state_manager: StateManager | None = None


async def get_state_manager() -> StateManager:
    """Get the global state manager instance."""
    global _state_manager
    if _state_manager is None:
        _state_manager = StateManager()
        await _state_manager.connect()
    return _state_manager
