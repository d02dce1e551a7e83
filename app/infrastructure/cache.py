"""
Shared TTL cache over Redis.

One ResponseCache is built in the app lifespan and handed to the services
that need it. Entries live in Redis, so an invalidation made by the
instance that ran an import phase is seen by every other instance.
Redis failures degrade to cache misses and are logged, never raised.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

SCAN_BATCH_SIZE = 500
_GLOB_SPECIAL = str.maketrans({char: f"\\{char}" for char in "*?[]\\"})


class ResponseCache:
    """JSON values with per-entry TTL and prefix invalidation."""

    def __init__(
        self,
        client: redis.Redis | None = None,
        url: str | None = None,
        namespace: str | None = None,
    ):
        self.client = client
        self.pool: ConnectionPool | None = None
        self._url = url or settings.REDIS_URL
        self._namespace = settings.CACHE_KEY_PREFIX if namespace is None else namespace

    async def initialize(self) -> None:
        """Open the connection pool on startup."""
        if self.client is not None:
            return

        try:
            self.pool = ConnectionPool.from_url(
                self._url,
                max_connections=settings.REDIS_MAX_CONNECTIONS,
                retry_on_timeout=True,
                socket_connect_timeout=10,
                socket_timeout=10,
                health_check_interval=30,
                decode_responses=True,
            )
            self.client = redis.Redis(connection_pool=self.pool)
            await self.client.ping()
            logger.info("Redis cache initialized", max_connections=settings.REDIS_MAX_CONNECTIONS)
        except Exception as e:
            logger.error("Failed to initialize Redis cache", error=str(e))
            await self.close()
            raise RuntimeError("Redis initialization failed") from e

    async def close(self) -> None:
        try:
            if self.client is not None:
                await self.client.aclose()
            if self.pool is not None:
                await self.pool.disconnect()
        except Exception as e:
            logger.error("Error closing Redis cache", error=str(e))
        finally:
            self.client = None
            self.pool = None

    async def ping(self) -> bool:
        if self.client is None:
            return False
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    def _key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    async def get(self, key: str) -> Any | None:
        if self.client is None:
            return None
        try:
            raw = await self.client.get(self._key(key))
        except Exception as e:
            logger.error("Redis GET failed", key=key[:40], error=str(e))
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable cache entry", key=key[:40])
            return None

    async def set(self, key: str, value: Any, ttl_seconds: float) -> bool:
        if self.client is None:
            return False
        try:
            payload = json.dumps(value, default=str)
            ttl_ms = max(1, int(ttl_seconds * 1000))
            return bool(await self.client.set(self._key(key), payload, px=ttl_ms))
        except Exception as e:
            logger.error("Redis SET failed", key=key[:40], error=str(e))
            return False

    async def get_or_set(
        self, key: str, ttl_seconds: float, loader: Callable[[], Awaitable[T]]
    ) -> T:
        """Return the cached value, or await loader() and cache its result."""
        cached = await self.get(key)
        if cached is not None:
            return cached

        value = await loader()
        if value is not None:
            await self.set(key, value, ttl_seconds)
        return value

    async def invalidate(self, key: str) -> bool:
        if self.client is None:
            return False
        try:
            return await self.client.delete(self._key(key)) > 0
        except Exception as e:
            logger.error("Redis DELETE failed", key=key[:40], error=str(e))
            return False

    async def invalidate_prefix(self, prefix: str) -> int:
        """Delete every key under prefix with SCAN, so Redis is never blocked by KEYS."""
        if self.client is None:
            return 0
        pattern = f"{self._key(prefix).translate(_GLOB_SPECIAL)}*"
        try:
            keys = [
                key async for key in self.client.scan_iter(match=pattern, count=SCAN_BATCH_SIZE)
            ]
            removed = await self.client.delete(*keys) if keys else 0
        except Exception as e:
            logger.error("Redis prefix invalidation failed", prefix=prefix[:40], error=str(e))
            return 0
        if removed:
            logger.debug("Cache prefix invalidated", prefix=prefix, removed=removed)
        return removed
