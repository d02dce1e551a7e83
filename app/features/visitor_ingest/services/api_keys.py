"""
Enrichment API key lookup.

Keys live in user_api_keys. Syncs use the pixel owner's key; admin imports
are not tied to a customer and fall back to the first configured key.
"""

from app.config import settings
from app.db.helpers import fetch_one
from app.features.visitor_ingest.errors import MissingApiKeyError
from app.infrastructure.cache import ResponseCache
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

_ANY_USER = "*"


class ApiKeyRepository:
    @classmethod
    async def fetch_api_key(cls, user_id: str | None = None) -> str | None:
        if user_id:
            row = await fetch_one(
                "SELECT api_key FROM user_api_keys WHERE user_id = %s LIMIT 1", (user_id,)
            )
        else:
            row = await fetch_one("SELECT api_key FROM user_api_keys LIMIT 1")
        return row["api_key"] if row and row.get("api_key") else None


class ApiKeyProvider:
    """Cached API key lookups; raises MissingApiKeyError when none is stored."""

    def __init__(self, cache: ResponseCache, repository=ApiKeyRepository, ttl_seconds: int | None = None):
        self._cache = cache
        self._repository = repository
        self._ttl = ttl_seconds or settings.API_KEY_CACHE_TTL_SECONDS

    async def get_api_key(self, user_id: str | None = None) -> str:
        owner = user_id or _ANY_USER
        api_key = await self._cache.get_or_set(
            f"api_key:{owner}",
            self._ttl,
            lambda: self._repository.fetch_api_key(user_id),
        )
        if not api_key and user_id:
            # Pixels created before per-user keys share the account-wide key
            api_key = await self._cache.get_or_set(
                f"api_key:{_ANY_USER}",
                self._ttl,
                lambda: self._repository.fetch_api_key(None),
            )
        if not api_key:
            logger.warning("No enrichment API key configured", user_id=user_id)
            raise MissingApiKeyError()
        return api_key

    async def invalidate(self, user_id: str | None = None) -> None:
        await self._cache.invalidate(f"api_key:{user_id or _ANY_USER}")
