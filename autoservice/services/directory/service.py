"""
Directory lookup service for actor identities.

Attribution fields hold free-form identities (usually emails). This module
resolves them to a username and display name for read models. The staff
directory is loaded through an injected async loader; the loaded index and
per-identity results are cached in Redis with a TTL, and concurrent callers
in one process share a single in-flight load.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel
from redis.exceptions import RedisError

from autoservice.cache.redis_client import (
    CacheKeyManager,
    RedisClient,
    get_cache_key_manager,
    get_redis_client,
)
from autoservice.core.config import get_settings
from autoservice.core.logging import get_logger
from autoservice.services.job_orders.normalizer import normalize_identity

logger = get_logger(__name__)

PLACEHOLDER_IDENTITIES = frozenset({"system", "n/a", "na", "not assigned", "unknown", "-", ""})


class DirectoryEntry(BaseModel):
    """One staff member as known to the directory."""

    email: Optional[str] = None
    username: Optional[str] = None
    display_name: Optional[str] = None


DirectoryLoader = Callable[[], Awaitable[list[DirectoryEntry]]]


def is_placeholder(identity: Optional[str]) -> bool:
    """True for empty identities and stand-ins such as "system" or "n/a"."""
    return normalize_identity(identity) in PLACEHOLDER_IDENTITIES


def username_part(identity: Optional[str]) -> Optional[str]:
    """Username portion of an identity (text before "@"), None for placeholders."""
    if is_placeholder(identity):
        return None
    cleaned = (identity or "").strip()
    return cleaned.split("@", 1)[0] or None


def resolve_actor_username(identity: Optional[str], fallback: str = "system") -> str:
    """Username to attribute an action to, or ``fallback`` when unknown."""
    return username_part(identity) or fallback


async def settings_loader() -> list[DirectoryEntry]:
    """Load the static directory seed from settings."""
    return [DirectoryEntry(**entry) for entry in get_settings().directory_entries]


class DirectoryLookupService:
    """
    Resolves actor identities against the staff directory.

    The loaded index and per-identity results live in Redis under
    ``autoservice:directory:*`` and expire after ``ttl_seconds``. Cache
    failures are logged and read as misses, so lookups keep working against
    the loader while Redis is unavailable.

    Attributes:
        ttl_seconds: Lifetime of the loaded directory and cached lookups
        load_count: Number of times the loader has been called
    """

    def __init__(
        self,
        loader: Optional[DirectoryLoader] = None,
        ttl_seconds: Optional[int] = None,
        cache: Optional[RedisClient] = None,
        key_manager: Optional[CacheKeyManager] = None,
    ):
        """
        Initialize lookup service.

        Args:
            loader: Async callable returning the directory entries
            ttl_seconds: Cache lifetime (defaults to settings)
            cache: Redis client (uses the global client if None)
            key_manager: Cache key manager (uses the global one if None)
        """
        self._loader = loader or settings_loader
        self.ttl_seconds = ttl_seconds or get_settings().directory_cache_ttl_seconds
        self._cache = cache
        self._keys = key_manager or get_cache_key_manager()
        self._lock = asyncio.Lock()
        self.load_count = 0

    async def _get_cache(self) -> RedisClient:
        if self._cache is None:
            self._cache = await get_redis_client()
        return self._cache

    async def _cache_get(self, key: str) -> Optional[dict[str, Any]]:
        try:
            cache = await self._get_cache()
            return await cache.get_json(key)
        except (RedisError, ValueError) as e:
            logger.error(
                "Directory cache read failed",
                cache_key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    async def _cache_set(self, key: str, value: dict[str, Any]) -> None:
        try:
            cache = await self._get_cache()
            await cache.set_json(key, value, ex=self.ttl_seconds)
        except (RedisError, TypeError, ValueError) as e:
            logger.error(
                "Directory cache write failed",
                cache_key=key,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _cache_clear(self, pattern: str) -> None:
        try:
            cache = await self._get_cache()
            await cache.delete_pattern(pattern)
        except RedisError as e:
            logger.error(
                "Directory cache invalidation failed",
                pattern=pattern,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def invalidate(self) -> None:
        """Drop the loaded directory and every cached lookup."""
        await self._cache_clear(self._keys.directory_pattern())

    async def _cached_index(self) -> Optional[dict[str, DirectoryEntry]]:
        raw = await self._cache_get(self._keys.directory_index_key())
        if raw is None:
            return None
        return {key: DirectoryEntry(**entry) for key, entry in raw.items()}

    async def _ensure_index(self) -> dict[str, DirectoryEntry]:
        index = await self._cached_index()
        if index is not None:
            return index

        async with self._lock:
            index = await self._cached_index()
            if index is not None:
                return index

            entries = await self._loader()
            index = {}
            for entry in entries:
                for key in (entry.email, entry.username):
                    normalized = normalize_identity(key)
                    if normalized and normalized not in index:
                        index[normalized] = entry
            self.load_count += 1

            # Results resolved against the previous index are stale now
            await self._cache_clear(self._keys.directory_pattern("identity"))
            await self._cache_set(
                self._keys.directory_index_key(),
                {key: entry.model_dump() for key, entry in index.items()},
            )
            logger.info("Directory loaded", entries=len(entries), keys=len(index))
            return index

    async def lookup(self, identity: Optional[str]) -> Optional[DirectoryEntry]:
        """
        Find the directory entry of an identity.

        Matches on the full identity first, then on its username portion.
        Placeholders never match. Misses are cached too.
        """
        if is_placeholder(identity):
            return None
        key = normalize_identity(identity)
        cache_key = self._keys.directory_identity_key(key)

        cached = await self._cache_get(cache_key)
        if cached is not None:
            entry_data = cached.get("entry")
            return DirectoryEntry(**entry_data) if entry_data else None

        index = await self._ensure_index()
        entry = index.get(key)
        if entry is None:
            short = normalize_identity(username_part(identity))
            entry = index.get(short) if short else None

        await self._cache_set(
            cache_key, {"entry": entry.model_dump() if entry is not None else None}
        )
        return entry

    async def username(self, identity: Optional[str]) -> Optional[str]:
        """Directory username, else the text before "@"; None for placeholders."""
        entry = await self.lookup(identity)
        if entry is not None and entry.username:
            return entry.username
        return username_part(identity)

    async def display_name(self, identity: Optional[str]) -> Optional[str]:
        """Directory display name, falling back to the username."""
        entry = await self.lookup(identity)
        if entry is not None and entry.display_name:
            return entry.display_name
        return await self.username(identity)
