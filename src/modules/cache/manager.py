"""Namespaced, expiring cache backed by Redis.

Every entry is stored as a JSON envelope ``{"data", "storedAt", "expiresAt"}``
under ``settings.cache_prefix`` + key. The cache is best-effort: storage and
serialization failures are logged and reported to callers as a miss, never
raised. Entries that do not parse as an envelope are evicted on read.
"""

import json
import logging
import time
from collections.abc import Callable
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from src.config import settings
from src.modules.cache.constants import CACHE_TTL_DEFAULT, SCAN_BATCH_SIZE

logger = logging.getLogger(__name__)

_CACHE_ERRORS = (RedisError, OSError, TypeError, ValueError)


def create_cache_key(base_key: str, entity_id: Any) -> str:
    """Build a per-entity key, e.g. ``customer_account_<id>``."""
    return f"{base_key}{entity_id}"


class CacheManager:
    """Redis-backed cache with a fixed key namespace and envelope-level expiry.

    Expiry is checked against the envelope's ``expiresAt`` using the injected
    ``clock`` (seconds since epoch), so it does not depend on Redis having
    evicted the key yet. Redis TTLs are still set so abandoned keys go away.
    """

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        prefix: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis_client
        self._prefix = prefix if prefix is not None else settings.cache_prefix
        self._clock = clock

    async def _get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(settings.redis_url, decode_responses=True)
        return self._redis

    def _make_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def _read_envelope(self, key: str) -> dict | None:
        client = await self._get_redis()
        raw = await client.get(self._make_key(key))
        if raw is None:
            return None
        envelope = json.loads(raw)
        if not isinstance(envelope, dict) or "data" not in envelope:
            raise ValueError("cache entry is not an envelope")
        for field in ("storedAt", "expiresAt"):
            stamp = envelope.get(field)
            if isinstance(stamp, bool) or not isinstance(stamp, (int, float)):
                raise ValueError(f"cache entry has a non-numeric {field}")
        return envelope

    async def set(self, key: str, data: Any, ttl: int = CACHE_TTL_DEFAULT) -> None:
        """Store ``data`` for ``ttl`` seconds. Failures are logged, not raised."""
        now = self._clock()
        envelope = {"data": data, "storedAt": now, "expiresAt": now + ttl}
        try:
            payload = json.dumps(envelope, default=str)
            client = await self._get_redis()
            await client.set(self._make_key(key), payload, ex=max(int(ttl), 1))
        except _CACHE_ERRORS as exc:
            logger.warning("Failed to set cache key %s: %s", key, exc)

    async def get(self, key: str) -> Any | None:
        """Return cached data, or None when absent, expired or unreadable."""
        try:
            envelope = await self._read_envelope(key)
        except _CACHE_ERRORS as exc:
            logger.warning("Failed to get cache key %s: %s", key, exc)
            if isinstance(exc, ValueError):
                await self.remove(key)
            return None
        if envelope is None:
            return None
        if self._clock() > envelope["expiresAt"]:
            await self.remove(key)
            return None
        return envelope.get("data")

    async def remove(self, key: str) -> None:
        try:
            client = await self._get_redis()
            await client.delete(self._make_key(key))
        except _CACHE_ERRORS as exc:
            logger.warning("Failed to remove cache key %s: %s", key, exc)

    async def clear_all(self) -> int:
        """Delete every key under the namespace prefix.

        Returns the number of keys deleted.
        """
        deleted_count = 0
        try:
            client = await self._get_redis()
            async for namespaced_key in client.scan_iter(
                match=f"{self._prefix}*", count=SCAN_BATCH_SIZE
            ):
                await client.delete(namespaced_key)
                deleted_count += 1
        except _CACHE_ERRORS as exc:
            logger.warning("Failed to clear cache namespace %s: %s", self._prefix, exc)
        return deleted_count

    async def has(self, key: str) -> bool:
        return await self.get(key) is not None

    async def age(self, key: str) -> float | None:
        """Seconds elapsed since the entry was stored, or None."""
        try:
            envelope = await self._read_envelope(key)
        except _CACHE_ERRORS:
            return None
        if envelope is None:
            return None
        return self._clock() - envelope["storedAt"]

    async def is_fresh(self, key: str, max_age: float) -> bool:
        """True when an entry exists and is younger than ``max_age`` seconds."""
        entry_age = await self.age(key)
        return entry_age is not None and entry_age < max_age

    # ------------------------------------------------------------------
    # Cached list helpers (records carrying an "id")
    # ------------------------------------------------------------------

    async def update_array_item(self, key: str, item_id: Any, updated_item: dict) -> None:
        """Replace the record with ``item_id`` in a cached list; no-op if uncached."""
        cached = await self.get(key)
        if not isinstance(cached, list):
            return
        updated = [
            updated_item if str(item.get("id")) == str(item_id) else item
            for item in cached
        ]
        await self.set(key, updated)

    async def add_array_item(self, key: str, new_item: dict) -> None:
        cached = await self.get(key)
        if not isinstance(cached, list):
            return
        await self.set(key, [*cached, new_item])

    async def remove_array_item(self, key: str, item_id: Any) -> None:
        cached = await self.get(key)
        if not isinstance(cached, list):
            return
        await self.set(key, [item for item in cached if str(item.get("id")) != str(item_id)])


_cache: CacheManager | None = None


def get_cache() -> CacheManager:
    """Process-wide cache instance, also usable as a FastAPI dependency."""
    global _cache
    if _cache is None:
        _cache = CacheManager(prefix=settings.cache_prefix)
    return _cache
