"""Key-value cache for burn-rate reports, deal matches, orchestration results and alert cooldowns."""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Protocol

import redis.asyncio as redis

from spendwise.config import settings
from spendwise.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl: int) -> bool: ...

    async def add(self, key: str, value: Any, ttl: int) -> bool:
        """Set only if the key is absent. Returns True when this call stored the value."""
        ...

    async def delete(self, key: str) -> bool: ...

    async def delete_prefix(self, prefix: str) -> int: ...


# Key builders shared by every store implementation

def burn_rate_key(user_id: str, budget_id: str) -> str:
    return f"burn-rate:{user_id}:{budget_id}"


def burn_rate_history_key(user_id: str, budget_id: str, days: int) -> str:
    return f"burn-rate-history:{user_id}:{budget_id}:{days}"


def deal_matching_key(user_id: str, digest: str) -> str:
    return f"deal-matching:{user_id}:{digest}"


def orchestration_prefix(user_id: str) -> str:
    return f"budget-deals:{user_id}:"


def orchestration_key(user_id: str, itinerary_id: str | None, trigger: str) -> str:
    return f"{orchestration_prefix(user_id)}{itinerary_id or 'all'}:{trigger}"


def cooldown_key(user_id: str, rule_id: str, scope_id: str) -> str:
    return f"alert-cooldown:{user_id}:{rule_id}:{scope_id}"


def notification_queue_key(user_id: str, frequency: str) -> str:
    return f"notification-queue:{user_id}:{frequency}"


def notification_count_key(user_id: str, day: str) -> str:
    return f"notifications-today:{user_id}:{day}"


def recent_notifications_key(user_id: str) -> str:
    return f"recent-notifications:{user_id}"


class RedisCacheService:
    """Redis-backed store. Every operation degrades to a miss when Redis is unreachable."""

    def __init__(self, url: str | None = None):
        self._url = url or settings.redis_url
        self._redis: redis.Redis | None = None

    async def _get_redis(self) -> redis.Redis | None:
        if self._redis is None:
            try:
                self._redis = redis.from_url(
                    self._url,
                    encoding="utf-8",
                    decode_responses=True,
                )
                await self._redis.ping()
            except Exception as e:
                logger.warning(f"Redis unavailable, cache disabled: {e}")
                self._redis = None
                return None
        return self._redis

    async def get(self, key: str) -> Any | None:
        """Get a value from cache. Returns None on miss or error."""
        try:
            r = await self._get_redis()
            if r is None:
                return None
            raw = await r.get(key)
            if raw is None:
                return None
            return json.loads(raw)
        except Exception:
            return None

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        """Set a value in cache with TTL. Returns False on error."""
        if ttl <= 0:
            return False
        try:
            r = await self._get_redis()
            if r is None:
                return False
            await r.set(key, json.dumps(value, default=str), ex=ttl)
            return True
        except Exception:
            return False

    async def add(self, key: str, value: Any, ttl: int) -> bool:
        """SET NX. Fails open (returns True) when Redis is down so alerts are not lost."""
        if ttl <= 0:
            return True
        try:
            r = await self._get_redis()
            if r is None:
                return True
            stored = await r.set(key, json.dumps(value, default=str), ex=ttl, nx=True)
            return bool(stored)
        except Exception as e:
            logger.warning(f"Cooldown claim for {key} failed, allowing: {e}")
            return True

    async def delete(self, key: str) -> bool:
        """Delete a key."""
        try:
            r = await self._get_redis()
            if r is None:
                return False
            await r.delete(key)
            return True
        except Exception:
            return False

    async def delete_prefix(self, prefix: str) -> int:
        try:
            r = await self._get_redis()
            if r is None:
                return 0
            count = 0
            async for key in r.scan_iter(match=f"{prefix}*"):
                await r.delete(key)
                count += 1
            return count
        except Exception:
            return 0

    async def close(self):
        if self._redis:
            await self._redis.aclose()
            self._redis = None


class InMemoryCacheService:
    """Process-local store whose entries expire against an injected clock.

    Values are JSON round-tripped like the Redis store, so callers never
    share mutable state with the cache.
    """

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or SystemClock()
        self._entries: dict[str, tuple[str, datetime]] = {}

    def _live(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if self._clock.now() >= expires_at:
            del self._entries[key]
            return None
        return raw

    async def get(self, key: str) -> Any | None:
        raw = self._live(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        if ttl <= 0:
            return False
        expires_at = self._clock.now() + timedelta(seconds=ttl)
        self._entries[key] = (json.dumps(value, default=str), expires_at)
        return True

    async def add(self, key: str, value: Any, ttl: int) -> bool:
        if ttl <= 0:
            return True
        # No await between the check and the write: atomic on one event loop.
        if self._live(key) is not None:
            return False
        expires_at = self._clock.now() + timedelta(seconds=ttl)
        self._entries[key] = (json.dumps(value, default=str), expires_at)
        return True

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def delete_prefix(self, prefix: str) -> int:
        keys = [k for k in self._entries if k.startswith(prefix)]
        for k in keys:
            del self._entries[k]
        return len(keys)
