"""
UserAggregateCache - Time-boxed cache of a viewed profile and its collections.

Features:
- One entry per target profile id holding profile, reviews, lists, restaurants
- TTL per entry (default 5 minutes), checked on read
- Field-by-field updates that refresh the entry's timestamp
- Periodic sweep of expired entries via APScheduler
"""

import asyncio
import time
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Any, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from foodlist.services.types import AccessLevel, Profile
from foodlist.utils import safe_func_wrapper


@dataclass
class UserAggregateCacheEntry:
    """Cached aggregate of one profile."""

    profile: Profile
    reviews: list[dict[str, Any]] = field(default_factory=list)
    lists: list[dict[str, Any]] = field(default_factory=list)
    restaurants: list[dict[str, Any]] = field(default_factory=list)
    access_level: AccessLevel = AccessLevel.PUBLIC  # Level the data was fetched under
    cached_at_ms: int = 0
    ttl_ms: int = 0

    def is_expired(self, now_ms: int) -> bool:
        return now_ms - self.cached_at_ms > self.ttl_ms


class UserAggregateCache:
    """
    Async-compatible per-profile cache.

    Usage:
        cache = UserAggregateCache()

        entry = await cache.get(user_id)
        if entry is None:
            entry = await cache.set(user_id, profile, reviews, lists, restaurants)

        await cache.update_reviews(user_id, new_reviews)
    """

    def __init__(
        self,
        default_ttl: timedelta = timedelta(minutes=5),
        sweep_interval: timedelta = timedelta(seconds=60),
        clock: Callable[[], float] = time.time,
        debug: bool = False,
    ):
        self._memory: dict[str, UserAggregateCacheEntry] = {}
        self._default_ttl_ms = int(default_ttl.total_seconds() * 1000)
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._debug = debug
        self._lock = asyncio.Lock()
        self._stats = AggregateCacheStats()

        self.scheduler = AsyncIOScheduler()
        self._is_running = False

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def get(self, user_id: str) -> UserAggregateCacheEntry | None:
        """Get the entry for a profile, dropping it if expired."""
        async with self._lock:
            entry = self._memory.get(user_id)
            if entry is None:
                self._stats.misses += 1
                self._log(f"MISS: {user_id}")
                return None

            if entry.is_expired(self._now_ms()):
                del self._memory[user_id]
                self._stats.misses += 1
                self._log(f"EXPIRED: {user_id}")
                return None

            self._stats.hits += 1
            self._log(f"HIT: {user_id}")
            return entry

    async def set(
        self,
        user_id: str,
        profile: Profile,
        reviews: list[dict[str, Any]] | None = None,
        lists: list[dict[str, Any]] | None = None,
        restaurants: list[dict[str, Any]] | None = None,
        access_level: AccessLevel = AccessLevel.PUBLIC,
        ttl: timedelta | None = None,
    ) -> UserAggregateCacheEntry:
        """Store a whole aggregate, replacing any previous entry."""
        ttl_ms = int(ttl.total_seconds() * 1000) if ttl else self._default_ttl_ms
        entry = UserAggregateCacheEntry(
            profile=profile,
            reviews=list(reviews or []),
            lists=list(lists or []),
            restaurants=list(restaurants or []),
            access_level=access_level,
            cached_at_ms=self._now_ms(),
            ttl_ms=ttl_ms,
        )
        async with self._lock:
            self._memory[user_id] = entry
            self._log(f"SET: {user_id} (TTL: {ttl_ms / 1000}s)")
        return entry

    async def _update(self, user_id: str, **changes: Any) -> bool:
        async with self._lock:
            existing = self._memory.get(user_id)
            if existing is None:
                return False
            self._memory[user_id] = replace(
                existing, cached_at_ms=self._now_ms(), **changes
            )
            self._log(f"UPDATE: {user_id} {sorted(changes)}")
            return True

    async def update_profile(self, user_id: str, profile: Profile) -> bool:
        return await self._update(user_id, profile=profile)

    async def update_reviews(self, user_id: str, reviews: list[dict[str, Any]]) -> bool:
        return await self._update(user_id, reviews=list(reviews))

    async def update_lists(self, user_id: str, lists: list[dict[str, Any]]) -> bool:
        return await self._update(user_id, lists=list(lists))

    async def update_restaurants(
        self, user_id: str, restaurants: list[dict[str, Any]]
    ) -> bool:
        return await self._update(user_id, restaurants=list(restaurants))

    async def invalidate(self, user_id: str) -> bool:
        """Delete one profile's entry."""
        async with self._lock:
            if self._memory.pop(user_id, None) is not None:
                self._log(f"INVALIDATE: {user_id}")
                return True
            return False

    def clear(self) -> None:
        """Drop every entry. Synchronous so it can run inside an auth purge."""
        count = len(self._memory)
        self._memory.clear()
        self._log(f"CLEAR: {count} entries removed")

    async def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        async with self._lock:
            now_ms = self._now_ms()
            expired = [k for k, v in self._memory.items() if v.is_expired(now_ms)]
            for key in expired:
                del self._memory[key]

            if expired:
                self._stats.swept += len(expired)
                logger.debug(f"Aggregate cache sweep removed {len(expired)} entries")
            return len(expired)

    @safe_func_wrapper
    async def _sweep_job(self) -> None:
        await self.cleanup_expired()

    def start(self) -> None:
        """Start the periodic sweep."""
        if self._is_running:
            logger.warning("Aggregate cache sweep is already running")
            return

        self.scheduler.add_job(
            self._sweep_job,
            trigger="interval",
            seconds=self._sweep_interval.total_seconds(),
            id="aggregate_cache_sweep",
            name="Aggregate Cache Sweep",
            replace_existing=True,
        )
        self.scheduler.start()
        self._is_running = True

    def stop(self) -> None:
        if not self._is_running:
            return
        self.scheduler.shutdown(wait=False)
        self._is_running = False

    def get_stats(self) -> "AggregateCacheStats":
        self._stats.size = len(self._memory)
        return self._stats

    def keys(self) -> list[str]:
        return list(self._memory.keys())

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[UserAggregateCache] {message}")


@dataclass
class AggregateCacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    swept: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "swept": self.swept,
            "size": self.size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
