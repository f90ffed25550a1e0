"""
TokenCache - Memoizes the current user's bearer token and coalesces concurrent fetches.

A single shared slot, not a map: every caller asks for the token of "the current
user". At most one fetch against the session endpoint is in flight at any time;
callers arriving while it runs share its result.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable

from loguru import logger

from foodlist.services.credentials import CredentialStore


@dataclass
class TokenCacheEntry:
    """The cached token with the metadata needed to judge staleness."""

    token: str
    cached_at_ms: int
    ttl_ms: int

    def is_stale(self, now_ms: int) -> bool:
        return now_ms - self.cached_at_ms > self.ttl_ms


class TokenCache:
    """
    Bearer token cache with request coalescing and a persisted-storage fallback.

    Usage:
        cache = TokenCache(fetch_token=identity.get_access_token, fallback=store)
        token = await cache.get_token()
    """

    def __init__(
        self,
        fetch_token: Callable[[], Awaitable[str | None]],
        fallback: CredentialStore | None = None,
        ttl: timedelta = timedelta(minutes=5),
        clock: Callable[[], float] = time.time,
        debug: bool = False,
    ):
        self._fetch_token = fetch_token
        self._fallback = fallback
        self._ttl_ms = int(ttl.total_seconds() * 1000)
        self._clock = clock
        self._debug = debug

        self._entry: TokenCacheEntry | None = None
        self._generation = 0
        self._in_flight: asyncio.Task[str | None] | None = None

        self._fetches = 0
        self._joined = 0
        self._fallbacks = 0

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def peek(self) -> TokenCacheEntry | None:
        """Return the cached entry if it is still fresh."""
        entry = self._entry
        if entry is None or entry.is_stale(self._now_ms()):
            return None
        return entry

    async def get_token(self) -> str | None:
        """Return a bearer token for the current user, or None when there is none."""
        entry = self.peek()
        if entry is not None:
            return entry.token

        task = self._in_flight
        if task is None:
            self._fetches += 1
            self._log("NEW: fetching session token")
            task = asyncio.create_task(self._fetch_and_cache(self._generation))
            task.add_done_callback(self._release)
            self._in_flight = task
        else:
            self._joined += 1
            self._log("JOIN: waiting for in-flight fetch")

        # Cancelling one caller leaves the fetch running for the rest
        return await asyncio.shield(task)

    def _release(self, task: "asyncio.Task[str | None]") -> None:
        if self._in_flight is task:
            self._in_flight = None

    async def _fetch_and_cache(self, generation: int) -> str | None:
        token: str | None = None
        try:
            token = await self._fetch_token()
        except Exception as e:
            logger.warning(f"Could not get session token: {e}")

        if token:
            # A purge during the fetch wins over the result
            if generation == self._generation:
                self._entry = TokenCacheEntry(
                    token=token, cached_at_ms=self._now_ms(), ttl_ms=self._ttl_ms
                )
                self._log("SET: session token cached")
            return token

        return await self._read_fallback()

    async def _read_fallback(self) -> str | None:
        if self._fallback is None:
            return None
        self._fallbacks += 1
        try:
            token = await self._fallback.get_token()
        except Exception as e:
            logger.warning(f"Could not read persisted token: {e}")
            return None
        if token:
            self._log("FALLBACK: using persisted token")
        return token

    def invalidate(self) -> None:
        """Drop the cached token. Synchronous so purges finish within one tick.

        A fetch already in flight still answers its own callers, but later
        callers start a new one.
        """
        self._entry = None
        self._generation += 1
        self._in_flight = None
        self._log("INVALIDATE: session token dropped")

    def is_fetching(self) -> bool:
        return self._in_flight is not None

    def get_stats(self) -> dict[str, Any]:
        return {
            "cached": self.peek() is not None,
            "fetches": self._fetches,
            "joined": self._joined,
            "fallbacks": self._fallbacks,
            "in_flight": self.is_fetching(),
        }

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[TokenCache] {message}")
