"""
LocalAuthState - Everything this process remembers about the signed-in user.

Shared by the dispatcher (purges on 401) and the session manager (purges on
forced logout), so both clear the same token slot, cookie jar and store.
"""

from typing import Callable

from loguru import logger

from foodlist.services.credentials import CredentialStore
from foodlist.services.token_cache import TokenCache


class LocalAuthState:
    """Token cache and persisted credentials of the current user, plus purge hooks."""

    def __init__(self, token_cache: TokenCache, credential_store: CredentialStore):
        self.token_cache = token_cache
        self.credential_store = credential_store
        self._purge_hooks: list[Callable[[], None]] = []

    def add_purge_hook(self, hook: Callable[[], None]) -> None:
        """Register extra in-memory state (cookie jars, caches) to drop on purge."""
        self._purge_hooks.append(hook)

    def purge_memory(self) -> None:
        """Clear all in-memory auth state without suspending."""
        self.token_cache.invalidate()
        for hook in self._purge_hooks:
            hook()

    async def purge(self) -> None:
        """Clear in-memory state first, then the persisted store."""
        self.purge_memory()
        await self.credential_store.clear()
        logger.info("Local authentication state purged")
