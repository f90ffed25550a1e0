"""
AppContext - Builds and owns the one shared instance of each session-layer component.

Call sites receive the context (or the pieces they need) explicitly; nothing is
kept in module-level globals, yet the token slot and breaker are shared by all.
"""

from datetime import timedelta
from typing import Any, Iterable

from loguru import logger

from foodlist.datastore.engine import close_db, get_session_factory, init_db
from foodlist.services.access import AccessLevelResolver
from foodlist.services.aggregate_cache import UserAggregateCache
from foodlist.services.auth_state import LocalAuthState
from foodlist.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from foodlist.services.client import DispatcherConfig, ResilientRequestDispatcher
from foodlist.services.credentials import CredentialStore, SqlCredentialStore
from foodlist.services.identity import HttpIdentityBackend, IdentityBackend
from foodlist.services.notifier import AuthNotifier
from foodlist.services.profile_view import ProfileView, ProfileViewService
from foodlist.services.session_manager import AuthHandle, SessionLifecycleManager
from foodlist.services.token_cache import TokenCache
from foodlist.services.types import AccessResult, VisitRecord
from foodlist.services.visits import VisitStateSynchronizer
from foodlist.settings import Settings, global_settings


class AppContext:
    """
    The resilience client and everything hanging off it.

    Usage:
        async with await AppContext.from_settings() as ctx:
            auth = ctx.auth()
            await auth.sign_in("me@example.com", "secret")
            records = await ctx.visits_for(["r1", "r2"])
    """

    def __init__(
        self,
        identity: IdentityBackend,
        credential_store: CredentialStore,
        settings: Settings | None = None,
        notifier: AuthNotifier | None = None,
        **overrides: Any,
    ):
        settings = settings or global_settings
        self.settings = settings
        self.identity = identity

        self.token_cache = TokenCache(
            fetch_token=identity.get_access_token,
            fallback=credential_store,
            ttl=timedelta(seconds=settings.token_cache_ttl),
            **_pick(overrides, "clock"),
        )
        self.auth_state = LocalAuthState(self.token_cache, credential_store)

        self.breaker = CircuitBreaker(
            "record_store",
            CircuitBreakerConfig(
                failure_threshold=settings.circuit_failure_threshold,
                reset_timeout=timedelta(seconds=settings.circuit_reset_timeout),
            ),
            **_pick(overrides, "clock"),
        )
        self.dispatcher = ResilientRequestDispatcher(
            self.auth_state,
            DispatcherConfig(
                base_url=settings.api_base_url,
                timeout=settings.request_timeout,
                max_retries=settings.request_max_retries,
                retry_base_delay=settings.retry_base_delay,
            ),
            breaker=self.breaker,
            **_pick(overrides, "transport", "sleep"),
        )

        self.session_manager = SessionLifecycleManager(
            identity,
            self.auth_state,
            notifier=notifier,
            check_interval=timedelta(seconds=settings.session_check_interval),
            refresh_margin=timedelta(seconds=settings.session_refresh_margin),
            **_pick(overrides, "clock"),
        )
        self.dispatcher.on_authentication_expired(
            self.session_manager.handle_authentication_expired
        )

        self.resolver = AccessLevelResolver(self.dispatcher)
        self.aggregate_cache = UserAggregateCache(
            default_ttl=timedelta(seconds=settings.aggregate_cache_ttl),
            sweep_interval=timedelta(seconds=settings.aggregate_sweep_interval),
            **_pick(overrides, "clock"),
        )
        self.profiles = ProfileViewService(
            self.dispatcher,
            self.resolver,
            self.aggregate_cache,
            page_size=settings.profile_page_size,
        )
        self.visits = VisitStateSynchronizer(
            self.dispatcher,
            current_user=lambda: self.session_manager.user_id,
            retry_delay_initial=settings.visits_retry_delay_initial,
            retry_delay_refocus=settings.visits_retry_delay_refocus,
            **_pick(overrides, "sleep"),
        )

        # Everything held for the departing user goes with the purge
        self.auth_state.add_purge_hook(identity.clear_local_session)
        self.auth_state.add_purge_hook(self.aggregate_cache.clear)
        self.auth_state.add_purge_hook(self.visits.clear)

        self._owns_db = False
        self._started = False

    @classmethod
    async def from_settings(
        cls, settings: Settings | None = None, notifier: AuthNotifier | None = None
    ) -> "AppContext":
        """Wire the HTTP identity backend and the SQLite credential store."""
        settings = settings or global_settings
        await init_db(settings.database_url, settings.database_echo)
        identity = HttpIdentityBackend(
            settings.identity_url,
            api_key=settings.identity_api_key,
            timeout=settings.request_timeout,
        )
        ctx = cls(
            identity,
            SqlCredentialStore(get_session_factory()),
            settings=settings,
            notifier=notifier,
        )
        ctx._owns_db = True
        return ctx

    async def start(self) -> None:
        """Load the session and start the background timers."""
        if self._started:
            return
        await self.session_manager.initialize()
        self.session_manager.start()
        self.aggregate_cache.start()
        self._started = True

    async def close(self) -> None:
        """Stop timers and release HTTP clients and the database."""
        self.session_manager.dispose()
        self.aggregate_cache.stop()
        await self.dispatcher.close()
        if isinstance(self.identity, HttpIdentityBackend):
            await self.identity.close()
        if self._owns_db:
            await close_db()
        self._started = False
        logger.debug("AppContext closed")

    async def __aenter__(self) -> "AppContext":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # UI-facing surface

    def auth(self) -> AuthHandle:
        return self.session_manager.snapshot()

    async def resolve_access(self, viewer_id: str | None, identifier: str) -> AccessResult:
        return await self.resolver.resolve_access(viewer_id, identifier)

    async def load_profile(self, identifier: str) -> ProfileView:
        return await self.profiles.load(self.session_manager.user_id, identifier)

    async def visits_for(self, restaurant_ids: Iterable[str]) -> dict[str, VisitRecord]:
        return await self.visits.visits_for(restaurant_ids)

    async def toggle_visited(self, restaurant_id: str) -> VisitRecord:
        return await self.visits.toggle_visited(restaurant_id)

    async def increment_visit(self, restaurant_id: str) -> VisitRecord:
        return await self.visits.increment_visit(restaurant_id)

    async def decrement_visit(self, restaurant_id: str) -> VisitRecord:
        return await self.visits.decrement_visit(restaurant_id)

    def get_health_status(self) -> dict[str, Any]:
        return {
            **self.dispatcher.get_health_status(),
            "session_state": self.session_manager.state.value,
            "aggregate_cache": self.aggregate_cache.get_stats().to_dict(),
        }


def _pick(overrides: dict[str, Any], *names: str) -> dict[str, Any]:
    return {name: overrides[name] for name in names if name in overrides}
