"""
SessionLifecycleManager - Owns the current session and keeps it alive.

States:
- NO_SESSION: Nobody is signed in
- AUTHENTICATED: A session is held
- REFRESHING: A refresh call is in flight

Transitions (see `transition`):
- NO_SESSION/AUTHENTICATED/REFRESHING → AUTHENTICATED: a session is established
- AUTHENTICATED → REFRESHING: fewer than `refresh_margin` seconds remain
- any → NO_SESSION: sign-out, failed refresh, expiry or a rejected token

A single failed refresh is treated as expiry; there is no retry loop.
"""

import time
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from foodlist.services.auth_state import LocalAuthState
from foodlist.services.errors import IdentityError
from foodlist.services.identity import IdentityBackend
from foodlist.services.notifier import SESSION_EXPIRED_MESSAGE, AuthNotifier
from foodlist.services.types import AuthUser, Session, SessionEvent
from foodlist.utils import safe_func_wrapper


class SessionState(str, Enum):
    """Session lifecycle states."""

    NO_SESSION = "NO_SESSION"
    AUTHENTICATED = "AUTHENTICATED"
    REFRESHING = "REFRESHING"


class SessionTrigger(str, Enum):
    """Inputs of the lifecycle state machine."""

    SESSION_ESTABLISHED = "SESSION_ESTABLISHED"
    REFRESH_STARTED = "REFRESH_STARTED"
    SESSION_ENDED = "SESSION_ENDED"


class InvalidTransitionError(ValueError):
    """Trigger not accepted in the current state."""


_TRANSITIONS: dict[tuple[SessionState, SessionTrigger], SessionState] = {
    (SessionState.NO_SESSION, SessionTrigger.SESSION_ESTABLISHED): SessionState.AUTHENTICATED,
    (SessionState.AUTHENTICATED, SessionTrigger.SESSION_ESTABLISHED): SessionState.AUTHENTICATED,
    (SessionState.REFRESHING, SessionTrigger.SESSION_ESTABLISHED): SessionState.AUTHENTICATED,
    (SessionState.AUTHENTICATED, SessionTrigger.REFRESH_STARTED): SessionState.REFRESHING,
    (SessionState.NO_SESSION, SessionTrigger.SESSION_ENDED): SessionState.NO_SESSION,
    (SessionState.AUTHENTICATED, SessionTrigger.SESSION_ENDED): SessionState.NO_SESSION,
    (SessionState.REFRESHING, SessionTrigger.SESSION_ENDED): SessionState.NO_SESSION,
}


def transition(state: SessionState, trigger: SessionTrigger) -> SessionState:
    """Pure transition function of the session lifecycle."""
    try:
        return _TRANSITIONS[(state, trigger)]
    except KeyError:
        raise InvalidTransitionError(
            f"{trigger.value} is not allowed in state {state.value}"
        ) from None


@dataclass
class AuthHandle:
    """Hook-like view handed to UI code."""

    session: Session | None
    user: AuthUser | None
    loading: bool
    sign_in: Callable[[str, str], Awaitable[Session]]
    sign_out: Callable[[], Awaitable[None]]
    refresh_session: Callable[[], Awaitable[Session | None]]


class SessionLifecycleManager:
    """
    Keeps the client authenticated across expirations and backend notifications.

    Usage:
        manager = SessionLifecycleManager(identity, auth_state)
        await manager.initialize()
        manager.start()   # periodic expiry check
        ...
        manager.dispose()
    """

    def __init__(
        self,
        identity: IdentityBackend,
        auth_state: LocalAuthState,
        notifier: AuthNotifier | None = None,
        check_interval: timedelta = timedelta(seconds=60),
        refresh_margin: timedelta = timedelta(seconds=300),
        clock: Callable[[], float] = time.time,
    ):
        self._identity = identity
        self._auth_state = auth_state
        self._notifier = notifier or AuthNotifier()
        self._check_interval = check_interval
        self._refresh_margin = refresh_margin.total_seconds()
        self._clock = clock

        self._session: Session | None = None
        self._state = SessionState.NO_SESSION
        self._loading = True
        self._unsubscribe: Callable[[], None] | None = None

        self.scheduler = AsyncIOScheduler()
        self._is_running = False

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def user(self) -> AuthUser | None:
        return self._session.user if self._session else None

    @property
    def user_id(self) -> str | None:
        return self._session.subject_id if self._session else None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def loading(self) -> bool:
        return self._loading

    def snapshot(self) -> AuthHandle:
        return AuthHandle(
            session=self._session,
            user=self.user,
            loading=self._loading,
            sign_in=self.sign_in,
            sign_out=self.sign_out,
            refresh_session=self.refresh_session,
        )

    async def initialize(self) -> None:
        """Read the current session once, then follow backend notifications."""
        try:
            session = await self._identity.get_session()
            if session is None:
                session = await self._restore_persisted()
        except Exception as e:
            logger.error(f"Error initializing auth: {e}")
            session = None

        if session is not None:
            await self._store_session(session)
        self._loading = False

        if self._unsubscribe is None:
            self._unsubscribe = self._identity.on_session_change(
                self._handle_session_change
            )
        logger.info(f"Session manager initialized in state {self._state.value}")

    async def _restore_persisted(self) -> Session | None:
        """Hand a session saved by an earlier run back to the identity backend."""
        session = await self._auth_state.credential_store.get_session()
        if session is not None:
            await self._identity.restore_session(session)
        return session

    async def _handle_session_change(
        self, event: SessionEvent, session: Session | None
    ) -> None:
        """Apply one notification. Called in the order the backend delivers them."""
        logger.debug(f"Session event {event.value}")
        self._loading = False

        if event == SessionEvent.SIGNED_OUT:
            if self._session is not None:
                await self.force_logout()
            return

        if event == SessionEvent.TOKEN_REFRESHED and self._state != SessionState.AUTHENTICATED:
            # While REFRESHING, `_refresh` adopts its own result
            return

        # SIGNED_IN, TOKEN_REFRESHED, INITIAL_SESSION, PASSWORD_RECOVERY, USER_UPDATED
        if session is not None:
            await self._store_session(session)

    async def _store_session(self, session: Session) -> None:
        """Replace the session wholesale; in-memory state changes before any await."""
        previous = self._session
        self._session = session
        self._state = transition(self._state, SessionTrigger.SESSION_ESTABLISHED)
        if previous is None or previous.access_token != session.access_token:
            self._auth_state.token_cache.invalidate()

        try:
            await self._auth_state.credential_store.save_session(session)
        except Exception as e:
            logger.error(f"Failed to persist session: {e}")

    # Expiry monitoring

    def start(self) -> None:
        """Start the periodic expiry check."""
        if self._is_running:
            logger.warning("Session expiry check is already running")
            return

        self.scheduler.add_job(
            self._check_expiry_job,
            trigger="interval",
            seconds=self._check_interval.total_seconds(),
            id="session_expiry_check",
            name="Session Expiry Check",
            replace_existing=True,
        )
        self.scheduler.start()
        self._is_running = True
        logger.info(
            f"Session expiry check started: every {self._check_interval.total_seconds():.0f}s"
        )

    def dispose(self) -> None:
        """Tear down the timer and the notification subscription."""
        if self._is_running:
            self.scheduler.shutdown(wait=False)
            self._is_running = False
            logger.info("Session expiry check stopped")

        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def is_running(self) -> bool:
        return self._is_running

    @safe_func_wrapper
    async def _check_expiry_job(self) -> None:
        await self.check_expiry()

    async def check_expiry(self) -> None:
        """Refresh shortly before expiry; log out once expired."""
        session = self._session
        if session is None:
            return

        remaining = session.seconds_until_expiry(self._clock())
        if remaining < 0:
            logger.warning(f"Session expired {-remaining:.0f}s ago")
            await self.force_logout()
        elif remaining < self._refresh_margin and self._state != SessionState.REFRESHING:
            logger.info(f"Session expires in {remaining:.0f}s, refreshing")
            await self._refresh()

    async def refresh_session(self) -> Session | None:
        """Refresh now. Returns None when there is nothing to refresh."""
        if self._session is None:
            logger.warning("No session to refresh")
            return None
        if self._state == SessionState.REFRESHING:
            return None
        return await self._refresh()

    async def _refresh(self) -> Session | None:
        started_from = self._session
        self._state = transition(self._state, SessionTrigger.REFRESH_STARTED)
        try:
            session = await self._identity.refresh_session()
        except Exception as e:
            logger.error(f"Error refreshing session: {e}")
            session = None

        # Whatever ended or replaced the session during the await wins
        if self._state != SessionState.REFRESHING or self._session is not started_from:
            logger.info("Session changed while refreshing, discarding the refresh")
            if self._session is None:
                self._identity.clear_local_session()
            return None

        if session is None:
            await self.force_logout()
            return None

        await self._store_session(session)
        return session

    # Explicit operations

    async def sign_in(self, identifier: str, secret: str) -> Session:
        """Sign in and adopt the resulting session before returning."""
        try:
            session = await self._identity.sign_in_with_password(identifier, secret)
        except IdentityError as e:
            logger.error(f"Error signing in: {e}")
            self._notifier.notify("Erro ao fazer login. Verifique suas credenciais.")
            raise

        await self._store_session(session)
        self._notifier.notify("Login realizado com sucesso!", level="success")
        return session

    async def sign_out(self) -> None:
        """End the session locally first, then revoke it at the backend."""
        session = self._session
        self._end_locally()
        try:
            await self._identity.sign_out(session)
        except IdentityError as e:
            logger.error(f"Error signing out: {e}")
        finally:
            await self._auth_state.credential_store.clear()
            self._notifier.redirect_to_sign_in()

    # Forced logout

    async def force_logout(self, message: str = SESSION_EXPIRED_MESSAGE) -> None:
        """Purge everything, tell the user, send them to sign-in."""
        self._end_locally()
        try:
            await self._auth_state.credential_store.clear()
        finally:
            self._announce_expiry(message)

    def handle_authentication_expired(self) -> None:
        """Listener for the dispatcher, which has already purged local state."""
        already_ended = self._state == SessionState.NO_SESSION
        self._session = None
        self._state = transition(self._state, SessionTrigger.SESSION_ENDED)
        self._identity.clear_local_session()
        if already_ended:
            logger.debug("Authentication expired with no session held")
            return
        self._announce_expiry(SESSION_EXPIRED_MESSAGE)

    def _end_locally(self) -> None:
        self._session = None
        self._state = transition(self._state, SessionTrigger.SESSION_ENDED)
        self._identity.clear_local_session()
        self._auth_state.purge_memory()

    def _announce_expiry(self, message: str) -> None:
        logger.warning("Forcing logout")
        self._notifier.notify(message)
        self._notifier.redirect_to_sign_in()
