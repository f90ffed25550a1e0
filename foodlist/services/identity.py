"""
Identity backend interface and an HTTP implementation for a token-based auth API.

The backend issues and refreshes opaque bearer tokens and pushes session-change
notifications to subscribers. Subscriptions follow `subscribe(handler) -> unsubscribe()`.
"""

import inspect
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

import httpx
from loguru import logger

from foodlist.services.errors import IdentityError
from foodlist.services.types import AuthUser, Session, SessionEvent

SessionChangeHandler = Callable[[SessionEvent, Session | None], Awaitable[None] | None]


class IdentityBackend(ABC):
    """Operations the session layer consumes from the identity provider."""

    def __init__(self):
        self._handlers: list[SessionChangeHandler] = []

    @abstractmethod
    async def get_session(self) -> Session | None:
        ...

    @abstractmethod
    async def refresh_session(self) -> Session:
        """Exchange the refresh token for a new session. Raises IdentityError."""
        ...

    @abstractmethod
    async def sign_in_with_password(self, identifier: str, secret: str) -> Session:
        """Raises IdentityError on rejected credentials."""
        ...

    @abstractmethod
    async def sign_out(self, session: Session | None = None) -> None:
        """
        Revoke `session` at the backend, or the backend's own when None.
        Raises IdentityError if the backend refused to end the session.
        """
        ...

    @abstractmethod
    async def restore_session(self, session: Session) -> None:
        """Adopt a session persisted by an earlier run and emit INITIAL_SESSION."""
        ...

    @abstractmethod
    def clear_local_session(self) -> None:
        """Forget the local session without calling the backend. Must not suspend."""
        ...

    async def get_access_token(self) -> str | None:
        """Session-read used by the token cache."""
        session = await self.get_session()
        return session.access_token if session else None

    def on_session_change(self, handler: SessionChangeHandler) -> Callable[[], None]:
        """Subscribe to session-change notifications. Returns an unsubscribe function."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def _emit(self, event: SessionEvent, session: Session | None) -> None:
        """Deliver one event to every subscriber, in subscription order."""
        for handler in list(self._handlers):
            result = handler(event, session)
            if inspect.isawaitable(result):
                await result


class HttpIdentityBackend(IdentityBackend):
    """
    Identity backend speaking a GoTrue-style REST API.

    Endpoints (relative to `base_url`):
        POST /token?grant_type=password       {email, password}
        POST /token?grant_type=refresh_token  {refresh_token}
        POST /logout
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__()
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            headers={"apikey": api_key} if api_key else None,
            transport=transport,
        )
        self._clock = clock
        self._session: Session | None = None

    async def get_session(self) -> Session | None:
        return self._session

    async def sign_in_with_password(self, identifier: str, secret: str) -> Session:
        data = await self._post_token(
            "password", {"email": identifier, "password": secret}
        )
        self._session = self._parse_session(data)
        logger.info(f"Signed in as {self._session.subject_id}")
        await self._emit(SessionEvent.SIGNED_IN, self._session)
        return self._session

    async def refresh_session(self) -> Session:
        if self._session is None:
            raise IdentityError("No session to refresh", service_id="identity")

        current = self._session
        data = await self._post_token(
            "refresh_token", {"refresh_token": current.refresh_token}
        )
        if self._session is not current:
            raise IdentityError("Session changed during refresh", service_id="identity")
        self._session = self._parse_session(data)
        await self._emit(SessionEvent.TOKEN_REFRESHED, self._session)
        return self._session

    async def sign_out(self, session: Session | None = None) -> None:
        session = session or self._session
        self._session = None
        try:
            if session is not None:
                response = await self._client.post(
                    "/logout",
                    headers={"Authorization": f"Bearer {session.access_token}"},
                )
                # An already-invalid token still counts as signed out
                if response.status_code not in (200, 204, 401, 404):
                    raise IdentityError(
                        f"Sign-out failed: HTTP {response.status_code}",
                        service_id="identity",
                    )
        except httpx.RequestError as e:
            raise IdentityError(f"Sign-out failed: {e}", service_id="identity") from e
        finally:
            await self._emit(SessionEvent.SIGNED_OUT, None)

    async def restore_session(self, session: Session) -> None:
        self._session = session
        logger.info(f"Restored persisted session for {session.subject_id}")
        await self._emit(SessionEvent.INITIAL_SESSION, session)

    def clear_local_session(self) -> None:
        self._session = None

    async def _post_token(self, grant_type: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(
                "/token", params={"grant_type": grant_type}, json=body
            )
        except httpx.RequestError as e:
            raise IdentityError(str(e), service_id="identity") from e

        if not response.is_success:
            raise IdentityError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                service_id="identity",
            )
        return response.json()

    def _parse_session(self, data: dict[str, Any]) -> Session:
        user = data.get("user") or {}
        expires_at = data.get("expires_at")
        if expires_at is None:
            expires_at = int(self._clock()) + int(data.get("expires_in", 3600))
        return Session(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", ""),
            expires_at=int(expires_at),
            subject_id=user.get("id", ""),
            user=AuthUser(id=user["id"], email=user.get("email")) if user.get("id") else None,
        )

    async def close(self) -> None:
        await self._client.aclose()
