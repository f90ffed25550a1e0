"""Shared fixtures: fake identity backend, in-memory record store, fake clock."""

import asyncio
import json
from datetime import timedelta
from typing import Any

import httpx
import pytest

from foodlist.services.auth_state import LocalAuthState
from foodlist.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from foodlist.services.client import DispatcherConfig, ResilientRequestDispatcher
from foodlist.services.credentials import MemoryCredentialStore
from foodlist.services.errors import IdentityError
from foodlist.services.identity import IdentityBackend
from foodlist.services.notifier import AuthNotifier
from foodlist.services.session_manager import SessionLifecycleManager
from foodlist.services.token_cache import TokenCache
from foodlist.services.types import AuthUser, Session, SessionEvent

STORE_URL = "http://store.test"
START_TIME = 1_700_000_000.0


def make_session(
    user_id: str = "user-1",
    token: str = "token-1",
    expires_at: float = START_TIME + 3600,
) -> Session:
    return Session(
        access_token=token,
        refresh_token=f"refresh-{token}",
        expires_at=int(expires_at),
        subject_id=user_id,
        user=AuthUser(id=user_id, email=f"{user_id}@example.com"),
    )


def make_profile(
    user_id: str,
    code: str,
    public: bool = True,
    **fields: Any,
) -> dict[str, Any]:
    return {
        "user_id": user_id,
        "user_id_code": code,
        "display_name": f"User {code}",
        "phone_number": "+55 11 99999-0000",
        "public_profile": public,
        "total_reviews": 3,
        **fields,
    }


class FakeClock:
    """Manually advanced time source (epoch seconds)."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Drop-in for asyncio.sleep that records delays and returns at once."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class RecordingNotifier(AuthNotifier):
    def __init__(self):
        self.messages: list[tuple[str, str]] = []
        self.redirects = 0

    def notify(self, message: str, level: str = "error") -> None:
        self.messages.append((level, message))

    def redirect_to_sign_in(self) -> None:
        self.redirects += 1


class FakeIdentityBackend(IdentityBackend):
    """Identity backend holding one session in memory and counting calls."""

    def __init__(self, session: Session | None = None, refreshed: Session | None = None):
        super().__init__()
        self.session = session
        self.refreshed = refreshed
        self.password = "secret"
        self.fetch_delay = 0.0
        self.refresh_delay = 0.0
        self.get_session_calls = 0
        self.refresh_calls = 0
        self.sign_out_calls = 0
        self.revoked: list[Session | None] = []

    async def get_session(self) -> Session | None:
        self.get_session_calls += 1
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        return self.session

    async def refresh_session(self) -> Session:
        self.refresh_calls += 1
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refreshed is None:
            raise IdentityError("Refresh token rejected")
        self.session = self.refreshed
        await self._emit(SessionEvent.TOKEN_REFRESHED, self.session)
        return self.session

    async def sign_in_with_password(self, identifier: str, secret: str) -> Session:
        if secret != self.password:
            raise IdentityError("Invalid login credentials")
        self.session = make_session(user_id=identifier.split("@")[0], token="signed-in-token")
        await self._emit(SessionEvent.SIGNED_IN, self.session)
        return self.session

    async def sign_out(self, session: Session | None = None) -> None:
        self.sign_out_calls += 1
        self.revoked.append(session or self.session)
        self.session = None
        await self._emit(SessionEvent.SIGNED_OUT, None)

    async def restore_session(self, session: Session) -> None:
        self.session = session
        await self._emit(SessionEvent.INITIAL_SESSION, session)

    def clear_local_session(self) -> None:
        self.session = None

    async def emit(self, event: SessionEvent, session: Session | None) -> None:
        await self._emit(event, session)


class FakeRecordStore:
    """
    In-memory record store served through httpx.MockTransport.

    Queued responses (httpx.Response or exceptions) are consumed first, one per
    request; everything else is routed to the in-memory data.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.queued: list[httpx.Response | Exception] = []
        self.profiles: list[dict[str, Any]] = []
        self.collections: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self.visits: dict[str, dict[str, Any]] = {}

    def queue(self, *items: httpx.Response | Exception) -> None:
        self.queued.extend(items)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def requests_to(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.queued:
            item = self.queued.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return self._route(request)

    def _route(self, request: httpx.Request) -> httpx.Response:
        parts = request.url.path.strip("/").split("/")

        if parts[0] == "users" and len(parts) == 2 and request.method == "GET":
            for profile in self.profiles:
                if parts[1] in (profile["user_id"], profile.get("user_id_code")):
                    return httpx.Response(200, json=profile)
            return httpx.Response(404, json={"error": "User not found"})

        if parts[0] == "users" and len(parts) == 3 and request.method == "GET":
            data = self.collections.get((parts[1], parts[2]), [])
            return httpx.Response(
                200, json={"data": data, "total": len(data), "hasMore": False}
            )

        if parts == ["restaurants", "visits"] and request.method == "POST":
            ids = json.loads(request.content)["restaurantIds"]
            return httpx.Response(
                200, json={rid: self.visits[rid] for rid in ids if rid in self.visits}
            )

        if parts[0] == "restaurants" and len(parts) == 3 and parts[2] == "visits":
            return self._mutate_visit(parts[1], request)

        return httpx.Response(404, json={"error": "Not found"})

    def _mutate_visit(self, restaurant_id: str, request: httpx.Request) -> httpx.Response:
        record = dict(self.visits.get(restaurant_id, {"visited": False, "visitCount": 0}))
        if request.method == "POST":
            record = {"visited": True, "visitCount": record["visitCount"] + 1}
        else:
            action = json.loads(request.content)["action"]
            if action == "toggle_visited":
                visited = not record["visited"]
                count = record["visitCount"]
                if visited and count == 0:
                    count = 1
                record = {"visited": visited, "visitCount": count}
            elif action == "remove_visit":
                if record["visitCount"] <= 0:
                    return httpx.Response(400, json={"error": "No visits to remove"})
                count = record["visitCount"] - 1
                record = {"visited": record["visited"] and count > 0, "visitCount": count}
        self.visits[restaurant_id] = record
        return httpx.Response(200, json=record)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def identity() -> FakeIdentityBackend:
    return FakeIdentityBackend(session=make_session())


@pytest.fixture
def record_store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def credential_store() -> MemoryCredentialStore:
    return MemoryCredentialStore()


@pytest.fixture
def token_cache(identity, credential_store, clock) -> TokenCache:
    return TokenCache(
        fetch_token=identity.get_access_token,
        fallback=credential_store,
        clock=clock,
    )


@pytest.fixture
def auth_state(token_cache, credential_store) -> LocalAuthState:
    return LocalAuthState(token_cache, credential_store)


@pytest.fixture
def breaker(clock) -> CircuitBreaker:
    return CircuitBreaker(
        "record_store",
        CircuitBreakerConfig(failure_threshold=5, reset_timeout=timedelta(seconds=30)),
        clock=clock,
    )


@pytest.fixture
async def dispatcher(auth_state, breaker, record_store, sleep):
    dispatcher = ResilientRequestDispatcher(
        auth_state,
        DispatcherConfig(base_url=STORE_URL),
        breaker=breaker,
        transport=record_store.transport(),
        sleep=sleep,
    )
    yield dispatcher
    await dispatcher.close()


@pytest.fixture
def manager(identity, auth_state, notifier, clock) -> SessionLifecycleManager:
    manager = SessionLifecycleManager(identity, auth_state, notifier=notifier, clock=clock)
    yield manager
    manager.dispose()
