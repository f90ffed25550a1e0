"""
ResilientRequestDispatcher - The one outbound path to the record store.

Combines:
- TokenCache for bearer token resolution (coalesced, memoized)
- CircuitBreaker for failure protection
- Per-attempt deadline with exponential backoff on timeout
- Global handling of 401: purge local auth state and notify listeners
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx
from loguru import logger

from foodlist.services.auth_state import LocalAuthState
from foodlist.services.circuit_breaker import CircuitBreaker
from foodlist.services.errors import (
    AuthenticationExpiredError,
    CircuitOpenError,
    NetworkError,
    RequestTimeoutError,
    ResponseError,
)

ExpiryListener = Callable[[], Awaitable[None] | None]


@dataclass
class DispatcherConfig:
    """Configuration for the dispatcher."""

    service_id: str = "record_store"
    base_url: str = ""
    timeout: float = 10.0  # Per attempt
    max_retries: int = 2  # Timeout retries after the first attempt
    retry_base_delay: float = 1.0  # 1s, 2s, ...
    headers: dict[str, str] = field(default_factory=dict)


class _AttemptTimedOut(Exception):
    """One attempt missed its deadline."""


class ResilientRequestDispatcher:
    """
    Authenticated HTTP client with circuit breaker and timeout retries.

    Every outbound call goes through one shared instance, so the token slot
    and the breaker counters are shared by all call sites.

    Usage:
        dispatcher = ResilientRequestDispatcher(auth_state, breaker=breaker)

        response = await dispatcher.get("/users/FL000001")
        profile = response.json()

        await dispatcher.post("/restaurants/visits", {"restaurantIds": ids})
    """

    def __init__(
        self,
        auth_state: LocalAuthState,
        config: DispatcherConfig | None = None,
        breaker: CircuitBreaker | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.auth_state = auth_state
        self.config = config or DispatcherConfig()
        self.breaker = breaker or CircuitBreaker(self.config.service_id)
        self._transport = transport
        self._sleep = sleep
        self._expiry_listeners: list[ExpiryListener] = []

        # HTTP client (lazy initialization)
        self._http_client: httpx.AsyncClient | None = None

        self.auth_state.add_purge_hook(self._clear_cookies)

    @property
    def service_id(self) -> str:
        return self.config.service_id

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.config.base_url,
                transport=self._transport,
                follow_redirects=True,
            )
        return self._http_client

    def _clear_cookies(self) -> None:
        if self._http_client is not None:
            self._http_client.cookies.clear()

    def on_authentication_expired(self, listener: ExpiryListener) -> Callable[[], None]:
        """Subscribe to terminal 401s. Returns an unsubscribe function."""
        self._expiry_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._expiry_listeners:
                self._expiry_listeners.remove(listener)

        return unsubscribe

    async def call(
        self,
        endpoint: str,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        json_data: Any = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        purge_on_unauthorized: bool = True,
    ) -> httpx.Response:
        """
        Make an authenticated request with resilience patterns.

        Args:
            endpoint: Path relative to the configured base URL, or a full URL
            method: HTTP method (GET, POST, etc.)
            params: Query parameters
            json_data: JSON body for POST/PUT/PATCH requests
            headers: Additional headers
            timeout: Override the per-attempt deadline
            purge_on_unauthorized: When False a 401 raises without purging
                local state or notifying listeners

        Returns:
            The 2xx response

        Raises:
            CircuitOpenError: If the breaker is open (no network attempted)
            AuthenticationExpiredError: No token, or the backend answered 401
            RequestTimeoutError: Every attempt missed its deadline
            NetworkError: No response at all
            ResponseError: Any other non-2xx status
        """
        req_timeout = timeout if timeout is not None else self.config.timeout
        attempt = 0

        while True:
            attempt += 1
            try:
                return await self._attempt(
                    endpoint=endpoint,
                    method=method,
                    params=params,
                    json_data=json_data,
                    headers=headers,
                    timeout=req_timeout,
                    purge_on_unauthorized=purge_on_unauthorized,
                )
            except _AttemptTimedOut:
                retries_done = attempt - 1
                if retries_done >= self.config.max_retries:
                    raise RequestTimeoutError(
                        self.service_id, req_timeout, attempts=attempt
                    ) from None

                delay = self.config.retry_base_delay * (2**retries_done)
                logger.warning(
                    f"{method} {endpoint} timed out, retrying in {delay}s "
                    f"(attempt {retries_done + 1}/{self.config.max_retries})"
                )
                await self._sleep(delay)

    async def _attempt(
        self,
        endpoint: str,
        method: str,
        params: dict[str, Any] | None,
        json_data: Any,
        headers: dict[str, str] | None,
        timeout: float,
        purge_on_unauthorized: bool,
    ) -> httpx.Response:
        """Execute one attempt: breaker check, token, request, outcome."""
        if not self.breaker.allow_request():
            raise CircuitOpenError(
                self.service_id,
                self.breaker.get_time_until_reset() or 0,
            )

        token = await self.auth_state.token_cache.get_token()
        if not token:
            raise AuthenticationExpiredError(
                "No authentication token found", service_id=self.service_id
            )

        req_headers = dict(self.config.headers)
        if headers:
            req_headers.update(headers)
        req_headers["Authorization"] = f"Bearer {token}"
        if json_data is not None:
            req_headers["Content-Type"] = "application/json"

        client = self._get_http_client()
        try:
            response = await asyncio.wait_for(
                client.request(
                    method=method,
                    url=endpoint,
                    params=params,
                    headers=req_headers,
                    json=json_data,
                ),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            self.breaker.record_failure()
            raise _AttemptTimedOut() from e
        except httpx.RequestError as e:
            self.breaker.record_failure()
            raise NetworkError(
                f"{method} {endpoint} failed: {str(e) or type(e).__name__}",
                service_id=self.service_id,
            ) from e

        # The backend answered, so only server-side errors count against it
        if response.status_code >= 500:
            self.breaker.record_failure()
        else:
            self.breaker.record_success()

        if response.status_code == 401:
            if purge_on_unauthorized:
                await self.expire_authentication()
            raise AuthenticationExpiredError(
                service_id=self.service_id, purged=purge_on_unauthorized
            )

        if not response.is_success:
            raise ResponseError(
                response.status_code,
                response.text or response.reason_phrase,
                service_id=self.service_id,
            )

        return response

    async def expire_authentication(self) -> None:
        """Purge local auth state and tell listeners to send the user to sign-in."""
        logger.warning(f"{self.service_id} rejected the session, purging local state")
        try:
            await self.auth_state.purge()
        finally:
            for listener in list(self._expiry_listeners):
                try:
                    result = listener()
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.error(f"Authentication expiry listener failed: {e}")

    # Convenience wrappers

    async def get(self, endpoint: str, **kwargs: Any) -> httpx.Response:
        return await self.call(endpoint, method="GET", **kwargs)

    async def post(self, endpoint: str, body: Any = None, **kwargs: Any) -> httpx.Response:
        return await self.call(endpoint, method="POST", json_data=body, **kwargs)

    async def put(self, endpoint: str, body: Any = None, **kwargs: Any) -> httpx.Response:
        return await self.call(endpoint, method="PUT", json_data=body, **kwargs)

    async def patch(self, endpoint: str, body: Any = None, **kwargs: Any) -> httpx.Response:
        return await self.call(endpoint, method="PATCH", json_data=body, **kwargs)

    async def delete(self, endpoint: str, **kwargs: Any) -> httpx.Response:
        return await self.call(endpoint, method="DELETE", **kwargs)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("ResilientRequestDispatcher closed")

    async def __aenter__(self) -> "ResilientRequestDispatcher":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def get_health_status(self) -> dict[str, Any]:
        """Get health status of the dispatcher."""
        return {
            "circuit_breaker": self.breaker.get_status(),
            "token_cache": self.auth_state.token_cache.get_stats(),
        }
