"""
VisitStateSynchronizer - Visited flag and visit count per restaurant for the current user.

Mutations are applied optimistically, sent to the record store, and then
replaced by the record the store returns. Last write wins: there is no merge
of concurrent edits from other devices.

Rules:
- increment: visited = True, count + 1
- decrement: rejected at count 0; clears visited when the count reaches 0
- toggle: flips visited; false → true from count 0 seeds count 1
"""

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable

import httpx
from loguru import logger

from foodlist.services.client import ResilientRequestDispatcher
from foodlist.services.errors import (
    AuthenticationExpiredError,
    ResponseError,
    VisitCountError,
)
from foodlist.services.types import VisitRecord


class FetchReason(str, Enum):
    """Why a bulk fetch was triggered; picks the auth-race retry delay."""

    INITIAL_LOAD = "initial_load"
    REFOCUS = "refocus"


def apply_increment(record: VisitRecord) -> VisitRecord:
    return record.model_copy(
        update={"visited": True, "visit_count": record.visit_count + 1}
    )


def apply_decrement(record: VisitRecord) -> VisitRecord:
    if record.visit_count <= 0:
        raise VisitCountError(record.restaurant_id)
    count = record.visit_count - 1
    return record.model_copy(
        update={"visit_count": count, "visited": False if count == 0 else record.visited}
    )


def apply_toggle(record: VisitRecord) -> VisitRecord:
    visited = not record.visited
    count = record.visit_count
    if visited and count == 0:
        count = 1
    return record.model_copy(update={"visited": visited, "visit_count": count})


class VisitStateSynchronizer:
    """
    Client-side visit state, kept in step with the record store.

    Usage:
        visits = VisitStateSynchronizer(dispatcher, current_user=lambda: manager.user_id)

        records = await visits.bulk_fetch(restaurant_ids)
        record = await visits.toggle_visited(restaurant_id)
    """

    def __init__(
        self,
        dispatcher: ResilientRequestDispatcher,
        current_user: Callable[[], str | None],
        retry_delay_initial: float = 1.0,
        retry_delay_refocus: float = 0.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._dispatcher = dispatcher
        self._current_user = current_user
        self._retry_delays = {
            FetchReason.INITIAL_LOAD: retry_delay_initial,
            FetchReason.REFOCUS: retry_delay_refocus,
        }
        self._sleep = sleep
        self._records: dict[str, VisitRecord] = {}

    def record_for(self, restaurant_id: str) -> VisitRecord:
        """Known record, or the implicit one for a never-visited restaurant."""
        record = self._records.get(restaurant_id)
        if record is None:
            record = VisitRecord(
                user_id=self._current_user(),
                restaurant_id=restaurant_id,
                visited=False,
                visit_count=0,
            )
        return record

    def clear(self) -> None:
        """Forget all records (they belong to the user who just left)."""
        self._records.clear()

    # Reads

    async def visits_for(self, restaurant_ids: Iterable[str]) -> dict[str, VisitRecord]:
        return await self.bulk_fetch(restaurant_ids)

    async def bulk_fetch(
        self,
        restaurant_ids: Iterable[str],
        reason: FetchReason = FetchReason.INITIAL_LOAD,
    ) -> dict[str, VisitRecord]:
        """
        Fetch visit records for a list of restaurants.

        A 401 right after sign-in can mean the backend has not seen the new
        token yet, so exactly one retry follows after a short delay. A second
        401, or no token at all for the retry, is terminal and forces sign-out.
        """
        user_id = self._current_user()
        ids = list(dict.fromkeys(restaurant_ids))
        if not user_id or not ids:
            return {}

        body = {"restaurantIds": ids}
        try:
            response = await self._dispatcher.post(
                "/restaurants/visits", body, purge_on_unauthorized=False
            )
        except AuthenticationExpiredError:
            delay = self._retry_delays[reason]
            logger.warning(
                f"Visits fetch rejected ({reason.value}), retrying once in {delay}s"
            )
            await self._sleep(delay)
            try:
                response = await self._dispatcher.post("/restaurants/visits", body)
            except AuthenticationExpiredError as e:
                # No token left: the retry never reached the store
                if not e.purged:
                    await self._dispatcher.expire_authentication()
                raise

        data = response.json() or {}
        records: dict[str, VisitRecord] = {}
        for restaurant_id in ids:
            raw = data.get(restaurant_id) or {}
            records[restaurant_id] = VisitRecord(
                user_id=user_id,
                restaurant_id=restaurant_id,
                visited=raw.get("visited", False),
                visit_count=raw.get("visitCount", 0),
            )
        self._records.update(records)
        return records

    # Mutations

    async def increment_visit(self, restaurant_id: str) -> VisitRecord:
        return await self._mutate(
            restaurant_id,
            apply_increment,
            lambda: self._dispatcher.post(f"/restaurants/{restaurant_id}/visits"),
        )

    async def decrement_visit(self, restaurant_id: str) -> VisitRecord:
        """Remove one visit. Raises VisitCountError, without any request, at count 0."""
        try:
            return await self._mutate(
                restaurant_id,
                apply_decrement,
                lambda: self._dispatcher.patch(
                    f"/restaurants/{restaurant_id}/visits", {"action": "remove_visit"}
                ),
            )
        except ResponseError as e:
            # Another device got the count to zero first
            if e.status_code == 400:
                raise VisitCountError(restaurant_id) from e
            raise

    async def toggle_visited(self, restaurant_id: str) -> VisitRecord:
        return await self._mutate(
            restaurant_id,
            apply_toggle,
            lambda: self._dispatcher.patch(
                f"/restaurants/{restaurant_id}/visits", {"action": "toggle_visited"}
            ),
        )

    async def _mutate(
        self,
        restaurant_id: str,
        rule: Callable[[VisitRecord], VisitRecord],
        send: Callable[[], Awaitable[httpx.Response]],
    ) -> VisitRecord:
        user_id = self._current_user()
        if not user_id:
            raise AuthenticationExpiredError("Sign in to track visits")

        previous = self.record_for(restaurant_id)
        # Rejected rules raise here, before any state or network change
        self._records[restaurant_id] = rule(previous)

        try:
            response = await send()
        except AuthenticationExpiredError:
            # The purge already dropped this user's records
            self._records.pop(restaurant_id, None)
            raise
        except Exception:
            self._records[restaurant_id] = previous
            raise

        data = response.json()
        record = VisitRecord(
            user_id=user_id,
            restaurant_id=restaurant_id,
            visited=data.get("visited", False),
            visit_count=data.get("visitCount", 0),
        )
        self._records[restaurant_id] = record
        return record
