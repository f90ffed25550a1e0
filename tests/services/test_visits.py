"""Tests for visit state rules and synchronization."""
import httpx
import pytest
from conftest import FakeIdentityBackend, FakeRecordStore, RecordingSleep

from foodlist.services.client import ResilientRequestDispatcher
from foodlist.services.errors import (
    AuthenticationExpiredError,
    NetworkError,
    VisitCountError,
)
from foodlist.services.token_cache import TokenCache
from foodlist.services.types import VisitRecord
from foodlist.services.visits import (
    FetchReason,
    VisitStateSynchronizer,
    apply_decrement,
    apply_increment,
    apply_toggle,
)


def _record(visited: bool, count: int) -> VisitRecord:
    return VisitRecord(user_id="user-1", restaurant_id="r1", visited=visited, visit_count=count)


@pytest.fixture
def current_user() -> dict[str, str | None]:
    return {"id": "user-1"}


@pytest.fixture
def visits(
    dispatcher: ResilientRequestDispatcher,
    sleep: RecordingSleep,
    current_user: dict[str, str | None],
) -> VisitStateSynchronizer:
    return VisitStateSynchronizer(
        dispatcher, current_user=lambda: current_user["id"], sleep=sleep
    )


class TestVisitRules:
    """Tests for the pure mutation rules."""

    def test__apply_increment__marks_visited(self) -> None:
        """Incrementing sets visited and adds one."""
        record = apply_increment(_record(False, 0))

        assert record.visited is True
        assert record.visit_count == 1

    def test__apply_decrement__at_zero_rejected(self) -> None:
        """Removing a visit at count 0 is refused."""
        with pytest.raises(VisitCountError):
            apply_decrement(_record(False, 0))

    def test__apply_decrement__to_zero_clears_visited(self) -> None:
        """Reaching zero clears the visited flag."""
        record = apply_decrement(_record(True, 1))

        assert record.visit_count == 0
        assert record.visited is False

    def test__apply_decrement__above_zero_keeps_visited(self) -> None:
        """Visited stays set while visits remain."""
        record = apply_decrement(_record(True, 3))

        assert record.visit_count == 2
        assert record.visited is True

    def test__apply_toggle__from_zero_seeds_one_visit(self) -> None:
        """Marking visited with no visits records one."""
        record = apply_toggle(_record(False, 0))

        assert record.visited is True
        assert record.visit_count == 1

    def test__apply_toggle__keeps_existing_count(self) -> None:
        """Marking visited with visits already counted leaves the count alone."""
        record = apply_toggle(_record(False, 3))

        assert record.visited is True
        assert record.visit_count == 3

    def test__apply_toggle__unmark_keeps_count(self) -> None:
        """Unmarking visited does not erase the count."""
        record = apply_toggle(_record(True, 3))

        assert record.visited is False
        assert record.visit_count == 3


class TestBulkFetch:
    """Tests for VisitStateSynchronizer.bulk_fetch."""

    async def test__bulk_fetch__fills_defaults_for_unknown_ids(
        self, visits: VisitStateSynchronizer, record_store: FakeRecordStore,
    ) -> None:
        """Known records come from the store; the rest default to not visited."""
        record_store.visits["r1"] = {"visited": True, "visitCount": 2}

        records = await visits.bulk_fetch(["r1", "r2"])

        assert records["r1"].visit_count == 2
        assert records["r1"].visited is True
        assert records["r2"].visit_count == 0
        assert records["r2"].visited is False
        assert records["r2"].user_id == "user-1"

    async def test__bulk_fetch__no_user_makes_no_request(
        self,
        visits: VisitStateSynchronizer,
        record_store: FakeRecordStore,
        current_user: dict[str, str | None],
    ) -> None:
        """Signed-out callers get an empty map without network."""
        current_user["id"] = None

        assert await visits.bulk_fetch(["r1"]) == {}
        assert record_store.requests == []

    async def test__bulk_fetch__no_ids_makes_no_request(
        self, visits: VisitStateSynchronizer, record_store: FakeRecordStore,
    ) -> None:
        """An empty id list short-circuits."""
        assert await visits.bulk_fetch([]) == {}
        assert record_store.requests == []

    async def test__bulk_fetch__401_retried_once_after_delay(
        self,
        visits: VisitStateSynchronizer,
        record_store: FakeRecordStore,
        sleep: RecordingSleep,
        token_cache: TokenCache,
    ) -> None:
        """A first 401 is retried once after 1s without purging the session."""
        record_store.queue(httpx.Response(401))
        record_store.visits["r1"] = {"visited": True, "visitCount": 1}

        records = await visits.bulk_fetch(["r1"])

        assert records["r1"].visited is True
        assert sleep.delays == [1.0]
        assert len(record_store.requests_to("POST", "/restaurants/visits")) == 2
        assert token_cache.peek() is not None

    async def test__bulk_fetch__refocus_uses_shorter_delay(
        self,
        visits: VisitStateSynchronizer,
        record_store: FakeRecordStore,
        sleep: RecordingSleep,
    ) -> None:
        """A refetch on refocus waits 0.5s before its retry."""
        record_store.queue(httpx.Response(401))

        await visits.bulk_fetch(["r1"], FetchReason.REFOCUS)

        assert sleep.delays == [0.5]

    async def test__bulk_fetch__second_401_is_terminal(
        self,
        visits: VisitStateSynchronizer,
        record_store: FakeRecordStore,
        token_cache: TokenCache,
    ) -> None:
        """Two 401s in a row end the session."""
        record_store.queue(httpx.Response(401), httpx.Response(401))

        with pytest.raises(AuthenticationExpiredError):
            await visits.bulk_fetch(["r1"])

        assert len(record_store.requests) == 2
        assert token_cache.peek() is None

    async def test__bulk_fetch__no_token_for_retry_forces_sign_out(
        self,
        dispatcher: ResilientRequestDispatcher,
        record_store: FakeRecordStore,
        identity: FakeIdentityBackend,
        token_cache: TokenCache,
    ) -> None:
        """A retry that finds no token at all still notifies expiry listeners."""
        expired: list[str] = []
        dispatcher.on_authentication_expired(lambda: expired.append("expired"))

        async def session_lost(delay: float) -> None:
            identity.session = None
            token_cache.invalidate()

        visits = VisitStateSynchronizer(
            dispatcher, current_user=lambda: "user-1", sleep=session_lost
        )
        record_store.queue(httpx.Response(401))

        with pytest.raises(AuthenticationExpiredError):
            await visits.bulk_fetch(["r1"])

        assert expired == ["expired"]
        assert len(record_store.requests) == 1
        assert token_cache.peek() is None


class TestVisitMutations:
    """Tests for increment, decrement and toggle."""

    async def test__decrement_visit__at_zero_makes_no_request(
        self, visits: VisitStateSynchronizer, record_store: FakeRecordStore,
    ) -> None:
        """Decrement at count 0 fails locally with no state change and no request."""
        await visits.bulk_fetch(["r1"])
        requests_before = len(record_store.requests)

        with pytest.raises(VisitCountError):
            await visits.decrement_visit("r1")

        assert len(record_store.requests) == requests_before
        assert visits.record_for("r1").visit_count == 0

    async def test__increment_visit__adopts_server_record(
        self, visits: VisitStateSynchronizer, record_store: FakeRecordStore,
    ) -> None:
        """The store's answer replaces the optimistic record."""
        record_store.visits["r1"] = {"visited": True, "visitCount": 4}

        record = await visits.increment_visit("r1")

        assert record.visit_count == 5
        assert visits.record_for("r1").visit_count == 5

    async def test__toggle_visited__from_zero(
        self, visits: VisitStateSynchronizer, record_store: FakeRecordStore,
    ) -> None:
        """Toggling an unvisited restaurant records one visit."""
        record = await visits.toggle_visited("r1")

        assert record.visited is True
        assert record.visit_count == 1
        request = record_store.requests_to("PATCH", "/restaurants/r1/visits")[0]
        assert b"toggle_visited" in request.content

    async def test__decrement_visit__server_rejection_becomes_count_error(
        self, visits: VisitStateSynchronizer, record_store: FakeRecordStore,
    ) -> None:
        """A 400 from the store (count already zero elsewhere) rolls back and raises."""
        record_store.visits["r1"] = {"visited": True, "visitCount": 1}
        await visits.bulk_fetch(["r1"])
        record_store.queue(httpx.Response(400, json={"error": "No visits to remove"}))

        with pytest.raises(VisitCountError):
            await visits.decrement_visit("r1")

        assert visits.record_for("r1").visit_count == 1

    async def test__mutation__failure_restores_previous_record(
        self, visits: VisitStateSynchronizer, record_store: FakeRecordStore,
    ) -> None:
        """Network failure undoes the optimistic update."""
        record_store.queue(httpx.ConnectError("offline"))

        with pytest.raises(NetworkError):
            await visits.increment_visit("r1")

        assert visits.record_for("r1").visit_count == 0
        assert visits.record_for("r1").visited is False

    async def test__mutation__requires_user(
        self,
        visits: VisitStateSynchronizer,
        record_store: FakeRecordStore,
        current_user: dict[str, str | None],
    ) -> None:
        """Mutations without a signed-in user fail before any request."""
        current_user["id"] = None

        with pytest.raises(AuthenticationExpiredError):
            await visits.toggle_visited("r1")

        assert record_store.requests == []

    async def test__clear__forgets_records(
        self, visits: VisitStateSynchronizer, record_store: FakeRecordStore,
    ) -> None:
        """Cleared records fall back to the implicit never-visited record."""
        record_store.visits["r1"] = {"visited": True, "visitCount": 2}
        await visits.bulk_fetch(["r1"])

        visits.clear()

        assert visits.record_for("r1").visit_count == 0
