"""Tests for access level resolution."""
import pytest
from conftest import FakeRecordStore, make_profile

from foodlist.services.access import (
    AccessLevelResolver,
    ensure_visible,
    is_user_code,
    resolve,
)
from foodlist.services.client import ResilientRequestDispatcher
from foodlist.services.errors import ProfileNotFoundError
from foodlist.services.types import AccessLevel, Profile


def _profile(public: bool) -> Profile:
    return Profile.model_validate(make_profile("owner-1", "FL000001", public=public))


class TestResolve:
    """Tests for the pure resolve function."""

    def test__resolve__missing_profile_is_none(self) -> None:
        """No profile means NONE."""
        result = resolve("viewer", None)

        assert result.level == AccessLevel.NONE
        assert result.can_access is False

    def test__resolve__owner_of_private_profile(self) -> None:
        """The owner sees their own profile even when it is private."""
        result = resolve("owner-1", _profile(public=False))

        assert result.level == AccessLevel.OWNER
        assert result.target_user_id == "owner-1"

    def test__resolve__anonymous_on_private_profile(self) -> None:
        """An anonymous viewer of a private profile gets PRIVATE."""
        result = resolve(None, _profile(public=False))

        assert result.level == AccessLevel.PRIVATE
        assert result.can_access is False

    def test__resolve__anonymous_on_public_profile(self) -> None:
        """An anonymous viewer of a public profile gets PUBLIC."""
        assert resolve(None, _profile(public=True)).level == AccessLevel.PUBLIC

    def test__resolve__other_user_on_public_profile(self) -> None:
        """A signed-in non-owner of a public profile gets PUBLIC."""
        assert resolve("someone-else", _profile(public=True)).level == AccessLevel.PUBLIC

    def test__ensure_visible__private_and_missing_look_the_same(self) -> None:
        """PRIVATE and NONE raise the same error."""
        with pytest.raises(ProfileNotFoundError) as private_exc:
            ensure_visible(resolve(None, _profile(public=False)), "FL000001")
        with pytest.raises(ProfileNotFoundError) as missing_exc:
            ensure_visible(resolve(None, None), "FL000001")

        assert str(private_exc.value) == str(missing_exc.value)

    @pytest.mark.parametrize(
        ("identifier", "expected"),
        [("FL000001", True), ("fl000001", False), ("FL00001", False), ("uuid-1", False)],
    )
    def test__is_user_code(self, identifier: str, expected: bool) -> None:
        """Short codes are two capitals followed by six digits."""
        assert is_user_code(identifier) is expected


class TestAccessLevelResolver:
    """Tests for AccessLevelResolver."""

    async def test__resolve_access__by_short_code(
        self, dispatcher: ResilientRequestDispatcher, record_store: FakeRecordStore,
    ) -> None:
        """Short codes are looked up with by=code."""
        record_store.profiles.append(make_profile("owner-1", "FL000001", public=True))
        resolver = AccessLevelResolver(dispatcher)

        result = await resolver.resolve_access("user-1", "FL000001")

        assert result.level == AccessLevel.PUBLIC
        assert record_store.requests[0].url.params["by"] == "code"

    async def test__resolve_access__by_internal_id(
        self, dispatcher: ResilientRequestDispatcher, record_store: FakeRecordStore,
    ) -> None:
        """Other identifiers are looked up with by=id."""
        record_store.profiles.append(make_profile("user-1", "FL000002", public=False))
        resolver = AccessLevelResolver(dispatcher)

        result = await resolver.resolve_access("user-1", "user-1")

        assert result.level == AccessLevel.OWNER
        assert record_store.requests[0].url.params["by"] == "id"

    async def test__resolve_access__404_is_none(
        self, dispatcher: ResilientRequestDispatcher, record_store: FakeRecordStore,
    ) -> None:
        """A profile the store does not know resolves to NONE."""
        resolver = AccessLevelResolver(dispatcher)

        result = await resolver.resolve_access(None, "FL999999")

        assert result.level == AccessLevel.NONE
