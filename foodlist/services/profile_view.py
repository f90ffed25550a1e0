"""
ProfileViewService - Loads a profile page for a viewer, gated by access level.

OWNER sees every field and a larger page of each collection. PUBLIC sees
aggregate counts and a bounded page of reviews, lists and restaurants, never
account settings. PRIVATE and NONE are reported as not found.
"""

import asyncio
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field

from foodlist.services.access import AccessLevelResolver, ensure_visible
from foodlist.services.aggregate_cache import UserAggregateCache, UserAggregateCacheEntry
from foodlist.services.client import ResilientRequestDispatcher
from foodlist.services.types import AccessLevel, Page, Profile

# Account settings only the owner may read
OWNER_ONLY_FIELDS = {"phone_number"}


class ProfileView(BaseModel):
    """What the profile page renders."""

    access_level: AccessLevel
    profile: dict[str, Any]
    reviews: list[dict[str, Any]] = Field(default_factory=list)
    lists: list[dict[str, Any]] = Field(default_factory=list)
    restaurants: list[dict[str, Any]] = Field(default_factory=list)
    from_cache: bool = False


class ProfileViewService:
    def __init__(
        self,
        dispatcher: ResilientRequestDispatcher,
        resolver: AccessLevelResolver,
        cache: UserAggregateCache,
        page_size: int = 10,
        owner_page_size: int = 50,
    ):
        self._dispatcher = dispatcher
        self._resolver = resolver
        self._cache = cache
        self._page_size = page_size
        self._owner_page_size = owner_page_size

    async def load(self, viewer_id: str | None, identifier: str) -> ProfileView:
        """
        Resolve access and return the view, from cache when possible.

        Raises:
            ProfileNotFoundError: profile is private to this viewer or missing
        """
        result, profile = await self._resolver.resolve_with_profile(viewer_id, identifier)
        ensure_visible(result, identifier)

        user_id = result.target_user_id
        entry = await self._cache.get(user_id)
        if entry is not None and entry.access_level == result.level:
            return self._to_view(entry, from_cache=True)

        entry = await self._fetch(profile, result.level)
        return self._to_view(entry, from_cache=False)

    async def refresh_collection(self, viewer_id: str | None, identifier: str, name: str) -> None:
        """Refetch one collection ("reviews", "lists" or "restaurants") into the cache."""
        result, _ = await self._resolver.resolve_with_profile(viewer_id, identifier)
        ensure_visible(result, identifier)
        page = await self._fetch_page(result.target_user_id, name, result.level)
        updater = {
            "reviews": self._cache.update_reviews,
            "lists": self._cache.update_lists,
            "restaurants": self._cache.update_restaurants,
        }[name]
        await updater(result.target_user_id, page.data)

    async def _fetch(self, profile: Profile, level: AccessLevel) -> UserAggregateCacheEntry:
        user_id = profile.user_id
        reviews, lists, restaurants = await asyncio.gather(
            self._fetch_page(user_id, "reviews", level),
            self._fetch_page(user_id, "lists", level),
            self._fetch_page(user_id, "restaurants", level),
        )
        logger.debug(
            f"Fetched profile {user_id} as {level.value}: {len(reviews.data)} reviews, "
            f"{len(lists.data)} lists, {len(restaurants.data)} restaurants"
        )
        return await self._cache.set(
            user_id,
            profile,
            reviews=reviews.data,
            lists=lists.data,
            restaurants=restaurants.data,
            access_level=level,
        )

    async def _fetch_page(self, user_id: str, collection: str, level: AccessLevel) -> Page:
        limit = self._owner_page_size if level == AccessLevel.OWNER else self._page_size
        response = await self._dispatcher.get(
            f"/users/{user_id}/{collection}",
            params={"page": 1, "limit": limit, "access_level": level.value},
        )
        page = Page.model_validate(response.json())
        # Bound the page whatever the store returned
        page.data = page.data[:limit]
        return page

    @staticmethod
    def _to_view(entry: UserAggregateCacheEntry, from_cache: bool) -> ProfileView:
        exclude = None if entry.access_level == AccessLevel.OWNER else OWNER_ONLY_FIELDS
        return ProfileView(
            access_level=entry.access_level,
            profile=entry.profile.model_dump(exclude=exclude),
            reviews=entry.reviews,
            lists=entry.lists,
            restaurants=entry.restaurants,
            from_cache=from_cache,
        )
