"""
AccessLevelResolver - Decides how much of a profile a viewer may see.

Rules, in order:
- no profile matches the identifier → NONE
- viewer owns the profile → OWNER (public flag ignored)
- profile is public → PUBLIC
- otherwise → PRIVATE

PRIVATE and NONE stay distinct internally, but callers outside the owner must not
be able to tell them apart: both surface as ProfileNotFoundError (HTTP 404).
"""

import re

from loguru import logger

from foodlist.services.client import ResilientRequestDispatcher
from foodlist.services.errors import ProfileNotFoundError, ResponseError
from foodlist.services.types import AccessLevel, AccessResult, Profile

# Public short-code, e.g. FL000001
USER_CODE_PATTERN = re.compile(r"^[A-Z]{2}\d{6}$")


def is_user_code(identifier: str) -> bool:
    return bool(USER_CODE_PATTERN.match(identifier))


def resolve(viewer_id: str | None, profile: Profile | None) -> AccessResult:
    """Compute the access level of `viewer_id` on `profile`."""
    if profile is None:
        return AccessResult(level=AccessLevel.NONE, reason="PROFILE_NOT_FOUND")

    target_user_id = profile.user_id
    if viewer_id and viewer_id == target_user_id:
        return AccessResult(level=AccessLevel.OWNER, target_user_id=target_user_id)

    if profile.public_profile:
        return AccessResult(level=AccessLevel.PUBLIC, target_user_id=target_user_id)

    return AccessResult(
        level=AccessLevel.PRIVATE,
        target_user_id=target_user_id,
        reason="PRIVATE_PROFILE",
    )


def ensure_visible(result: AccessResult, identifier: str) -> AccessResult:
    """Raise the same not-found error for private and missing profiles."""
    if not result.can_access:
        logger.debug(f"Hiding profile '{identifier}' ({result.level.value})")
        raise ProfileNotFoundError(identifier)
    return result


class AccessLevelResolver:
    """Looks profiles up through the dispatcher and applies `resolve`."""

    def __init__(self, dispatcher: ResilientRequestDispatcher):
        self._dispatcher = dispatcher

    async def fetch_profile(self, identifier: str) -> Profile | None:
        """Read a profile by internal id or public short-code; None when absent."""
        params = {"by": "code" if is_user_code(identifier) else "id"}
        try:
            response = await self._dispatcher.get(f"/users/{identifier}", params=params)
        except ResponseError as e:
            if e.status_code == 404:
                return None
            raise
        return Profile.model_validate(response.json())

    async def resolve_access(self, viewer_id: str | None, identifier: str) -> AccessResult:
        result, _ = await self.resolve_with_profile(viewer_id, identifier)
        return result

    async def resolve_with_profile(
        self, viewer_id: str | None, identifier: str
    ) -> tuple[AccessResult, Profile | None]:
        """Resolve access for `identifier`, returning the profile read on the way."""
        profile = await self.fetch_profile(identifier)
        result = resolve(viewer_id, profile)
        logger.debug(
            f"Access to '{identifier}' for viewer {viewer_id or 'anonymous'}: "
            f"{result.level.value}"
        )
        return result, profile
