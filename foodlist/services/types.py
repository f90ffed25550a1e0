"""
Session, profile and visit types using Pydantic models.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AuthUser(BaseModel):
    """User attached to a session by the identity backend."""

    id: str
    email: str | None = None


class Session(BaseModel):
    """Bearer session. Replaced wholesale on refresh or sign-in."""

    access_token: str
    refresh_token: str
    expires_at: int  # epoch seconds, the only clock used for refresh scheduling
    subject_id: str
    user: AuthUser | None = None

    def seconds_until_expiry(self, now: float) -> float:
        return self.expires_at - now


class SessionEvent(str, Enum):
    """Notifications delivered by the identity backend."""

    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    PASSWORD_RECOVERY = "PASSWORD_RECOVERY"
    INITIAL_SESSION = "INITIAL_SESSION"


class AccessLevel(str, Enum):
    """Visibility tier of a profile for a given viewer."""

    OWNER = "OWNER"
    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"
    NONE = "NONE"


class AccessResult(BaseModel):
    """Outcome of access resolution."""

    level: AccessLevel
    target_user_id: str | None = None
    reason: str | None = None

    @property
    def can_access(self) -> bool:
        return self.level in (AccessLevel.OWNER, AccessLevel.PUBLIC)


class Profile(BaseModel):
    """Public profile row as returned by the record store."""

    model_config = ConfigDict(extra="ignore")

    user_id: str
    user_id_code: str | None = None
    display_name: str = ""
    avatar_url: str | None = None
    location: str | None = None
    bio: str | None = None
    website: str | None = None
    phone_number: str | None = None
    public_profile: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    total_restaurants_visited: int = 0
    total_reviews: int = 0
    total_lists: int = 0
    total_restaurants_added: int = 0


class Page(BaseModel):
    """One page of a paged collection."""

    model_config = ConfigDict(populate_by_name=True)

    data: list[dict[str, Any]] = Field(default_factory=list)
    total: int = 0
    has_more: bool = Field(default=False, alias="hasMore")


class VisitRecord(BaseModel):
    """Visit state of one restaurant for one user."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str | None = Field(default=None, alias="userId")
    restaurant_id: str = Field(alias="restaurantId")
    visited: bool = False
    visit_count: int = Field(default=0, ge=0, alias="visitCount")
