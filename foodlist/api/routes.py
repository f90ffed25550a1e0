"""HTTP routes over the application context."""

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from foodlist.context import AppContext
from foodlist.exceptions import ValidationError
from foodlist.services.access import ensure_visible
from foodlist.services.visits import FetchReason

router = APIRouter()

VISIT_ACTIONS = ("toggle_visited", "remove_visit")


class VisitsQuery(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    restaurant_ids: list[str] = Field(alias="restaurantIds")


class VisitAction(BaseModel):
    action: str


def get_context(request: Request) -> AppContext:
    return request.app.state.context


@router.get("/auth/session")
async def get_session(ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
    """Current session snapshot, without the tokens."""
    auth = ctx.auth()
    session = None
    if auth.session is not None:
        session = auth.session.model_dump(exclude={"access_token", "refresh_token"})
    return {
        "session": session,
        "user": auth.user.model_dump() if auth.user else None,
        "loading": auth.loading,
    }


@router.get("/users/{identifier}/access")
async def get_access(identifier: str, ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
    result = await ctx.resolve_access(ctx.session_manager.user_id, identifier)
    ensure_visible(result, identifier)
    return {
        "canAccess": result.can_access,
        "accessLevel": result.level.value,
        "targetUserId": result.target_user_id,
    }


@router.get("/users/{identifier}")
async def get_profile(identifier: str, ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
    view = await ctx.load_profile(identifier)
    return view.model_dump(mode="json")


@router.post("/restaurants/visits")
async def get_visits(
    query: VisitsQuery,
    reason: FetchReason = FetchReason.INITIAL_LOAD,
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    records = await ctx.visits.bulk_fetch(query.restaurant_ids, reason)
    return {
        restaurant_id: record.model_dump(by_alias=True)
        for restaurant_id, record in records.items()
    }


@router.post("/restaurants/{restaurant_id}/visits")
async def add_visit(restaurant_id: str, ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
    record = await ctx.increment_visit(restaurant_id)
    return record.model_dump(by_alias=True)


@router.patch("/restaurants/{restaurant_id}/visits")
async def update_visit(
    restaurant_id: str, body: VisitAction, ctx: AppContext = Depends(get_context)
) -> dict[str, Any]:
    if body.action == "toggle_visited":
        record = await ctx.toggle_visited(restaurant_id)
    elif body.action == "remove_visit":
        record = await ctx.decrement_visit(restaurant_id)
    else:
        raise ValidationError(
            f"Unknown action '{body.action}', expected one of {', '.join(VISIT_ACTIONS)}"
        )
    return record.model_dump(by_alias=True)


@router.get("/health")
async def health_check(ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
    return {"status": "ok", "service": "foodlist", **ctx.get_health_status()}
