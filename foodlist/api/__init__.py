"""FastAPI application exposing the session layer to UI clients."""

from fastapi import FastAPI

from foodlist.api.errors import register_error_handlers
from foodlist.api.routes import router
from foodlist.context import AppContext


def create_app(context: AppContext) -> FastAPI:
    """Create the FastAPI app around an already-built context.

    Args:
        context: AppContext the routes operate on

    Returns:
        FastAPI app
    """
    app = FastAPI(title="Foodlist Session API")
    app.state.context = context
    app.include_router(router)
    register_error_handlers(app)
    return app
