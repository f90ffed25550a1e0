"""Error handlers - translate service layer errors into HTTP responses.

Invariants:
    - ProfileNotFoundError → 404 with one body for private and missing profiles
    - AuthenticationExpiredError → 401
    - CircuitOpenError → 503 with Retry-After
    - RequestTimeoutError → 504, NetworkError → 502
    - ResponseError → the record store's own status
    - VisitCountError → 400
"""

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from foodlist.exceptions import (
    BadGatewayError,
    GatewayTimeoutError,
    NotFoundError,
    ServiceUnavailableError,
    UnauthorizedError,
)
from foodlist.services.errors import (
    AuthenticationExpiredError,
    CircuitOpenError,
    NetworkError,
    ProfileNotFoundError,
    RequestTimeoutError,
    ResponseError,
    ServiceError,
    VisitCountError,
)

PROFILE_NOT_FOUND_DETAIL = "Profile not found"


def register_error_handlers(app: FastAPI) -> None:
    """Register all service error handlers on the FastAPI app."""

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        http_exc = to_http_exception(exc)
        if http_exc.status_code >= 500:
            logger.error(f"{type(exc).__name__} on {request.url.path}: {exc}")
        else:
            logger.info(f"{type(exc).__name__} on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=http_exc.status_code,
            content={"detail": http_exc.detail},
            headers=http_exc.headers,
        )


def to_http_exception(exc: ServiceError) -> HTTPException:
    if isinstance(exc, ProfileNotFoundError):
        # Same answer whether the profile is private or does not exist
        return NotFoundError(PROFILE_NOT_FOUND_DETAIL)
    if isinstance(exc, AuthenticationExpiredError):
        return UnauthorizedError(str(exc))
    if isinstance(exc, CircuitOpenError):
        return ServiceUnavailableError(str(exc), retry_after=exc.reset_after_seconds)
    if isinstance(exc, RequestTimeoutError):
        return GatewayTimeoutError(str(exc))
    if isinstance(exc, NetworkError):
        return BadGatewayError(str(exc))
    if isinstance(exc, VisitCountError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, ResponseError):
        return HTTPException(status_code=exc.status_code, detail=exc.body or str(exc))
    return BadGatewayError(str(exc))
