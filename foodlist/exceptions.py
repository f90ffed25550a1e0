"""
Custom exceptions and error handlers
"""

import math

from fastapi import HTTPException, status


class ValidationError(HTTPException):
    """Validation error exception"""

    def __init__(self, detail: str = "Validation error"):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail
        )


class NotFoundError(HTTPException):
    """Not found error exception. Also used for profiles the viewer may not see."""

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class UnauthorizedError(HTTPException):
    """Unauthorized error exception"""

    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class BadGatewayError(HTTPException):
    """Upstream gave no usable response"""

    def __init__(self, detail: str = "Bad gateway"):
        super().__init__(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)


class ServiceUnavailableError(HTTPException):
    """Upstream is being short-circuited"""

    def __init__(self, detail: str = "Service unavailable", retry_after: float | None = None):
        headers = {"Retry-After": str(math.ceil(retry_after))} if retry_after else None
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail, headers=headers
        )


class GatewayTimeoutError(HTTPException):
    """Upstream did not answer in time"""

    def __init__(self, detail: str = "Gateway timeout"):
        super().__init__(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=detail)
