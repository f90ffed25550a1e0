"""
Service layer exceptions.
"""


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class AuthenticationExpiredError(ServiceError):
    """Session is invalid or expired. Terminal: the user must sign in again.

    `purged` is True once local auth state was cleared and expiry listeners ran.
    """

    def __init__(
        self,
        message: str = "Authentication expired",
        service_id: str | None = None,
        purged: bool = False,
    ):
        self.purged = purged
        super().__init__(message, service_id=service_id)


class CircuitOpenError(ServiceError):
    """Circuit breaker is open, request blocked."""

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker open for service '{service_id}', "
            f"retry after {reset_after_seconds:.1f}s",
            service_id=service_id,
        )


class RequestTimeoutError(ServiceError):
    """Request timed out on every attempt."""

    def __init__(self, service_id: str, timeout: float, attempts: int = 1):
        self.timeout = timeout
        self.attempts = attempts
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s "
            f"({attempts} attempts)",
            service_id=service_id,
        )


class NetworkError(ServiceError):
    """No response at all (connection refused, DNS failure, reset)."""

    pass


class ResponseError(ServiceError):
    """Backend answered with a non-2xx status other than 401."""

    def __init__(self, status_code: int, body: str, service_id: str | None = None):
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP {status_code}: {body[:200]}", service_id=service_id)


class ProfileNotFoundError(ServiceError):
    """Profile does not exist or is not visible to the viewer."""

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Profile '{identifier}' not found")


class VisitCountError(ServiceError):
    """Visit mutation rejected because the count is already zero."""

    def __init__(self, restaurant_id: str):
        self.restaurant_id = restaurant_id
        super().__init__(
            f"Cannot remove visit for restaurant '{restaurant_id}': "
            "visit count is already 0"
        )


class IdentityError(ServiceError):
    """Identity backend rejected an operation."""

    pass
