"""
Service layer - resilient, authenticated access to the record store.

Provides:
- CircuitBreaker: Fast-fails calls while the record store is unhealthy
- TokenCache: Short-lived access token slot with single-flight refresh
- ResilientRequestDispatcher: Authenticated calls with timeout retry and 401 purge
- SessionLifecycleManager: Session state, proactive refresh and forced logout
- AccessLevelResolver: OWNER / PUBLIC / PRIVATE / NONE for a viewer and profile
- UserAggregateCache: Per-user profile aggregates with TTL
- VisitStateSynchronizer: Visited flag and visit count per restaurant
"""

from foodlist.services.errors import (
    ServiceError,
    AuthenticationExpiredError,
    CircuitOpenError,
    RequestTimeoutError,
    NetworkError,
    ResponseError,
    ProfileNotFoundError,
    VisitCountError,
    IdentityError,
)
from foodlist.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from foodlist.services.token_cache import TokenCache
from foodlist.services.auth_state import LocalAuthState
from foodlist.services.client import DispatcherConfig, ResilientRequestDispatcher
from foodlist.services.session_manager import SessionLifecycleManager, SessionState
from foodlist.services.access import AccessLevelResolver
from foodlist.services.aggregate_cache import UserAggregateCache
from foodlist.services.profile_view import ProfileViewService
from foodlist.services.visits import VisitStateSynchronizer

__all__ = [
    # Errors
    "ServiceError",
    "AuthenticationExpiredError",
    "CircuitOpenError",
    "RequestTimeoutError",
    "NetworkError",
    "ResponseError",
    "ProfileNotFoundError",
    "VisitCountError",
    "IdentityError",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    # Auth
    "TokenCache",
    "LocalAuthState",
    "SessionLifecycleManager",
    "SessionState",
    # Client
    "DispatcherConfig",
    "ResilientRequestDispatcher",
    # Profiles and visits
    "AccessLevelResolver",
    "UserAggregateCache",
    "ProfileViewService",
    "VisitStateSynchronizer",
]
