import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class Settings(BaseModel):
    # Record store
    api_base_url: str = Field(default="http://localhost:3000/api", alias="API_BASE_URL")
    request_timeout: float = Field(default=10.0, alias="REQUEST_TIMEOUT")
    request_max_retries: int = Field(default=2, alias="REQUEST_MAX_RETRIES")
    retry_base_delay: float = Field(default=1.0, alias="RETRY_BASE_DELAY")

    # Identity backend
    identity_url: str = Field(default="http://localhost:54321/auth/v1", alias="IDENTITY_URL")
    identity_api_key: str = Field(default="", alias="IDENTITY_API_KEY")

    # Circuit breaker
    circuit_failure_threshold: int = Field(default=5, alias="CIRCUIT_FAILURE_THRESHOLD")
    circuit_reset_timeout: float = Field(default=30.0, alias="CIRCUIT_RESET_TIMEOUT")

    # Session and token lifetimes (seconds)
    token_cache_ttl: float = Field(default=300.0, alias="TOKEN_CACHE_TTL")
    session_check_interval: float = Field(default=60.0, alias="SESSION_CHECK_INTERVAL")
    session_refresh_margin: float = Field(default=300.0, alias="SESSION_REFRESH_MARGIN")

    # Profile aggregates
    aggregate_cache_ttl: float = Field(default=300.0, alias="AGGREGATE_CACHE_TTL")
    aggregate_sweep_interval: float = Field(default=60.0, alias="AGGREGATE_SWEEP_INTERVAL")
    profile_page_size: int = Field(default=10, alias="PROFILE_PAGE_SIZE")

    # Visits: delay before the single retry after a post-sign-in 401
    visits_retry_delay_initial: float = Field(default=1.0, alias="VISITS_RETRY_DELAY_INITIAL")
    visits_retry_delay_refocus: float = Field(default=0.5, alias="VISITS_RETRY_DELAY_REFOCUS")

    # Local credential storage
    database_url: str = Field(
        default="sqlite+aiosqlite:///./foodlist_auth.db", alias="DATABASE_URL"
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    # HTTP server
    api_host: str = Field(default="127.0.0.1", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


def load_settings() -> Settings:
    """Build settings from the process environment (after .env is loaded)."""
    return Settings.model_validate(dict(os.environ))


global_settings = load_settings()
