"""
Auto-REST Query Engine - Configuration
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application
    APP_NAME: str = "Auto-REST Query Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Catalog database (exposed entities, field and row policies)
    DATABASE_URL: str = "sqlite:///./data/autorest.db"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Pagination
    DEFAULT_PAGE_SIZE: int = 25

    # Target database pools
    POOL_SIZE: int = 5
    MAX_POOLS: int = 32
    CONNECT_TIMEOUT_SECONDS: int = 10
    QUERY_TIMEOUT_SECONDS: float = 30.0

    # Request deduplication
    DEDUP_GRACE_SECONDS: float = 0.1
    DEDUP_MAX_ENTRIES: int = 1024

    # Response cache
    RESPONSE_CACHE_ENABLED: bool = False
    RESPONSE_CACHE_TTL_SECONDS: int = 30
    RESPONSE_CACHE_MAX_TTL_SECONDS: int = 3600
    RESPONSE_CACHE_MAX_ENTRIES: int = 1024

    # Change notifications
    REALTIME_POLL_INTERVAL_SECONDS: float = 5.0
    REALTIME_PAGE_SIZE: int = 100
    WEBSOCKET_URL: str = "ws://localhost:8000"

    # Row policy enforcement when a template cannot be rendered
    ROW_POLICY_FAIL_CLOSED: bool = False

    # CORS
    CORS_ORIGINS: list = ["http://localhost:5173", "http://localhost:3000"]

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
