"""
Dashboard client configuration using Pydantic Settings.
Loads from environment variables / .env file.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    # App
    APP_NAME: str = "Job Dashboard"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Backend
    API_BASE_URL: str = "http://localhost:8080"
    API_PREFIX: str = "/api/v1"
    AUTH_PREFIX: str = "/api"  # login / logout / me are not versioned
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # Polling (milliseconds, 0 = manual refresh only)
    JOBS_POLL_MS: int = 3_000
    WORKERS_POLL_MS: int = 5_000
    JOB_RUNS_POLL_MS: int = 15_000
    RUNS_POLL_MS: int = 2_000
    RUNS_LIST_LIMIT: int = 100
    SCHEDULER_TICK_MS: int = 100

    # Derived views
    WORKER_LIVENESS_THRESHOLD_MS: int = 20_000
    DASHBOARD_RECENT_WINDOW_MINUTES: int = 60

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"



@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
