"""Application configuration via Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

# Resolve .env from the project root regardless of CWD
_ENV_FILE = Path(__file__).resolve().parents[3] / ".env"


class Settings(BaseSettings):
    """Central configuration loaded from environment variables / .env file."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./load_hunter.db"

    # Matching
    default_pickup_radius_miles: int = 100
    default_time_window: str = "30m"
    load_fetch_limit: int = 5000

    # Status buckets are time-boxed to the business day in this timezone
    business_timezone: str = "America/New_York"

    # Fetch retries (bounded exponential backoff)
    fetch_max_attempts: int = 3
    fetch_base_delay_seconds: float = 0.5

    # Shared match feed
    feed_stale_seconds: int = 30

    # Expiry sweep
    match_expiry_fallback_hours: int = 2
    expiry_sweep_interval_minutes: int = 15

    # CORS / Frontend
    cors_origins: str = "http://localhost:3000"

    # General
    debug: bool = True

    model_config = {"env_file": str(_ENV_FILE), "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list.

        In debug mode, returns ["*"] to allow any origin.
        """
        if self.debug:
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return cached Settings instance."""
    return Settings()
