"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Backend API configuration
    api_base_url: str = "http://localhost:8000"
    api_token: Optional[str] = None
    request_timeout_seconds: float = 30.0

    # Cache settings
    cache_default_ttl_seconds: float = 300.0   # 5 minutes
    cache_max_entries: Optional[int] = 100
    cache_eviction_fraction: float = 0.2
    cache_fallback_ttl_seconds: float = 30.0   # Fallback data is retried soon

    # Retry settings
    retry_max_attempts: int = 4                # First try + 3 retries
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0
    retry_jitter_seconds: float = 1.0
    retry_rate_limit_min_delay_seconds: float = 5.0
    retry_attempt_timeout_seconds: Optional[float] = 30.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
