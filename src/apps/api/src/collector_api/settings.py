"""API settings."""
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    sqlite_path: str = "/data/collector.db"
    redis_url: str = "redis://redis:6379/0"
    environment: str = "development"
    executor: str = "inprocess"
    log_level: str = "INFO"

    pacing_interval_seconds: float = 60.0
    poll_interval_seconds: float = 1.0
    heartbeat_interval_seconds: float = 15.0
    lease_timeout_seconds: float = 45.0
    stream_interval_seconds: float = 5.0
    max_total_target: int = 1000
    resume_orphaned_on_startup: bool = True

    rate_limit_enabled: bool | None = None
    rate_limit_backend: str = "memory"
    rate_limit_min_interval_seconds: float = 60.0
    rate_limit_window_seconds: float = 300.0
    rate_limit_max_requests: int = 3
    rate_limit_sweep_interval_seconds: float = 600.0

    search_url_template: str = "https://www.amazon.com/s?k={query}"
    allowed_source_hosts: list[str] = []
    extraction_url: str = "http://extractor:8080"
    extraction_timeout_seconds: float = 60.0
    catalog_url: str | None = None
    catalog_token: str | None = None
    banned_keywords: list[str] = []

    stats_webhook_url: str | None = None
    stats_report_interval_seconds: float = 14400.0

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def rate_limiting_active(self) -> bool:
        """Explicit flag wins; otherwise only production is rate limited."""
        if self.rate_limit_enabled is not None:
            return self.rate_limit_enabled
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings."""
    return Settings()
