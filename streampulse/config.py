"""
Configuration Management

Single source of truth for StreamPulse settings. Values load from environment
variables (or a local .env file) with the defaults below.

Components never read module-level globals directly: each one takes a
``config`` argument and only falls back to the shared ``settings`` instance
when none is passed, so tests can build their own ``Settings(...)``.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """
    Application Settings

    Pydantic automatically loads from environment variables.
    Variable names match field names (case-insensitive).
    """

    log_level: str = "INFO"
    log_categories: Optional[str] = None  # Comma-separated categories (proxy,fetch,kpi,view,poll,system). If None, show all logs.
    port: int = 8000
    host: str = "0.0.0.0"

    # Upstream statistics API
    api_base_url: str = "https://api.pulstream.so"
    # Where the dashboard reaches our own /api/streams proxy
    proxy_base_url: str = "http://localhost:8000"
    http_timeout_seconds: float = 10.0

    # Paging
    default_page_size: int = 20
    max_page_size: int = 1000

    # KPI sweep
    kpi_batch_size: int = 50
    kpi_safety_ceiling: int = 1000
    kpi_stale_seconds: int = 300  # 5 minutes

    # Page memoization and polling
    page_stale_seconds: int = 10
    poll_interval_seconds: int = 15
    countdown_tick_seconds: float = 1.0

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Allow extra env vars without validation errors


# Loaded once when the module is imported
settings = Settings()
