"""Environment-driven configuration with Pydantic v2."""

from typing import List, Optional
from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings driven entirely by environment variables."""

    # Server Configuration
    host: str = Field(default="0.0.0.0", env="HOST")
    port: int = Field(default=8010, env="PORT", ge=1024, le=65535)
    debug: bool = Field(default=False, env="DEBUG")
    workers: int = Field(default=1, env="WORKERS", ge=1, le=8)
    cors_origins: List[str] = Field(default_factory=list, env="CORS_ORIGINS")

    # Cron trigger authentication (shared bearer secret)
    cron_secret_key: Optional[str] = Field(default=None, env="CRON_SECRET_KEY")

    # System of record
    database_url: str = Field(default="sqlite+aiosqlite:///./data/zephyr.db", env="DATABASE_URL")
    database_echo: bool = Field(default=False, env="DATABASE_ECHO")

    # Key-value store
    redis_url: str = Field(default="redis://localhost:6379/0", env="REDIS_URL")
    redis_socket_timeout: float = Field(default=5.0, env="REDIS_SOCKET_TIMEOUT", gt=0)

    # HackerNews ingestion
    hn_api_base: str = Field(default="https://hacker-news.firebaseio.com/v0", env="HN_API_BASE")
    hn_namespace: str = Field(default="hn", env="HN_NAMESPACE")
    hn_fetch_timeout: float = Field(default=5.0, env="HN_FETCH_TIMEOUT", gt=0, le=60)
    hn_max_attempts: int = Field(default=3, env="HN_MAX_ATTEMPTS", ge=1, le=10)
    hn_retry_min_wait: float = Field(default=0.5, env="HN_RETRY_MIN_WAIT", ge=0)
    hn_retry_max_wait: float = Field(default=4.0, env="HN_RETRY_MAX_WAIT", ge=0)
    hn_warm_page_size: int = Field(default=30, env="HN_WARM_PAGE_SIZE", ge=1, le=500)

    # Two-tier cache
    cache_ttl: int = Field(default=900, env="CACHE_TTL", ge=1)
    cache_backup_multiplier: int = Field(default=4, env="CACHE_BACKUP_MULTIPLIER", ge=2)
    cache_refresh_lock_ttl: int = Field(default=30, env="CACHE_REFRESH_LOCK_TTL", ge=1)

    # Rate Limiting
    rate_limit_requests: int = Field(default=30, env="RATE_LIMIT_REQUESTS", ge=1)
    rate_limit_window: int = Field(default=60, env="RATE_LIMIT_WINDOW", ge=1)
    rate_limit_fail_open: bool = Field(default=False, env="RATE_LIMIT_FAIL_OPEN")

    # Reconciliation jobs
    reconcile_batch_size: int = Field(default=100, env="RECONCILE_BATCH_SIZE", ge=1, le=1000)
    reconcile_batch_delay: float = Field(default=0.1, env="RECONCILE_BATCH_DELAY", ge=0)
    scheduler_enabled: bool = Field(default=True, env="SCHEDULER_ENABLED")
    sync_views_cron: str = Field(default="*/15 * * * *", env="SYNC_VIEWS_CRON")
    sync_share_stats_cron: str = Field(default="0 * * * *", env="SYNC_SHARE_STATS_CRON")
    cleanup_cache_cron: str = Field(default="30 3 * * *", env="CLEANUP_CACHE_CRON")
    refresh_hackernews_cron: str = Field(default="*/5 * * * *", env="REFRESH_HACKERNEWS_CRON")

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: str = Field(default="json", env="LOG_FORMAT")
    log_file: Optional[str] = Field(default=None, env="LOG_FILE")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        """Ensure database directory exists for SQLite."""
        if v and v.startswith("sqlite"):
            if ":///" in v:
                db_path = v.split("///")[1]
                if db_path and db_path != ":memory:":
                    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return v

    @field_validator(
        "sync_views_cron", "sync_share_stats_cron",
        "cleanup_cache_cron", "refresh_hackernews_cron"
    )
    @classmethod
    def validate_cron(cls, v):
        """Accept 5-field or 6-field cron expressions."""
        if len(v.split()) not in (5, 6):
            raise ValueError(f"Invalid cron expression: {v!r}")
        return v

    @property
    def cache_backup_ttl(self) -> int:
        """Backup tier TTL, always a fixed multiple of the primary TTL."""
        return self.cache_ttl * self.cache_backup_multiplier

    @property
    def cron_schedules(self) -> dict:
        """Reconciliation job name -> cron expression."""
        return {
            "sync_views": self.sync_views_cron,
            "sync_share_stats": self.sync_share_stats_cron,
            "cleanup_cache": self.cleanup_cache_cron,
            "refresh_hackernews": self.refresh_hackernews_cron,
        }

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.debug

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "env_parse_none_str": "none",
    }
