"""Settings and configuration management."""

import logging
from typing import List, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables or a .env file."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # AI Oracle
    openrouter_api_key: Optional[str] = Field(None, description="OpenRouter")
    openrouter_base_url: str = Field(
        "https://openrouter.ai/api/v1", description="OpenRouter API base URL"
    )
    oracle_model: str = Field("openai/gpt-4o", description="Model used by the oracle")

    # Content Sources
    events_feed_url: str = Field(
        "https://www.visitstcloud.com/wp-json/tribe/events/v1/events",
        description="Third-party events feed endpoint",
    )
    events_external_prefix: str = Field(
        "visitstcloud_", description="Prefix for external event identifiers"
    )
    rss_feeds: Optional[str] = Field(None, description="RSS URLs")

    # Trigger authentication
    cron_secret: Optional[str] = Field(None, description="Shared scheduler secret")
    operator_token: Optional[str] = Field(None, description="Operator API token")

    # Application Settings
    debug: bool = Field(False, description="Debug mode")
    log_level: str = Field("INFO", description="Log level")
    database_path: str = Field("scoop.db", description="SQLite database file")
    timezone: str = Field("America/Chicago", description="Newsletter local timezone")
    default_user_agent: str = Field(
        "St. Cloud Scoop Newsletter (stcscoop.com)",
        min_length=5,
        max_length=100,
        description="Default User-Agent for HTTP requests",
    )

    # Oracle timeouts and rate limiting
    oracle_timeout: float = Field(
        30.0, ge=5.0, le=120.0, description="Oracle request timeout in seconds"
    )
    oracle_max_retries: int = Field(
        1, ge=0, le=5, description="Retries for transient oracle failures"
    )
    oracle_min_request_interval: float = Field(
        0.5,
        ge=0.0,
        le=10.0,
        description="Minimum seconds between oracle requests",
    )

    # Events feed
    feed_timeout: float = Field(
        20.0, ge=5.0, le=120.0, description="Events feed request timeout in seconds"
    )
    feed_max_retries: int = Field(
        3, ge=0, le=10, description="Retries for 503 or transport errors"
    )
    feed_backoff_base: float = Field(
        2.0, ge=0.0, le=30.0, description="First backoff delay in seconds"
    )
    feed_request_delay: float = Field(
        0.5, ge=0.0, le=10.0, description="Delay between successive feed calls"
    )
    feed_per_page: int = Field(100, ge=1, le=500, description="Events per page")
    feed_max_pages: int = Field(50, ge=1, le=500, description="Pagination cap")
    sync_window_days: int = Field(7, ge=1, le=31, description="Rolling window size")

    # Run budgets
    sync_time_budget: float = Field(
        600.0, ge=10.0, le=3600.0, description="Wall-clock budget for one run"
    )
    batch_size: int = Field(10, ge=1, le=100, description="Items per batch")
    max_concurrency: int = Field(
        3, ge=1, le=20, description="Concurrent oracle calls inside a batch"
    )

    # Content rules
    event_summary_min_length: int = Field(
        20, ge=0, le=500, description="Shortest description worth summarizing"
    )
    missing_image_penalty: float = Field(
        5.0, ge=0.0, le=10.0, description="Interest penalty for imageless articles"
    )
    max_regenerations: int = Field(
        1, ge=0, le=3, description="Copy regenerations after a failed fact-check"
    )
    fact_check_failure_policy: str = Field(
        "hold",
        pattern="^(hold|drop)$",
        description="What happens to an article failing every fact-check",
    )
    protection_lapses_when_campaign_closed: bool = Field(
        False,
        description="Stop protecting events once the owning campaign is sent/archived",
    )
    subject_line_max_length: int = Field(
        40, ge=10, le=150, description="Maximum subject line length"
    )

    # Schedule defaults (app_settings rows override these)
    review_schedule_enabled: bool = Field(
        True, description="Run the automatic review transition"
    )
    review_time: str = Field(
        "20:50",
        pattern=r"^\d{2}:\d{2}$",
        description="Local time of the automatic review check",
    )
    schedule_window_minutes: int = Field(
        15, ge=1, le=120, description="Tolerance around scheduled times"
    )
    review_lead_days: int = Field(
        1, ge=0, le=7, description="Days ahead of today the review check targets"
    )

    # Scheduler
    celery_broker_url: str = Field(
        "redis://localhost:6379/0", description="Celery broker and result backend"
    )

    @model_validator(mode="after")
    def check_timeouts_fit_budget(self) -> "Settings":
        """Per-call timeouts must stay shorter than the overall run budget."""
        longest_call = max(self.oracle_timeout, self.feed_timeout)
        if longest_call >= self.sync_time_budget:
            raise ValueError(
                f"Per-call timeout {longest_call}s must be shorter than the "
                f"run budget {self.sync_time_budget}s"
            )
        return self

    def feed_list(self) -> List[str]:
        """Configured RSS feed URLs."""
        if not self.rss_feeds:
            return []
        return [url.strip() for url in self.rss_feeds.split(",") if url.strip()]
