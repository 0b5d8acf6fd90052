import os
import sys
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "SearchPulse API"
    app_env: str = "local"
    api_v1_prefix: str = "/api/v1"
    log_level: str = "INFO"

    postgres_dsn: str = "sqlite:///./searchpulse.db"
    redis_url: str = "redis://localhost:6379/0"
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/1"
    celery_task_always_eager: bool = False
    celery_task_eager_propagates: bool = False

    gsc_site_url: str = ""
    gsc_access_token: str = ""
    gsc_api_endpoint: str = "https://searchconsole.googleapis.com/webmasters/v3"
    gsc_search_type: str = "web"
    gsc_http_timeout_seconds: float = 30.0
    gsc_row_limit: int = 5000
    gsc_page_size: int = 1000
    gsc_rate_limit_per_minute: int = 30
    gsc_retry_max_attempts: int = 3
    gsc_retry_base_delay_seconds: float = 0.5

    content_lookup_url: str = ""
    content_lookup_timeout_seconds: float = 10.0

    analysis_window_days: int = 28
    sync_lookback_days: int = 28
    retention_days: int = 180
    sync_lock_ttl_seconds: int = 1800
    sync_schedule_hour_utc: int = 3
    dismiss_stale_opportunities: bool = True
    ctr_benchmark_curve_json: str = ""

    dashboard_cache_ttl_seconds: int = 300
    metrics_enabled: bool = False

    @model_validator(mode="after")
    def validate_production_guardrails(self) -> "Settings":
        if self.gsc_row_limit <= 0 or self.gsc_page_size <= 0:
            raise ValueError("GSC_ROW_LIMIT and GSC_PAGE_SIZE must be greater than 0.")
        if self.analysis_window_days < 28:
            # The declining detector compares days 1-7 with days 8-28.
            raise ValueError("ANALYSIS_WINDOW_DAYS must be at least 28.")
        if self.retention_days <= self.analysis_window_days:
            raise ValueError("RETENTION_DAYS must exceed ANALYSIS_WINDOW_DAYS.")

        if self.app_env.lower() != "production":
            return self

        if self.postgres_dsn.startswith("sqlite"):
            raise ValueError("Production requires POSTGRES_DSN backed by PostgreSQL.")
        missing = [
            key
            for key, value in {"GSC_SITE_URL": self.gsc_site_url, "GSC_ACCESS_TOKEN": self.gsc_access_token}.items()
            if not value.strip()
        ]
        if missing:
            raise ValueError(f"Production is missing required settings: {', '.join(missing)}")
        return self


@lru_cache
def get_settings() -> Settings:
    app_env = os.getenv("APP_ENV", "").lower()
    is_pytest_runtime = "pytest" in sys.modules
    if app_env == "test" or (not app_env and is_pytest_runtime):
        return Settings(
            app_env="test",
            gsc_site_url=os.getenv("GSC_SITE_URL", "").strip() or "sc-domain:example.com",
            gsc_access_token=os.getenv("GSC_ACCESS_TOKEN", "").strip() or "test-access-token",
            celery_task_always_eager=True,
            celery_task_eager_propagates=True,
            celery_broker_url="memory://",
            celery_result_backend="cache+memory://",
        )
    return Settings()
