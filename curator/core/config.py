from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "hotdog-curator"
    environment: str = "dev"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10

    min_queue_size: int = 21
    max_queue_size: int = 42
    posts_per_day: int = 3
    high_water_days: float = 14.0

    scan_delay_seconds: float = 5.0
    scan_size_high: int = 15
    scan_size_medium: int = 10
    scan_size_low: int = 5
    api_calls_per_scan: int = 10
    default_search_query: str = "hotdog"
    source_queries_json: str | None = None
    connector_endpoints_json: str | None = None
    connector_timeout_seconds: float = 20.0

    auto_approval_threshold: float = 0.8
    auto_rejection_threshold: float = 0.3
    processing_batch_size: int = 50
    processing_concurrency: int = 5
    processing_max_attempts: int = 3
    processing_overrides_json: str | None = None

    default_repost_window_days: int = 7
    repost_windows_json: str | None = None
    dedupe_boost_per_signal: float = 0.05

    classifier_url: str | None = None
    classifier_timeout_seconds: float = 10.0

    scan_interval_seconds: float = 86400.0
    retry_interval_seconds: float = 900.0
    retry_batch_size: int = 100
    poll_interval_seconds: float = 30.0
    max_backoff_seconds: float = 600.0

    log_level: str = "INFO"

    otel_enabled: bool = True
    otel_service_name: str = "hotdog-curator"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="CURATOR_", extra="ignore")

    def scan_size_for(self, priority: str) -> int:
        sizes = {
            "high": self.scan_size_high,
            "medium": self.scan_size_medium,
            "low": self.scan_size_low,
        }
        return sizes.get(priority, self.scan_size_low)


@lru_cache
def get_settings() -> Settings:
    return Settings()
