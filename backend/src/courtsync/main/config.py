import logging
import os
import sys
from typing import Optional
from urllib.parse import urlparse

from pydantic import computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def normalize_upstream_base_url(url: str) -> str:
    """
    Validate and normalize the upstream API base url.

    Rules:
    - Must be http(s) with a hostname
    - No query or fragment
    - Always ends with a single trailing slash so relative paths join cleanly

    Examples:
        >>> normalize_upstream_base_url("https://www.courtlistener.com/api/rest/v4")
        "https://www.courtlistener.com/api/rest/v4/"
    """
    url = url.strip()
    if not url:
        raise ValueError("upstream_base_url cannot be an empty string")

    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ValueError(f"upstream_base_url must use http(s)://, got: {url}")

    if not parsed.hostname:
        raise ValueError(f"upstream_base_url missing hostname: {url}")

    if parsed.query or parsed.fragment:
        raise ValueError(f"upstream_base_url must not include query or fragment: {url}")

    return url.rstrip("/") + "/"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="allow")

    app_version: str = os.environ.get("APP_VERSION", "DEV")

    # Infrastructure dependencies
    postgres_user: str
    postgres_host: str
    postgres_password: str
    postgres_port: int
    postgres_db: str
    redis_host: str
    redis_port: int
    database_url_override: Optional[str] = None

    # Redis connection resilience
    redis_db: Optional[int] = None
    redis_conn_timeout: int = 5
    redis_conn_retries: int = 5
    redis_conn_retry_delay: int = 1
    redis_retry_on_timeout: bool = True
    redis_max_connections: Optional[int] = None
    redis_socket_keepalive: bool = True
    redis_health_check_interval: int = 30

    # Upstream judicial records API
    upstream_base_url: str = "https://www.courtlistener.com/api/rest/v4/"
    upstream_api_token: Optional[str] = None
    upstream_api_key: Optional[str] = None
    upstream_user_agent: str = "courtsync/1.0 (judicial records sync)"
    upstream_timeout_seconds: float = 30.0
    upstream_request_delay_seconds: float = 1.0  # Pause after each successful call
    upstream_page_size: int = 100
    upstream_low_quota_threshold: int = 100  # Warn when X-RateLimit-Remaining drops below

    # Retry / backoff
    upstream_max_retries: int = 3  # Retries after the first attempt
    backoff_base_delay: float = 1.0
    backoff_max_delay: float = 10.0
    backoff_jitter: float = 0.25

    # Circuit breaker
    circuit_failure_threshold: int = 5
    circuit_cooldown_seconds: float = 60.0

    # Rate limiting (one shared quota for every caller)
    rate_limit_backend: str = "redis"  # "redis" or "memory"
    rate_limit_hourly_limit: int = 5000
    rate_limit_buffer: int = 4500  # Effective limit, leaves headroom under the hard quota
    rate_limit_warning_threshold: int = 4000
    rate_limit_window_seconds: int = 60 * 60
    rate_limit_alert_cooldown_seconds: int = 15 * 60
    rate_limit_max_wait_seconds: float = 5 * 60
    rate_limit_poll_interval_seconds: float = 10.0

    # Webhooks
    webhook_secret: Optional[str] = None
    webhook_signature_header: str = "X-Signature"
    webhook_timestamp_header: str = "X-Timestamp"
    webhook_signature_algorithm: str = "sha256"
    webhook_signature_prefix: Optional[str] = "sha256="
    webhook_sign_timestamp: bool = False
    webhook_timestamp_tolerance_seconds: int = 5 * 60
    webhook_retention_days: int = 30

    # Sync job queue
    sync_worker_concurrency: int = 4
    sync_job_timeout_seconds: int = 60 * 60 * 2
    sync_job_retention_days: int = 7
    sync_max_error_messages: int = 20
    judge_sync_max_records: Optional[int] = 250
    court_sync_max_records: Optional[int] = None
    decision_sync_max_records: Optional[int] = 500
    decision_days_since_last: int = 7
    weekly_sync_enabled: bool = True

    # Queue control API
    api_prefix: str = "/api/v1"
    queue_api_key: Optional[str] = None
    queue_api_key_header_name: str = "X-API-Key"

    # Dev
    testing: bool = False
    dev: bool = False

    @model_validator(mode="after")
    def validate_upstream_settings(self):
        """Ensure upstream and limiter configuration values are sane."""
        try:
            self.upstream_base_url = normalize_upstream_base_url(self.upstream_base_url)
        except ValueError as e:
            logging.error(
                f"Invalid UPSTREAM_BASE_URL configuration: {e}\n"
                f"Example: UPSTREAM_BASE_URL=https://www.courtlistener.com/api/rest/v4/"
            )
            sys.exit(1)

        if self.rate_limit_buffer < 1:
            logging.error(
                "RATE_LIMIT_BUFFER must be at least 1. Current value: %s",
                self.rate_limit_buffer,
            )
            sys.exit(1)

        if self.rate_limit_buffer > self.rate_limit_hourly_limit:
            logging.warning(
                "RATE_LIMIT_BUFFER (%s) exceeds RATE_LIMIT_HOURLY_LIMIT (%s). "
                "The upstream quota will be hit before the local limiter blocks.",
                self.rate_limit_buffer,
                self.rate_limit_hourly_limit,
            )

        if self.rate_limit_backend not in ("redis", "memory"):
            logging.error(
                "RATE_LIMIT_BACKEND must be 'redis' or 'memory'. Current value: %s",
                self.rate_limit_backend,
            )
            sys.exit(1)

        if self.backoff_max_delay < self.backoff_base_delay:
            logging.error(
                "BACKOFF_MAX_DELAY (%s) is shorter than BACKOFF_BASE_DELAY (%s).",
                self.backoff_max_delay,
                self.backoff_base_delay,
            )
            sys.exit(1)

        if self.circuit_failure_threshold <= 0:
            logging.error(
                "CIRCUIT_FAILURE_THRESHOLD must be greater than zero. Current value: %s",
                self.circuit_failure_threshold,
            )
            sys.exit(1)

        return self

    @model_validator(mode="after")
    def validate_worker_settings(self):
        if self.sync_worker_concurrency <= 0:
            logging.error(
                "SYNC_WORKER_CONCURRENCY must be greater than zero. Current value: %s",
                self.sync_worker_concurrency,
            )
            sys.exit(1)

        if not self.webhook_secret:
            logging.warning(
                "WEBHOOK_SECRET not set. Every incoming webhook will be rejected."
            )

        return self

    @computed_field
    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override

        return (
            f"postgresql+asyncpg://{self.postgres_user}:"
            f"{self.postgres_password}@{self.postgres_host}:"
            f"{self.postgres_port}/{self.postgres_db}"
        )

    @computed_field
    @property
    def upstream_credentials(self) -> Optional[str]:
        return self.upstream_api_token or self.upstream_api_key


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get settings singleton, creating it if needed.

    Returns:
        Settings: The application settings instance.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings) -> None:
    """Override settings (primarily for testing).

    Args:
        settings: The Settings instance to use.
    """
    global _settings
    _settings = settings


def reset_settings() -> None:
    """Reset settings to None (for test cleanup)."""
    global _settings
    _settings = None


def get_loglevel():
    loglevel = os.getenv("LOGLEVEL", "INFO")

    match loglevel:
        case "INFO":
            return logging.INFO
        case "WARNING":
            return logging.WARNING
        case "ERROR":
            return logging.ERROR
        case "CRITICAL":
            return logging.CRITICAL
        case "DEBUG":
            return logging.DEBUG
        case _:
            return logging.INFO
