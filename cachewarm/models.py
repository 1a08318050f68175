"""Configuration and result types shared by the crawler."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_USER_AGENT = "Blue Banded Bee (Cache-warmer)"


@dataclass
class Config:
    """Settings for a crawler instance. Durations are in seconds."""

    default_timeout: float = 30.0
    max_concurrency: int = 50
    rate_limit: int = 100
    user_agent: str = DEFAULT_USER_AGENT
    retry_attempts: int = 3
    retry_delay: float = 0.5
    skip_cached_urls: bool = False
    port: str = ""
    env: str = ""
    log_level: str = ""
    database_url: str = ""
    auth_token: str = ""
    sentry_dsn: str = ""


@dataclass
class CrawlResult:
    """Outcome of warming a single URL."""

    url: str
    response_time: int = 0
    status_code: int = 0
    error: str = ""
    warning: str = ""
    cache_status: str = ""
    content_type: str = ""
    timestamp: int = 0
    retry_count: int = 0
    skipped_crawl: bool = False


@dataclass
class CrawlOptions:
    """Options for a crawl run."""

    max_depth: int = 0
    concurrency: int = 0
    rate_limit: int = 0
    timeout: int = 0
    follow_links: bool = False


def default_config() -> Config:
    """Return a fresh configuration holding the default values."""
    return Config()