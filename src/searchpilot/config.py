"""
Centralized configuration for searchpilot.

All settings are loaded from environment variables with sensible defaults.
Pydantic Settings provides validation and type coercion. Durations are in
seconds unless the field name says otherwise.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

# Load .env then .env.local (so .env.local overrides).
_repo_root = Path(__file__).resolve().parent.parent.parent
load_dotenv(_repo_root / ".env")
_env_local = _repo_root / ".env.local"
if _env_local.exists():
    load_dotenv(_env_local, override=True)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class BrowserConfig(BaseSettings):
    """Browser session lifecycle and page timing."""

    target_url: str = Field(default="https://www.perplexity.ai/", alias="SEARCHPILOT_TARGET_URL")
    headless: bool = Field(default=True, alias="SEARCHPILOT_HEADLESS")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, alias="SEARCHPILOT_USER_AGENT")
    viewport_width: int = 1280
    viewport_height: int = 720
    page_timeout: float = Field(default=180.0, alias="SEARCHPILOT_PAGE_TIMEOUT")
    selector_timeout: float = Field(default=90.0, alias="SEARCHPILOT_SELECTOR_TIMEOUT")
    navigation_timeout: float = Field(default=45.0, alias="SEARCHPILOT_NAVIGATION_TIMEOUT")
    content_timeout: float = 120.0
    answer_wait_timeout: float = Field(default=120.0, alias="SEARCHPILOT_ANSWER_WAIT_TIMEOUT")
    recovery_wait: float = Field(default=15.0, alias="SEARCHPILOT_RECOVERY_WAIT")
    idle_timeout: float = Field(default=300.0, alias="SEARCHPILOT_IDLE_TIMEOUT")
    max_search_attempts: int = Field(default=10, alias="SEARCHPILOT_MAX_RETRIES")
    # Probe budget for the first (most likely) input selector vs. the rest
    primary_input_probe: float = 2.0
    fallback_input_probe: float = 1.5
    profile_dir: str = Field(default="", alias="SEARCHPILOT_BROWSER_DATA_DIR")
    security_disabled: bool = Field(
        default=False,
        alias="SEARCHPILOT_SECURITY_DISABLED",
        description="Launch without the Chromium sandbox. Only for containers that cannot provide one.",
    )


class RetryConfig(BaseSettings):
    """Backoff shape shared by every retry policy."""

    base_delay: float = Field(default=1.0, alias="SEARCHPILOT_RETRY_BASE_DELAY")
    max_delay: float = Field(default=30.0, alias="SEARCHPILOT_RETRY_MAX_DELAY")
    jitter: bool = True
    retryable_errors: list[str] = Field(
        default_factory=lambda: [
            "ETIMEDOUT",
            "ECONNRESET",
            "ECONNREFUSED",
            "ENOTFOUND",
            "EPIPE",
            "TimeoutError",
            "NetworkError",
        ]
    )


class CircuitBreakerConfig(BaseSettings):
    """Fault isolation around the search surface."""

    failure_threshold: int = Field(default=5, alias="SEARCHPILOT_CB_FAILURE_THRESHOLD")
    success_threshold: int = Field(default=3, alias="SEARCHPILOT_CB_SUCCESS_THRESHOLD")
    half_open_max_calls: int = 3
    reset_timeout: float = Field(default=60.0, alias="SEARCHPILOT_CB_RESET_TIMEOUT")


class StabilizationConfig(BaseSettings):
    """
    Answer stabilization thresholds.

    Empirically tuned against the live UI; treat them as knobs.
    """

    poll_interval: float = 0.6
    max_polls: int = 60
    long_answer_length: int = 1000
    long_answer_stable_polls: int = 3
    medium_answer_length: int = 500
    medium_answer_stable_polls: int = 4
    short_answer_stable_polls: int = 5
    completion_min_length: int = 100
    completion_stable_polls: int = 2
    stall_polls: int = 15
    stall_min_length: int = 200
    partial_reads: int = 3
    partial_read_interval: float = 1.0
    partial_min_length: int = 50


class CrawlConfig(BaseSettings):
    """Recursive extraction limits."""

    max_depth: int = 5
    links_per_page: int = 3
    link_candidates: int = 10
    deadline_buffer: float = 5.0
    head_timeout: float = 5.0
    fetch_timeout: float = 15.0
    max_chars: int = 15000
    min_content_length: int = 50
    selector_min_length: int = 100
    body_min_length: int = 200


class SecurityConfig(BaseSettings):
    """SSRF gate policy."""

    resolve_dns: bool = Field(default=False, alias="SEARCHPILOT_RESOLVE_DNS")
    blocked_hosts: list[str] = Field(default_factory=list, alias="SEARCHPILOT_BLOCKED_HOSTS")


class ObservabilityConfig(BaseSettings):
    """Logging and Prometheus metrics."""

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="SEARCHPILOT_LOG_JSON")
    metrics_enabled: bool = Field(default=False, alias="PROMETHEUS_METRICS_ENABLED")
    metrics_port: int = Field(default=8000, alias="PROMETHEUS_METRICS_PORT")


class YAMLConfigLoader:
    """Loads YAML config files from a configurable directory."""

    def __init__(self, config_dir: str | Path = "config") -> None:
        self._dir = _repo_root / config_dir

    def load(self, filename: str) -> dict[str, Any]:
        """Load a YAML file; returns empty dict if the file is missing or not a mapping."""
        path = self._dir / filename
        if not path.exists():
            return {}
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}


class Settings(BaseSettings):
    """Root settings container; access all config from one object."""

    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    stabilization: StabilizationConfig = Field(default_factory=StabilizationConfig)
    crawl: CrawlConfig = Field(default_factory=CrawlConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    # YAML-loaded config (populated in get_settings)
    selectors: dict[str, Any] = Field(default_factory=dict)
    domain_policies: dict[str, Any] = Field(default_factory=dict)

    @property
    def crawl_deadline(self) -> float:
        """Global wall-clock budget for one recursive extraction."""
        return max(1.0, self.browser.idle_timeout - self.crawl.deadline_buffer)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton settings instance. Cached after first call."""
    settings = Settings()
    loader = YAMLConfigLoader()
    settings.selectors = loader.load("selectors.yaml")
    settings.domain_policies = loader.load("domain_policies.yaml")
    return settings
