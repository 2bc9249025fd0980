"""
Core data models for searchpilot.

These Pydantic models define the typed values that flow between the browser
session, the resilience layer and the extraction pipeline. The two shapes
returned to callers (``PageContentResult`` and ``CrawlEnvelope``) serialize
with the camelCase keys the tool-protocol layer expects.

Design principles:
  - Exactly one of text_content/error is populated on a finished page result
  - Crawl state is scoped to a single invocation and never persisted
  - Recovery levels are derived from errors, never stored
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ═══════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════


class SessionState(str, Enum):
    """Lifecycle of the single shared browser session."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    RECOVERING = "recovering"
    CLOSED = "closed"


class RecoveryLevel(IntEnum):
    """Remediation tier for an observed failure. Higher is more drastic."""

    MINOR = 1  # retry in place
    PAGE = 2  # navigate again
    BROWSER = 3  # full session restart


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CrawlStatus(str, Enum):
    """Overall outcome of a multi-page extraction."""

    SUCCESS = "Success"
    PARTIAL = "SuccessWithPartial"
    ERROR = "Error"


# ═══════════════════════════════════════════════════════════
# Extraction results
# ═══════════════════════════════════════════════════════════


class PageContentResult(BaseModel):
    """Outcome of extracting one page."""

    model_config = ConfigDict(populate_by_name=True)

    url: str
    title: Optional[str] = None
    text_content: Optional[str] = Field(default=None, alias="textContent")
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.text_content is not None

    @classmethod
    def failure(cls, url: str, error: str, title: Optional[str] = None) -> PageContentResult:
        return cls(url=url, title=title, text_content=None, error=error)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class SameDomainLink(BaseModel):
    """An outbound link on the same host as the page it was found on."""

    url: str
    text: str


class CrawlEnvelope(BaseModel):
    """Multi-page extraction result returned for depth > 1."""

    model_config = ConfigDict(populate_by_name=True)

    status: CrawlStatus
    message: Optional[str] = None
    root_url: str = Field(alias="rootUrl")
    exploration_depth: int = Field(alias="explorationDepth")
    pages_explored: int = Field(default=0, alias="pagesExplored")
    content: list[PageContentResult] = Field(default_factory=list)

    def to_wire(self) -> dict[str, Any]:
        data = self.model_dump(by_alias=True, mode="json", exclude_none=True)
        data["content"] = [r.to_wire() for r in self.content]
        return data


class CrawlState(BaseModel):
    """Mutable state shared by every branch of one recursive crawl."""

    visited: set[str] = Field(default_factory=set)
    results: list[PageContentResult] = Field(default_factory=list)
    deadline_exceeded: bool = False

    def claim(self, url: str) -> bool:
        """Mark a URL visited. Returns False if it was already claimed."""
        if url in self.visited:
            return False
        self.visited.add(url)
        return True

    @property
    def succeeded_count(self) -> int:
        return sum(1 for r in self.results if r.succeeded)


# ═══════════════════════════════════════════════════════════
# Resilience
# ═══════════════════════════════════════════════════════════


class RetryPolicy(BaseModel):
    """Immutable retry configuration, shared by reference across invocations."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: bool = True
    retryable_errors: tuple[str, ...] = (
        "ETIMEDOUT",
        "ECONNRESET",
        "ECONNREFUSED",
        "ENOTFOUND",
        "EPIPE",
        "TimeoutError",
        "NetworkError",
    )

    @field_validator("max_attempts")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        return max(1, v)


class RetryResult(BaseModel):
    """Outcome of a retried operation: value or last error, plus bookkeeping."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    value: Any = None
    error: Optional[BaseException] = None
    attempts: int = 0
    total_delay: float = 0.0


class CircuitBreakerStats(BaseModel):
    """Read-only snapshot of a circuit breaker."""

    state: CircuitState
    failure_count: int = 0
    success_count: int = 0
    total_calls: int = 0
    last_failure_time: Optional[float] = None
    last_success_time: Optional[float] = None
    next_retry_time: Optional[float] = None
