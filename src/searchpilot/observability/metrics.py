"""
Prometheus metrics for searchpilot.

All metrics are no-op when observability.metrics_enabled is False. The facade
pins that flag from its own Settings through ``metrics.configure``.
Exposes track_search, record_recovery, record_circuit_state, record_crawl_page,
record_crawl, record_fetch, start_server.
"""

from __future__ import annotations

import contextlib
import threading
import time
from typing import Any, Optional

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    start_http_server as prometheus_start_http_server,
)

_CIRCUIT_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}

# Set from the facade's Settings; None falls back to the global settings
_enabled_override: Optional[bool] = None


def _enabled() -> bool:
    if _enabled_override is not None:
        return _enabled_override
    from searchpilot.config import get_settings

    return bool(get_settings().observability.metrics_enabled)


# Lazy registry: only create metrics when enabled and first used
_metrics_created = False


def _ensure_metrics() -> bool:
    global _metrics_created
    if not _enabled():
        return False
    if not _metrics_created:
        _create_metrics()
        _metrics_created = True
    return True


def _create_metrics() -> None:
    """Create all Prometheus metrics (called once when enabled)."""
    # Search
    _search_duration = Histogram(
        "searchpilot_search_duration_seconds",
        "Answer search latency",
        ["outcome"],
        buckets=[1, 5, 15, 30, 60, 120, 300],
    )
    _search_outcomes = Counter(
        "searchpilot_search_total",
        "Answer searches by outcome",
        ["outcome"],
    )
    _search_attempts = Histogram(
        "searchpilot_search_attempts",
        "Attempts consumed per search",
        [],
        buckets=[1, 2, 3, 5, 10],
    )

    # Session
    _recoveries = Counter(
        "searchpilot_recoveries_total",
        "Remediations performed by recovery level",
        ["level"],
    )
    _circuit_state = Gauge(
        "searchpilot_circuit_state",
        "Circuit breaker state (0=closed, 1=half_open, 2=open)",
        ["circuit"],
    )

    # Crawl
    _crawl_pages = Counter(
        "searchpilot_crawl_pages_total",
        "Pages attempted during extraction",
        ["method", "outcome"],
    )
    _crawl_duration = Histogram(
        "searchpilot_crawl_duration_seconds",
        "Recursive extraction latency",
        ["status"],
        buckets=[1, 5, 15, 30, 60, 120, 300],
    )

    # Fetch
    _fetch_requests = Counter(
        "searchpilot_fetch_requests_total",
        "HTTP requests by method and status",
        ["domain", "method", "status"],
    )

    _registry = {
        "search_duration": _search_duration,
        "search_outcomes": _search_outcomes,
        "search_attempts": _search_attempts,
        "recoveries": _recoveries,
        "circuit_state": _circuit_state,
        "crawl_pages": _crawl_pages,
        "crawl_duration": _crawl_duration,
        "fetch_requests": _fetch_requests,
    }
    setattr(_MetricsCollector, "_registry", _registry)


class _MetricsCollector:
    """Collector that delegates to Prometheus when enabled, no-op otherwise."""

    _registry: dict[str, Any] = {}

    def configure(self, enabled: Optional[bool]) -> None:
        """Pin metrics on or off for this process; None defers to the global settings."""
        global _enabled_override
        _enabled_override = enabled

    @property
    def enabled(self) -> bool:
        return _enabled()

    def _get(self, name: str) -> Any:
        if not _ensure_metrics():
            return None
        return self._registry.get(name)

    # --- Search ---
    @contextlib.asynccontextmanager
    async def track_search(self):
        class Tracker:
            def __init__(self, parent: _MetricsCollector):
                self._parent = parent
                self.outcome = "success"
                self.attempts = 0

            def _finish(self, elapsed: float) -> None:
                d = self._parent._get("search_duration")
                o = self._parent._get("search_outcomes")
                a = self._parent._get("search_attempts")
                if d:
                    d.labels(outcome=self.outcome).observe(elapsed)
                if o:
                    o.labels(outcome=self.outcome).inc()
                if a and self.attempts:
                    a.observe(self.attempts)

        tracker = Tracker(self)
        start = time.perf_counter()
        try:
            yield tracker
        except Exception:
            tracker.outcome = "error"
            raise
        finally:
            tracker._finish(time.perf_counter() - start)

    # --- Session ---
    def record_recovery(self, level: int) -> None:
        c = self._get("recoveries")
        if c:
            c.labels(level=str(level)).inc()

    def record_circuit_state(self, circuit: str, state: str) -> None:
        g = self._get("circuit_state")
        if g:
            g.labels(circuit=(circuit or "default")[:32]).set(_CIRCUIT_STATE_VALUES.get(state, -1))

    # --- Crawl ---
    def record_crawl_page(self, method: str, succeeded: bool) -> None:
        c = self._get("crawl_pages")
        if c:
            c.labels(method=method or "unknown", outcome="success" if succeeded else "error").inc()

    def record_crawl(self, status: str, duration: float) -> None:
        h = self._get("crawl_duration")
        if h:
            h.labels(status=status or "unknown").observe(duration)

    # --- Fetch ---
    def record_fetch(self, domain: str, method: str, status: str) -> None:
        c = self._get("fetch_requests")
        if c:
            c.labels(
                domain=(domain or "unknown")[:64],
                method=method or "GET",
                status=str(status) if status else "unknown",
            ).inc()

    def start_server(self, port: int = 8000) -> None:
        if not _ensure_metrics():
            return

        def run() -> None:
            prometheus_start_http_server(port, addr="0.0.0.0")

        t = threading.Thread(target=run, daemon=True)
        t.start()


metrics = _MetricsCollector()
