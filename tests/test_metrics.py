"""Tests for the Prometheus collector's enablement switch."""

from __future__ import annotations

import httpx
import pytest
from prometheus_client import REGISTRY

from fakes import FakeLauncher
from searchpilot.config import ObservabilityConfig, Settings
from searchpilot.observability.metrics import metrics
from searchpilot.service import SearchPilot


@pytest.fixture(autouse=True)
def restore_metrics_flag():
    yield
    metrics.configure(None)


def fetch_count(domain: str) -> float:
    value = REGISTRY.get_sample_value(
        "searchpilot_fetch_requests_total", {"domain": domain, "method": "GET", "status": "200"}
    )
    return value or 0.0


def test_disabled_collector_records_nothing() -> None:
    metrics.configure(False)
    metrics.record_fetch("off.example.com", "GET", "200")
    assert not metrics.enabled
    assert fetch_count("off.example.com") == 0.0


def test_enabled_collector_records() -> None:
    metrics.configure(True)
    metrics.record_fetch("on.example.com", "GET", "200")
    metrics.record_fetch("on.example.com", "GET", "200")
    assert fetch_count("on.example.com") == 2.0


@pytest.mark.asyncio
async def test_facade_settings_switch_metrics_on(monkeypatch) -> None:
    monkeypatch.delenv("PROMETHEUS_METRICS_ENABLED", raising=False)
    ports: list[int] = []
    monkeypatch.setattr(metrics, "start_server", ports.append)
    observability = ObservabilityConfig().model_copy(update={"metrics_enabled": True, "metrics_port": 9464})
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))

    pilot = SearchPilot(Settings(observability=observability), launcher=FakeLauncher(), http_client=client)

    assert metrics.enabled
    assert ports == [9464]
    await pilot.close()
