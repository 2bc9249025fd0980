"""Observability: structlog setup and Prometheus metrics."""

from searchpilot.observability.logging import configure_logging
from searchpilot.observability.metrics import metrics

__all__ = ["configure_logging", "metrics"]
