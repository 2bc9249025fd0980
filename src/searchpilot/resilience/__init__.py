"""Resilience: retry executor, circuit breaker and recovery-level classifier."""

from searchpilot.resilience.circuit_breaker import CircuitBreaker
from searchpilot.resilience.recovery import classify_recovery_level
from searchpilot.resilience.retry import RetryExecutor

__all__ = ["CircuitBreaker", "RetryExecutor", "classify_recovery_level"]
