"""Tests for the retry executor: backoff shape, classification and remediation hooks."""

from __future__ import annotations

import pytest

from searchpilot.errors import CircuitOpenError, DetachedFrameError, NavigationError
from searchpilot.models import RetryPolicy
from searchpilot.resilience.retry import RetryExecutor, compute_delay, is_retryable


class TestComputeDelay:
    def test_exponential_without_jitter(self) -> None:
        policy = RetryPolicy(base_delay=1.0, max_delay=30.0, jitter=False)
        assert [compute_delay(policy, n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 16.0]

    def test_capped_at_max_delay(self) -> None:
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=False)
        assert compute_delay(policy, 10) == 5.0

    def test_non_decreasing_up_to_cap(self) -> None:
        policy = RetryPolicy(base_delay=0.5, max_delay=10.0, jitter=False)
        delays = [compute_delay(policy, n) for n in range(1, 12)]
        assert delays == sorted(delays)
        assert delays[-1] == 10.0

    @pytest.mark.parametrize("sample", [0.0, 0.25, 0.999])
    def test_jitter_within_half_to_full(self, sample: float) -> None:
        policy = RetryPolicy(base_delay=2.0, max_delay=30.0, jitter=True)
        delay = compute_delay(policy, 3, rng=lambda: sample)
        assert 0.5 * 8.0 <= delay <= 8.0


class TestIsRetryable:
    def test_transient_marker_in_message(self) -> None:
        assert is_retryable(OSError("read ECONNRESET"), RetryPolicy())

    def test_marker_in_class_name(self) -> None:
        assert is_retryable(TimeoutError(), RetryPolicy())

    def test_unknown_error_not_retryable(self) -> None:
        assert not is_retryable(ValueError("bad input"), RetryPolicy())

    def test_typed_errors_use_their_flag(self) -> None:
        assert is_retryable(NavigationError("target unreachable"), RetryPolicy())
        assert not is_retryable(DetachedFrameError("gone"), RetryPolicy())

    def test_open_circuit_never_retryable(self) -> None:
        assert not is_retryable(CircuitOpenError("search"), RetryPolicy())


class _Flaky:
    def __init__(self, failures: list[BaseException], value: str = "ok") -> None:
        self.failures = list(failures)
        self.value = value
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.value


class TestRetryExecutor:
    @pytest.mark.asyncio
    async def test_success_first_try(self, sleeper) -> None:
        op = _Flaky([])
        result = await RetryExecutor(sleep=sleeper).execute(op, RetryPolicy(), "test")
        assert result.success
        assert result.value == "ok"
        assert result.attempts == 1
        assert sleeper.calls == []

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self, sleeper) -> None:
        op = _Flaky([OSError("ETIMEDOUT"), OSError("ECONNRESET")])
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, jitter=False)
        result = await RetryExecutor(sleep=sleeper).execute(op, policy, "test")
        assert result.success
        assert result.attempts == 3
        assert sleeper.calls == [1.0, 2.0]
        assert result.total_delay == pytest.approx(3.0)

    @pytest.mark.asyncio
    async def test_non_retryable_returns_immediately(self, sleeper) -> None:
        op = _Flaky([ValueError("bad selector")])
        result = await RetryExecutor(sleep=sleeper).execute(op, RetryPolicy(max_attempts=5), "test")
        assert not result.success
        assert isinstance(result.error, ValueError)
        assert result.attempts == 1
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_exhausted_attempts_report_last_error(self, sleeper) -> None:
        op = _Flaky([OSError("ETIMEDOUT 1"), OSError("ETIMEDOUT 2"), OSError("ETIMEDOUT 3")])
        policy = RetryPolicy(max_attempts=3, jitter=False)
        result = await RetryExecutor(sleep=sleeper).execute(op, policy, "test")
        assert not result.success
        assert str(result.error) == "ETIMEDOUT 3"
        assert result.attempts == 3
        assert len(sleeper.calls) == 2

    @pytest.mark.asyncio
    async def test_circuit_open_propagates_without_retry(self, sleeper) -> None:
        op = _Flaky([CircuitOpenError("search")])
        with pytest.raises(CircuitOpenError):
            await RetryExecutor(sleep=sleeper).execute(
                op, RetryPolicy(max_attempts=5), "test", should_retry=lambda exc: True
            )
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_on_retry_sees_previous_failure(self, sleeper) -> None:
        first = ValueError("first")
        op = _Flaky([first])
        seen: list[tuple[BaseException, int]] = []

        async def on_retry(exc: BaseException, attempt: int) -> None:
            seen.append((exc, attempt))

        result = await RetryExecutor(sleep=sleeper).execute(
            op, RetryPolicy(max_attempts=3, jitter=False), "test", should_retry=lambda exc: True, on_retry=on_retry
        )
        assert result.success
        assert seen == [(first, 2)]
