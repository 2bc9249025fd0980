"""
Retry executor: exponential backoff with optional jitter, built on tenacity.

Retry only transient failures. Typed searchpilot errors answer through their
``retryable`` flag; anything else is matched against the policy vocabulary.
An open circuit is never retried and always propagates.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import Any, Optional

import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from searchpilot.errors import CircuitOpenError, SearchPilotError
from searchpilot.models import RetryPolicy, RetryResult

logger = structlog.get_logger()

SleepFn = Callable[[float], Awaitable[None]]
OnRetry = Callable[[BaseException, int], Awaitable[None]]


def compute_delay(
    policy: RetryPolicy,
    attempt: int,
    rng: Callable[[], float] = random.random,
) -> float:
    """Delay before the retry that follows ``attempt`` (1-based)."""
    delay = min(policy.base_delay * (2 ** (attempt - 1)), policy.max_delay)
    if policy.jitter:
        delay *= 0.5 + rng() * 0.5
    return delay


def is_retryable(exc: BaseException, policy: RetryPolicy) -> bool:
    """Classify a failure for the default retry predicate."""
    if isinstance(exc, CircuitOpenError):
        return False
    if isinstance(exc, SearchPilotError):
        return exc.retryable
    names = {cls.__name__ for cls in type(exc).__mro__}
    msg = str(exc)
    return any(marker in msg or marker in names for marker in policy.retryable_errors)


class _PolicyWait(wait_base):
    """tenacity wait strategy that defers to ``compute_delay``."""

    def __init__(self, policy: RetryPolicy, rng: Callable[[], float]) -> None:
        self.policy = policy
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        return compute_delay(self.policy, retry_state.attempt_number, self.rng)


class RetryExecutor:
    """Runs an async operation under a ``RetryPolicy`` and reports the outcome."""

    def __init__(
        self,
        sleep: SleepFn = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._sleep = sleep
        self._rng = rng

    async def execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        policy: RetryPolicy,
        context: str = "",
        *,
        should_retry: Optional[Callable[[BaseException], bool]] = None,
        on_retry: Optional[OnRetry] = None,
    ) -> RetryResult:
        """
        Attempt ``operation`` up to ``policy.max_attempts`` times.

        Args:
            operation: Zero-arg coroutine factory; called once per attempt
            policy: Attempts, backoff shape and retryable vocabulary
            context: Label for log events
            should_retry: Override the default retry predicate. CircuitOpenError
                is never retried regardless.
            on_retry: Awaited at the start of every attempt after the first with
                the previous failure and the new attempt number. Remediation
                (re-navigation, session recovery) hooks in here.

        Returns a RetryResult; failures are reported, not raised, except
        CircuitOpenError which always propagates.
        """
        predicate = should_retry or (lambda exc: is_retryable(exc, policy))

        def _retry_allowed(exc: BaseException) -> bool:
            if isinstance(exc, CircuitOpenError):
                return False
            return predicate(exc)

        def _before_sleep(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "retry_scheduled",
                context=context,
                attempt=retry_state.attempt_number,
                max_attempts=policy.max_attempts,
                delay=round(retry_state.next_action.sleep, 3) if retry_state.next_action else 0.0,
                error=str(exc)[:200],
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=_PolicyWait(policy, self._rng),
            retry=retry_if_exception(_retry_allowed),
            sleep=self._sleep,
            before_sleep=_before_sleep,
            reraise=True,
        )

        state: Optional[RetryCallState] = None
        last_exc: Optional[BaseException] = None
        value: Any = None
        try:
            async for attempt in retrying:
                state = attempt.retry_state
                with attempt:
                    if last_exc is not None and on_retry is not None:
                        await on_retry(last_exc, state.attempt_number)
                    value = await operation()
                outcome = state.outcome
                if outcome is not None and outcome.failed:
                    last_exc = outcome.exception()
        except CircuitOpenError:
            raise
        except Exception as exc:
            attempts = state.attempt_number if state else 0
            logger.error(
                "retry_failed",
                context=context,
                attempts=attempts,
                error=str(exc)[:200],
            )
            return RetryResult(
                success=False,
                error=exc,
                attempts=attempts,
                total_delay=state.idle_for if state else 0.0,
            )

        return RetryResult(
            success=True,
            value=value,
            attempts=state.attempt_number if state else 0,
            total_delay=state.idle_for if state else 0.0,
        )
