"""
Answer extraction engine.

Submits a query through the shared browser session and waits for the answer
to stabilize. Each search spends its whole attempt budget inside one circuit
breaker call, so only an exhausted search counts against the breaker. Between
attempts the failure is remediated by its recovery tier
(CAPTCHA or tier 3: full session recovery, tier 2: navigate again, tier 1:
plain retry). Callers always get a string back: an answer, a partial answer,
or an explanation of why the search could not complete.
"""

from __future__ import annotations

import asyncio
import random
from typing import Callable, Optional

import structlog

from searchpilot.browser.scripts import BODY_TEXT_LENGTH, CLEAR_INPUT, LARGEST_TEXT_BLOCKS
from searchpilot.browser.session import BrowserSessionManager
from searchpilot.config import RetryConfig, StabilizationConfig
from searchpilot.errors import (
    AttemptsExhaustedError,
    CaptchaDetectedError,
    CircuitOpenError,
    DetachedFrameError,
    OperationTimeoutError,
    SelectorNotFoundError,
)
from searchpilot.models import RecoveryLevel, RetryPolicy, RetryResult
from searchpilot.observability.metrics import metrics
from searchpilot.resilience.circuit_breaker import CircuitBreaker
from searchpilot.resilience.recovery import classify_recovery_level
from searchpilot.resilience.retry import RetryExecutor
from searchpilot.search.stabilizer import AnswerStabilizer

logger = structlog.get_logger()

PARTIAL_NOTE = "\n\n[Note: Answer retrieval was interrupted. This is a partial response.]"
ANSWER_TIMED_OUT_MESSAGE = (
    "Answer retrieval timed out. The service might be experiencing high load. "
    "Please try again with a more specific query."
)
DETACHED_MESSAGE = (
    "The search operation encountered a technical issue. Please try again with a more specific query."
)
TIMEOUT_MESSAGE = (
    "The search operation is taking longer than expected. This might be due to high server load. "
    "Please try again with a more specific query."
)
NAVIGATION_MESSAGE = (
    "The search operation encountered a navigation issue. This might be due to network "
    "connectivity problems. Please try again later."
)
CIRCUIT_OPEN_MESSAGE = (
    "The search service is temporarily unavailable after repeated failures. "
    "Please wait a minute before trying again."
)

# Per-keystroke delay range, seconds
TYPING_DELAY = (0.02, 0.04)


def failure_message(error: Optional[BaseException]) -> str:
    """User-facing explanation for a search that failed on every attempt."""
    msg = str(error) if error is not None else "Unknown error"
    lowered = msg.lower()
    if "detached" in lowered:
        return DETACHED_MESSAGE
    if "timeout" in lowered or "timed out" in lowered:
        return TIMEOUT_MESSAGE
    if "navigation" in lowered:
        return NAVIGATION_MESSAGE
    return (
        f"The search operation could not be completed. Error: {msg}. "
        "Please try again later with a more specific query."
    )


class AnswerEngine:
    """Query submission, answer polling and retry-time remediation."""

    def __init__(
        self,
        session: BrowserSessionManager,
        retry_config: Optional[RetryConfig] = None,
        stabilization: Optional[StabilizationConfig] = None,
        breaker: Optional[CircuitBreaker] = None,
        executor: Optional[RetryExecutor] = None,
        stabilizer: Optional[AnswerStabilizer] = None,
        typing_delay: Callable[[], float] = lambda: random.uniform(*TYPING_DELAY),
    ) -> None:
        self.session = session
        retry_config = retry_config or RetryConfig()
        self.policy = RetryPolicy(
            max_attempts=session.config.max_search_attempts,
            base_delay=retry_config.base_delay,
            max_delay=retry_config.max_delay,
            jitter=retry_config.jitter,
            retryable_errors=tuple(retry_config.retryable_errors),
        )
        self.breaker = breaker or CircuitBreaker("search")
        self.executor = executor or RetryExecutor()
        self.stabilizer = stabilizer or AnswerStabilizer(stabilization)
        self._typing_delay = typing_delay

    async def perform_search(self, query: str) -> str:
        """Run ``query`` against the answer engine. Never raises for search failures."""
        logger.info("search_started", query=query[:120])
        async with self.session.operation(), metrics.track_search() as tracker:
            try:
                await self.session.ensure_ready()
            except Exception as exc:
                # The first attempt initializes again; this only records why
                logger.warning("search_session_not_ready", error=str(exc)[:200])

            try:
                result = await self.breaker.execute(lambda: self._run_attempts(query), "search")
            except CircuitOpenError as exc:
                tracker.outcome = "circuit_open"
                logger.warning("search_rejected", reason=str(exc), retry_at=exc.retry_at)
                return CIRCUIT_OPEN_MESSAGE
            except AttemptsExhaustedError as exc:
                result = exc.result

            tracker.attempts = result.attempts
            if result.success:
                logger.info("search_completed", attempts=result.attempts, length=len(result.value or ""))
                return result.value

            tracker.outcome = "error"
            error = result.error
            logger.error("search_failed", attempts=result.attempts, error=str(error)[:200])
            lowered = str(error).lower()
            if any(m in lowered for m in ("detached", "timeout", "timed out", "navigation")):
                try:
                    await self.session.perform_recovery(error)
                except Exception as recovery_exc:
                    logger.error("post_failure_recovery_failed", error=str(recovery_exc)[:200])
            return failure_message(error)

    async def _run_attempts(self, query: str) -> RetryResult:
        """One breaker call: the whole attempt budget, raising only if every attempt failed."""
        result = await self.executor.execute(
            lambda: self._attempt(query),
            self.policy,
            context="search",
            should_retry=lambda exc: True,
            on_retry=self._remediate,
        )
        if not result.success:
            raise AttemptsExhaustedError(result)
        return result

    async def _remediate(self, exc: BaseException, attempt: int) -> None:
        """Called before every retry with the failure of the previous attempt."""
        if isinstance(exc, CaptchaDetectedError) or await self.session.check_for_captcha():
            logger.warning("captcha_remediation", attempt=attempt)
            await self.session.perform_recovery(exc)
            return

        level = classify_recovery_level(exc)
        hinted = getattr(exc, "recovery_level", RecoveryLevel.MINOR)
        level = max(level, hinted)
        logger.info("search_remediation", attempt=attempt, level=int(level), error=str(exc)[:200])
        if level >= RecoveryLevel.BROWSER:
            await self.session.perform_recovery(exc)
        elif level == RecoveryLevel.PAGE:
            try:
                await self.session.navigate_to_target()
            except Exception as nav_exc:
                logger.warning("renavigation_failed", error=str(nav_exc)[:200])
                await self.session.perform_recovery(nav_exc)

    async def _attempt(self, query: str) -> str:
        session = self.session
        await session.ensure_ready()
        await session.navigate_to_target()
        page = session.page
        if page is None or page.is_closed() or page.is_detached():
            raise DetachedFrameError("Main frame is detached")

        selector = await session.wait_for_search_input()
        if selector is None:
            raise SelectorNotFoundError("Search input not found")

        await page.evaluate(CLEAR_INPUT, selector)
        await page.click(selector, click_count=3)
        await page.press("Backspace")
        await page.type(selector, query, delay=self._typing_delay())
        await page.press("Enter")
        logger.debug("query_submitted", selector=selector)

        config = session.config
        selectors = session.selectors
        appeared = await page.wait_for_selector(
            ", ".join(selectors.responses), timeout=config.selector_timeout, visible=True
        )
        if not appeared:
            return await self._fallback_answer()

        try:
            return await asyncio.wait_for(
                self.stabilizer.wait_for_answer(page, selectors.responses),
                timeout=config.answer_wait_timeout,
            )
        except TimeoutError as exc:
            logger.warning("answer_wait_timed_out", error=str(exc) or "timeout")
            partial = await self.stabilizer.read_partial(page, selectors.responses)
            if partial:
                return partial + PARTIAL_NOTE
            return ANSWER_TIMED_OUT_MESSAGE

    async def _fallback_answer(self) -> str:
        """No response container appeared; salvage the largest text blocks if the page has any."""
        page = self.session.page
        if page is None or page.is_closed() or page.is_detached():
            raise DetachedFrameError("Page became invalid while waiting for response")
        body_length = await page.evaluate(BODY_TEXT_LENGTH)
        if (body_length or 0) > 200:
            text = await page.evaluate(LARGEST_TEXT_BLOCKS, self.session.selectors.fallback_answer)
            if text:
                logger.info("fallback_answer_extracted", length=len(text))
                return text
        raise OperationTimeoutError("Timed out waiting for response")
