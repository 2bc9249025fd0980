"""Tests for query submission, retries, remediation and terminal messages."""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

import pytest

from fakes import FakeLauncher, FakePage, SleepRecorder, answer, browser_config
from searchpilot.browser.session import BrowserSessionManager
from searchpilot.config import BrowserConfig, CircuitBreakerConfig, StabilizationConfig
from searchpilot.errors import DetachedFrameError, NavigationError, OperationTimeoutError
from searchpilot.models import CircuitState
from searchpilot.resilience.circuit_breaker import CircuitBreaker
from searchpilot.resilience.retry import RetryExecutor
from searchpilot.search.answer_engine import (
    ANSWER_TIMED_OUT_MESSAGE,
    CIRCUIT_OPEN_MESSAGE,
    DETACHED_MESSAGE,
    NAVIGATION_MESSAGE,
    PARTIAL_NOTE,
    TIMEOUT_MESSAGE,
    AnswerEngine,
    failure_message,
)
from searchpilot.search.stabilizer import AnswerStabilizer

QUERY = "What is the capital of France?"
PARIS = (
    "The capital of France is Paris, which is also the largest city in the country "
    "and its political and cultural centre."
)
SOURCE = "https://en.wikipedia.org/wiki/Paris"


def answering_page() -> FakePage:
    page = FakePage()
    page.snapshots = [answer(PARIS, urls=(SOURCE,))]
    return page


def silent_page() -> FakePage:
    """Input works but no response container ever renders."""
    page = FakePage()
    page.visible = {'[role="textbox"]'}
    return page


def pages(*factories: Callable[[], FakePage]) -> Callable[[], FakePage]:
    """Page factory that walks through ``factories``, repeating the last one."""
    queue = list(factories)

    def make() -> FakePage:
        return (queue.pop(0) if len(queue) > 1 else queue[0])()

    return make


def build_engine(
    launcher: FakeLauncher,
    sleeper: SleepRecorder,
    stabilizer: Optional[AnswerStabilizer] = None,
    breaker: Optional[CircuitBreaker] = None,
    **config_overrides,
) -> AnswerEngine:
    session = BrowserSessionManager(launcher, browser_config(**config_overrides), sleep=sleeper)
    return AnswerEngine(
        session,
        breaker=breaker,
        executor=RetryExecutor(sleep=sleeper, rng=lambda: 0.0),
        stabilizer=stabilizer or AnswerStabilizer(sleep=sleeper),
        typing_delay=lambda: 0.03,
    )


class TestFailureMessage:
    @pytest.mark.parametrize(
        "error, expected",
        [
            (DetachedFrameError("Main frame is detached"), DETACHED_MESSAGE),
            (OperationTimeoutError("Timed out waiting for response"), TIMEOUT_MESSAGE),
            (TimeoutError("Timeout 45000ms exceeded"), TIMEOUT_MESSAGE),
            (NavigationError("Navigation failed: net::ERR_NAME_NOT_RESOLVED"), NAVIGATION_MESSAGE),
        ],
    )
    def test_known_failures(self, error: BaseException, expected: str) -> None:
        assert failure_message(error) == expected

    def test_generic_failure_includes_error(self) -> None:
        message = failure_message(RuntimeError("Input rejected"))
        assert "could not be completed" in message
        assert "Input rejected" in message


class TestPerformSearch:
    @pytest.mark.asyncio
    async def test_answer_with_sources(self, sleeper: SleepRecorder) -> None:
        launcher = FakeLauncher(answering_page)
        engine = build_engine(launcher, sleeper)

        result = await engine.perform_search(QUERY)

        assert result == f"{PARIS}\n\nURLs:\n- {SOURCE}"
        assert len(launcher.launches) == 1
        page = launcher.last_page
        assert page.snapshot_reads == 3
        assert page.typed == [('[role="textbox"]', QUERY, 0.03)]
        assert page.clicks == [('[role="textbox"]', 3)]
        assert page.pressed == ["Backspace", "Enter"]
        # only stabilization polls slept, no retry backoff
        assert sleeper.calls == [0.6, 0.6]

    @pytest.mark.asyncio
    async def test_fallback_to_largest_text_blocks(self, sleeper: SleepRecorder) -> None:
        def page_without_container() -> FakePage:
            page = silent_page()
            page.body_text_length = 800
            page.largest_blocks = "Paris is the capital of France.\n\nIt sits on the Seine."
            return page

        engine = build_engine(FakeLauncher(page_without_container), sleeper)
        assert await engine.perform_search(QUERY) == "Paris is the capital of France.\n\nIt sits on the Seine."

    @pytest.mark.asyncio
    async def test_every_attempt_times_out(self, sleeper: SleepRecorder) -> None:
        launcher = FakeLauncher(silent_page)
        engine = build_engine(launcher, sleeper)

        assert await engine.perform_search(QUERY) == TIMEOUT_MESSAGE
        # three attempts re-navigate in place; the final failure triggers one recovery
        assert len(launcher.launches) == 2
        # backoff 0.5s then 1.0s with zero jitter, then the recovery cool-down
        assert sleeper.calls == [0.5, 1.0, 0.0]

    @pytest.mark.asyncio
    async def test_captcha_triggers_full_recovery(self, sleeper: SleepRecorder) -> None:
        def challenged_page() -> FakePage:
            page = silent_page()
            page.captcha = True
            return page

        launcher = FakeLauncher(pages(challenged_page, answering_page))
        engine = build_engine(launcher, sleeper)

        result = await engine.perform_search(QUERY)

        assert result.startswith(PARIS)
        assert len(launcher.launches) == 2
        assert launcher.browsers[0].closed

    @pytest.mark.asyncio
    async def test_detached_page_recovers_browser(self, sleeper: SleepRecorder) -> None:
        launcher = FakeLauncher(answering_page)
        engine = build_engine(launcher, sleeper)
        await engine.session.initialize()
        launcher.last_page.detached = True

        result = await engine.perform_search(QUERY)

        assert result.startswith(PARIS)
        assert len(launcher.launches) == 2

    @pytest.mark.asyncio
    async def test_open_circuit_short_circuits(self, sleeper: SleepRecorder) -> None:
        config = CircuitBreakerConfig().model_copy(update={"failure_threshold": 1})
        breaker = CircuitBreaker("search", config)
        launcher = FakeLauncher(silent_page)
        engine = build_engine(launcher, sleeper, breaker=breaker)

        # the exhausted search itself still explains its own failure
        assert await engine.perform_search(QUERY) == TIMEOUT_MESSAGE
        assert breaker.state is CircuitState.OPEN
        launches = len(launcher.launches)

        assert await engine.perform_search(QUERY) == CIRCUIT_OPEN_MESSAGE
        assert len(launcher.launches) == launches

    @pytest.mark.asyncio
    async def test_default_budget_is_not_cut_short_by_breaker(self, sleeper: SleepRecorder) -> None:
        launcher = FakeLauncher(silent_page)
        breaker = CircuitBreaker("search", CircuitBreakerConfig())
        engine = build_engine(launcher, sleeper, breaker=breaker, max_search_attempts=BrowserConfig().max_search_attempts)

        assert await engine.perform_search(QUERY) == TIMEOUT_MESSAGE
        assert len(launcher.browsers[0].pages[0].typed) == 10
        # one exhausted search is one breaker failure
        assert breaker.state is CircuitState.CLOSED
        assert breaker.stats().failure_count == 1
        # the final timeout still triggers the post-failure recovery
        assert len(launcher.launches) == 2

    @pytest.mark.asyncio
    async def test_attempt_budget_from_config(self, sleeper: SleepRecorder) -> None:
        engine = build_engine(FakeLauncher(answering_page), sleeper, max_search_attempts=7)
        assert engine.policy.max_attempts == 7


class TestAnswerTimeout:
    @pytest.fixture
    def slow_stabilizer(self) -> AnswerStabilizer:
        config = StabilizationConfig().model_copy(update={"poll_interval": 5.0, "partial_read_interval": 0.0})
        return AnswerStabilizer(config, sleep=asyncio.sleep)

    @pytest.mark.asyncio
    async def test_partial_answer_is_flagged(self, sleeper: SleepRecorder, slow_stabilizer: AnswerStabilizer) -> None:
        def streaming_page() -> FakePage:
            page = FakePage()
            page.snapshots = [answer("The capital"), answer(PARIS)]
            return page

        engine = build_engine(
            FakeLauncher(streaming_page), sleeper, stabilizer=slow_stabilizer, answer_wait_timeout=0.05
        )
        assert await engine.perform_search(QUERY) == PARIS + PARTIAL_NOTE

    @pytest.mark.asyncio
    async def test_nothing_substantial_after_timeout(
        self, sleeper: SleepRecorder, slow_stabilizer: AnswerStabilizer
    ) -> None:
        def stuck_page() -> FakePage:
            page = FakePage()
            page.snapshots = [answer("Par")]
            return page

        engine = build_engine(FakeLauncher(stuck_page), sleeper, stabilizer=slow_stabilizer, answer_wait_timeout=0.05)
        assert await engine.perform_search(QUERY) == ANSWER_TIMED_OUT_MESSAGE
