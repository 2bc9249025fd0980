"""
Browser session manager.

Owns the one browser session shared by every search and depth-1 extraction:
launch, navigation to the answer engine, input probing, CAPTCHA checks,
recovery, and proactive teardown after an idle window.

State machine:
    UNINITIALIZED -> INITIALIZING -> READY -> RECOVERING -> INITIALIZING
                                          \\-> CLOSED
A failed initialization falls back to UNINITIALIZED with handles discarded,
so the next call starts clean. Idle teardown also lands in UNINITIALIZED and
the session is relaunched lazily on next use.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Optional
from urllib.parse import urlsplit

import structlog

from searchpilot.browser.capability import BrowserHandle, BrowserLauncher, PageHandle
from searchpilot.browser.scripts import ANY_SELECTOR_PRESENT, IS_INTERACTIVE, MAIN_HAS_INTERNAL_ERROR
from searchpilot.browser.selectors import SelectorSet
from searchpilot.browser.stealth import build_launch_options
from searchpilot.config import BrowserConfig
from searchpilot.errors import BrowserInitError, DetachedFrameError, NavigationError, SelectorNotFoundError
from searchpilot.models import SessionState
from searchpilot.observability.metrics import metrics
from searchpilot.resilience.recovery import classify_recovery_level

logger = structlog.get_logger()


def _is_timeout(exc: BaseException) -> bool:
    if isinstance(exc, TimeoutError):
        return True
    return "timeout" in type(exc).__name__.lower() or "timeout" in str(exc).lower()


def _bare_host(url: str) -> str:
    return (urlsplit(url).hostname or "").lower().removeprefix("www.")


class BrowserSessionManager:
    """Single shared browser session with recovery and idle teardown."""

    def __init__(
        self,
        launcher: BrowserLauncher,
        config: Optional[BrowserConfig] = None,
        selectors: Optional[SelectorSet] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or BrowserConfig()
        self.selectors = selectors or SelectorSet()
        self._launcher = launcher
        self._sleep = sleep

        self._state = SessionState.UNINITIALIZED
        self._browser: Optional[BrowserHandle] = None
        self._page: Optional[PageHandle] = None
        self._input_selector: Optional[str] = None
        self._idle_handle: Optional[asyncio.TimerHandle] = None
        self._idle_task: Optional[asyncio.Task[None]] = None
        self._init_done: Optional[asyncio.Event] = None
        self._operation_counter = 0
        self._in_flight = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def page(self) -> Optional[PageHandle]:
        return self._page

    @property
    def input_selector(self) -> Optional[str]:
        """Last input selector that proved interactive, if any."""
        return self._input_selector

    def is_ready(self) -> bool:
        return (
            self._state is SessionState.READY
            and self._page is not None
            and not self._page.is_closed()
        )

    # ── lifecycle ─────────────────────────────────────────

    async def initialize(self, navigate: bool = True) -> None:
        """
        Launch a fresh session and (by default) open the answer engine.

        A call made while another initialization is in flight returns
        immediately. Raises BrowserInitError if launch plus navigation does
        not finish within ``page_timeout``.
        """
        if self._state is SessionState.INITIALIZING:
            logger.debug("browser_init_in_progress")
            return

        self._state = SessionState.INITIALIZING
        done = asyncio.Event()
        self._init_done = done
        logger.info("browser_initializing", headless=self.config.headless, target=self.config.target_url)
        launched = False
        try:
            await asyncio.wait_for(self._launch(navigate), timeout=self.config.page_timeout)
            launched = True
        except Exception as exc:
            await self._discard_handles()
            self._state = SessionState.UNINITIALIZED
            reason = str(exc) or type(exc).__name__
            logger.error("browser_init_failed", error=reason)
            raise BrowserInitError(f"Page not initialized: {reason}") from exc
        finally:
            if not launched and self._state is SessionState.INITIALIZING:
                self._state = SessionState.UNINITIALIZED
            done.set()

        self._state = SessionState.READY
        self.reset_idle_timeout()
        logger.info("browser_initialized", url=self._page.url if self._page else None)

    async def _launch(self, navigate: bool) -> None:
        await self._discard_handles()
        self._browser = await self._launcher.launch(build_launch_options(self.config))
        self._page = await self._browser.new_page()
        if navigate:
            await self.navigate_to_target()

    async def ensure_ready(self, navigate: bool = True) -> None:
        """
        Make the session usable: wait for an in-flight init, or start one.

        ``navigate=False`` skips opening the answer engine on a fresh launch,
        for callers that navigate the page elsewhere anyway.
        """
        if self.is_ready():
            self.reset_idle_timeout()
            return
        if self._state is SessionState.INITIALIZING and self._init_done is not None:
            await self._init_done.wait()
            if self.is_ready():
                self.reset_idle_timeout()
                return
        await self.initialize(navigate=navigate)

    async def perform_recovery(self, error: Optional[BaseException] = None) -> None:
        """
        Tear the session down, cool off, and initialize again.

        A recovery that is overtaken by a newer one (or by cleanup) during its
        cool-down gives up instead of launching a second browser.
        """
        if self._state is SessionState.CLOSED:
            logger.info("recovery_skipped", reason="session closed")
            return

        self._operation_counter += 1
        op_id = self._operation_counter
        level = classify_recovery_level(error)
        logger.warning(
            "recovery_started",
            op_id=op_id,
            level=int(level),
            error=str(error)[:200] if error else None,
        )
        metrics.record_recovery(int(level))

        self._state = SessionState.RECOVERING
        self._cancel_idle_timer()
        await self._discard_handles()
        await self._sleep(self.config.recovery_wait)

        if op_id != self._operation_counter or self._state is SessionState.CLOSED:
            logger.info("recovery_superseded", op_id=op_id, current=self._operation_counter)
            return

        await self.initialize()
        logger.info("recovery_completed", op_id=op_id)

    async def cleanup(self) -> None:
        """Close the session for good. Pending recoveries are abandoned."""
        self._cancel_idle_timer()
        self._operation_counter += 1
        await self._discard_handles()
        self._state = SessionState.CLOSED
        logger.info("browser_session_closed")

    async def _discard_handles(self) -> None:
        page, browser = self._page, self._browser
        self._page = None
        self._browser = None
        if page is not None and not page.is_closed():
            try:
                await page.close()
            except Exception as exc:
                logger.debug("page_close_failed", error=str(exc))
        if browser is not None:
            try:
                await browser.close()
            except Exception as exc:
                logger.debug("browser_close_failed", error=str(exc))

    # ── navigation and probing ────────────────────────────

    async def navigate_to_target(self) -> None:
        """Open the answer engine on the active page and confirm it is usable."""
        page = self._page
        if page is None or page.is_closed():
            raise NavigationError("Page not initialized")

        target = self.config.target_url
        logger.info("navigating", url=target)
        try:
            response = await page.goto(
                target, timeout=self.config.navigation_timeout, wait_until="domcontentloaded"
            )
            if response is not None and not response.ok:
                raise NavigationError(f"HTTP {response.status} loading {target}")
            if await page.evaluate(MAIN_HAS_INTERNAL_ERROR):
                raise NavigationError("Target reported an internal error page")
        except NavigationError:
            raise
        except Exception as exc:
            if not _is_timeout(exc):
                raise NavigationError(f"Navigation failed: {exc}") from exc
            # Slow pages often finish rendering after domcontentloaded times out
            logger.warning("navigation_timeout_tolerated", url=target, error=str(exc)[:200])

        if page.is_closed() or page.is_detached():
            raise DetachedFrameError("Frame detached during navigation")

        if await self.wait_for_search_input() is None:
            raise SelectorNotFoundError(
                "Search input not found after navigation - page might not have loaded correctly"
            )

        if _bare_host(page.url) != _bare_host(target):
            raise NavigationError(f"Navigation redirected to unexpected URL: {page.url}")
        logger.debug("navigation_complete", url=page.url)

    async def wait_for_search_input(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Return the first visible, enabled, non-hidden search input selector.

        The cached selector is tried first. The first candidate gets a longer
        probe than the fallbacks; the whole scan is bounded by ``timeout``
        (default ``selector_timeout``). Returns None if nothing qualifies.
        """
        page = self._page
        if page is None or page.is_closed():
            return None

        candidates = list(self.selectors.search_inputs)
        if self._input_selector in candidates:
            candidates.remove(self._input_selector)
            candidates.insert(0, self._input_selector)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + (timeout if timeout is not None else self.config.selector_timeout)
        for index, selector in enumerate(candidates):
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            probe = self.config.primary_input_probe if index == 0 else self.config.fallback_input_probe
            if not await page.wait_for_selector(selector, timeout=min(probe, remaining), visible=True):
                continue
            if await page.evaluate(IS_INTERACTIVE, selector):
                if selector != self._input_selector:
                    logger.debug("search_input_found", selector=selector)
                self._input_selector = selector
                return selector

        logger.warning("search_input_not_found", tried=len(candidates))
        return None

    async def check_for_captcha(self) -> bool:
        page = self._page
        if page is None or page.is_closed():
            return False
        try:
            detected = bool(await page.evaluate(ANY_SELECTOR_PRESENT, self.selectors.captcha))
        except Exception as exc:
            logger.warning("captcha_check_failed", error=str(exc)[:200])
            return False
        if detected:
            logger.warning("captcha_detected", url=page.url)
        return detected

    # ── idle teardown ─────────────────────────────────────

    @asynccontextmanager
    async def operation(self) -> AsyncIterator[None]:
        """Mark an operation in flight; idle teardown waits until none are."""
        self._in_flight += 1
        try:
            yield
        finally:
            self._in_flight -= 1
            if self._state is SessionState.READY:
                self.reset_idle_timeout()

    def reset_idle_timeout(self) -> None:
        self._cancel_idle_timer()
        if self._state is SessionState.CLOSED:
            return
        loop = asyncio.get_running_loop()
        self._idle_handle = loop.call_later(self.config.idle_timeout, self._on_idle)

    def _cancel_idle_timer(self) -> None:
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None

    def _on_idle(self) -> None:
        self._idle_handle = None
        if self._in_flight or self._state in (SessionState.INITIALIZING, SessionState.RECOVERING):
            logger.debug("idle_teardown_deferred", in_flight=self._in_flight, state=self._state.value)
            self.reset_idle_timeout()
            return
        if self._state is not SessionState.READY:
            return
        self._idle_task = asyncio.get_running_loop().create_task(self._idle_teardown())

    async def _idle_teardown(self) -> None:
        if self._in_flight:
            self.reset_idle_timeout()
            return
        logger.info("idle_timeout_teardown", idle_seconds=self.config.idle_timeout)
        await self._discard_handles()
        if self._state is SessionState.READY:
            self._state = SessionState.UNINITIALIZED
