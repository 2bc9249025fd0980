"""
Playwright implementation of the browser capability.

One Playwright driver process is started lazily and reused across launches.
Each launch gets its own browser context carrying the viewport, user agent
and init scripts, so every page opened from it is already patched.
"""

from __future__ import annotations

from typing import Any, Optional

import structlog
from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from searchpilot.browser.capability import LaunchOptions, NavigationResponse

logger = structlog.get_logger()


class PlaywrightPage:
    """PageHandle over a Playwright ``Page``."""

    def __init__(self, page: Page) -> None:
        self._page = page

    @property
    def url(self) -> str:
        return self._page.url

    def is_closed(self) -> bool:
        return self._page.is_closed()

    def is_detached(self) -> bool:
        return self._page.main_frame.is_detached()

    async def goto(
        self, url: str, *, timeout: float, wait_until: str = "domcontentloaded"
    ) -> Optional[NavigationResponse]:
        response = await self._page.goto(url, timeout=timeout * 1000, wait_until=wait_until)  # type: ignore[arg-type]
        if response is None:
            return None
        return NavigationResponse(status=response.status)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self._page.evaluate(script, arg)

    async def wait_for_selector(self, selector: str, *, timeout: float, visible: bool = True) -> bool:
        try:
            await self._page.wait_for_selector(
                selector,
                timeout=timeout * 1000,
                state="visible" if visible else "attached",
            )
        except PlaywrightTimeoutError:
            return False
        return True

    async def click(self, selector: str, *, click_count: int = 1) -> None:
        await self._page.click(selector, click_count=click_count)

    async def type(self, selector: str, text: str, *, delay: float = 0.0) -> None:
        await self._page.locator(selector).first.press_sequentially(text, delay=delay * 1000)

    async def press(self, key: str) -> None:
        await self._page.keyboard.press(key)

    async def content(self) -> str:
        return await self._page.content()

    async def title(self) -> str:
        return await self._page.title()

    async def close(self) -> None:
        await self._page.close()


class PlaywrightBrowser:
    """BrowserHandle over a context (and its browser, unless the context is persistent)."""

    def __init__(self, context: BrowserContext, browser: Optional[Browser] = None) -> None:
        self._context = context
        self._browser = browser
        self._closed = False

    def is_connected(self) -> bool:
        if self._closed:
            return False
        return self._browser.is_connected() if self._browser is not None else True

    async def new_page(self) -> PlaywrightPage:
        return PlaywrightPage(await self._context.new_page())

    async def close(self) -> None:
        self._closed = True
        await self._context.close()
        if self._browser is not None and self._browser.is_connected():
            await self._browser.close()


class PlaywrightLauncher:
    """BrowserLauncher backed by Chromium through Playwright."""

    def __init__(self) -> None:
        self._playwright: Optional[Playwright] = None

    async def _driver(self) -> Playwright:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return self._playwright

    async def launch(self, options: LaunchOptions) -> PlaywrightBrowser:
        pw = await self._driver()
        context_opts: dict[str, Any] = {
            "viewport": {"width": options.viewport_width, "height": options.viewport_height},
            "user_agent": options.user_agent,
        }
        browser: Optional[Browser] = None
        if options.user_data_dir:
            context = await pw.chromium.launch_persistent_context(
                user_data_dir=options.user_data_dir,
                headless=options.headless,
                args=options.args,
                **context_opts,
            )
            logger.info("browser_launched", profile=options.user_data_dir, headless=options.headless)
        else:
            browser = await pw.chromium.launch(headless=options.headless, args=options.args)
            context = await browser.new_context(**context_opts)
            logger.info("browser_launched", profile="anonymous", headless=options.headless)

        context.set_default_navigation_timeout(options.navigation_timeout * 1000)
        for script in options.init_scripts:
            await context.add_init_script(script)
        return PlaywrightBrowser(context, browser)

    async def stop(self) -> None:
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
