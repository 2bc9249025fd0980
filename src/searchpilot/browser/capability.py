"""
The browser automation surface the rest of searchpilot is written against.

Only these operations are used, so any driver (Playwright in production, a
scripted double in tests) can stand behind them. Timeouts and delays are in
seconds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol


@dataclass(frozen=True)
class LaunchOptions:
    """Everything needed to bring up one stealth-configured browser."""

    headless: bool
    args: list[str]
    user_agent: str
    viewport_width: int
    viewport_height: int
    init_scripts: list[str] = field(default_factory=list)
    user_data_dir: Optional[str] = None
    navigation_timeout: float = 45.0


@dataclass(frozen=True)
class NavigationResponse:
    status: int

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class PageHandle(Protocol):
    @property
    def url(self) -> str: ...

    def is_closed(self) -> bool: ...

    def is_detached(self) -> bool:
        """True once the page's main frame is gone."""
        ...

    async def goto(
        self, url: str, *, timeout: float, wait_until: str = "domcontentloaded"
    ) -> Optional[NavigationResponse]: ...

    async def evaluate(self, script: str, arg: Any = None) -> Any: ...

    async def wait_for_selector(self, selector: str, *, timeout: float, visible: bool = True) -> bool:
        """True if the selector matched within the timeout, False on timeout."""
        ...

    async def click(self, selector: str, *, click_count: int = 1) -> None: ...

    async def type(self, selector: str, text: str, *, delay: float = 0.0) -> None: ...

    async def press(self, key: str) -> None: ...

    async def content(self) -> str: ...

    async def title(self) -> str: ...

    async def close(self) -> None: ...


class BrowserHandle(Protocol):
    def is_connected(self) -> bool: ...

    async def new_page(self) -> PageHandle: ...

    async def close(self) -> None: ...


class BrowserLauncher(Protocol):
    async def launch(self, options: LaunchOptions) -> BrowserHandle: ...
