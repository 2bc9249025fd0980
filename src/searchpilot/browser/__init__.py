"""Browser capability, Playwright driver, stealth launch setup and the shared session."""

from searchpilot.browser.capability import (
    BrowserHandle,
    BrowserLauncher,
    LaunchOptions,
    NavigationResponse,
    PageHandle,
)
from searchpilot.browser.selectors import SelectorSet
from searchpilot.browser.session import BrowserSessionManager

__all__ = [
    "BrowserHandle",
    "BrowserLauncher",
    "BrowserSessionManager",
    "LaunchOptions",
    "NavigationResponse",
    "PageHandle",
    "SelectorSet",
]
