"""Shared pytest fixtures for searchpilot tests."""

from __future__ import annotations

import pytest

from fakes import FakeLauncher, SleepRecorder, browser_config
from searchpilot.browser.session import BrowserSessionManager


@pytest.fixture
def sleeper() -> SleepRecorder:
    """Injectable sleep that returns immediately and records delays."""
    return SleepRecorder()


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def session(launcher: FakeLauncher, sleeper: SleepRecorder) -> BrowserSessionManager:
    """Session over the fake launcher, zero recovery cool-down, three search attempts."""
    return BrowserSessionManager(launcher, browser_config(), sleep=sleeper)
