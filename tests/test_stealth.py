"""Tests for launch flags and fingerprint overrides."""

from fakes import browser_config
from searchpilot.browser.stealth import EVASION_SCRIPT, build_launch_args, build_launch_options


def test_automation_flag_always_disabled() -> None:
    args = build_launch_args(browser_config())
    assert "--disable-blink-features=AutomationControlled" in args


def test_sandbox_kept_by_default() -> None:
    args = build_launch_args(browser_config())
    assert "--no-sandbox" not in args
    assert "--disable-web-security" not in args


def test_security_disabled_relaxes_sandbox() -> None:
    args = build_launch_args(browser_config(security_disabled=True))
    assert "--no-sandbox" in args
    assert "--disable-setuid-sandbox" in args


def test_headed_drops_gpu_flags() -> None:
    headless = build_launch_args(browser_config(headless=True))
    headed = build_launch_args(browser_config(headless=False))
    assert "--disable-gpu" in headless
    assert "--disable-gpu" not in headed


def test_viewport_and_user_agent_flags() -> None:
    config = browser_config(viewport_width=1280, viewport_height=720, user_agent="TestAgent/1.0")
    args = build_launch_args(config)
    assert "--window-size=1280,720" in args
    assert "--user-agent=TestAgent/1.0" in args


def test_launch_options_carry_evasion_script() -> None:
    options = build_launch_options(browser_config(profile_dir=""))
    assert options.init_scripts == [EVASION_SCRIPT]
    assert options.user_data_dir is None
    assert options.viewport_width == 1280


def test_evasion_script_covers_fingerprints() -> None:
    for prop in ("webdriver", "hardwareConcurrency", "deviceMemory", "platform", "languages"):
        assert prop in EVASION_SCRIPT
    assert "window.chrome" in EVASION_SCRIPT
