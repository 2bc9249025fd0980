"""
Fingerprint evasion for the answer-engine session.

Chromium launch flags plus an init script that runs before any page script,
overriding the navigator properties and runtime objects anti-bot checks read.
"""

from __future__ import annotations

from searchpilot.browser.capability import LaunchOptions
from searchpilot.config import BrowserConfig

_SANDBOXED_FLAGS = [
    "--disable-dev-shm-usage",
    "--disable-sync",
    "--metrics-recording-only",
    "--safebrowsing-disable-auto-update",
    "--disable-extensions",
    "--disable-plugins-discovery",
]

# Only for containers that cannot provide a sandbox
_UNSANDBOXED_FLAGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-web-security",
]

_COMMON_FLAGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-features=IsolateOrigins,site-per-process",
    "--disable-infobars",
    "--disable-notifications",
    "--disable-popup-blocking",
    "--disable-default-apps",
    "--disable-translate",
    "--disable-background-networking",
    "--disable-client-side-phishing-detection",
    "--disable-component-update",
    "--disable-hang-monitor",
    "--disable-prompt-on-repost",
    "--disable-domain-reliability",
    "--disable-renderer-backgrounding",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-breakpad",
    "--disable-component-extensions-with-background-pages",
    "--disable-ipc-flooding-protection",
    "--disable-back-forward-cache",
    "--disable-partial-raster",
    "--disable-skia-runtime-opts",
    "--disable-smooth-scrolling",
    "--disable-features=site-per-process,TranslateUI,BlinkGenPropertyTrees",
    "--enable-features=NetworkService,NetworkServiceInProcess",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
    "--force-color-profile=srgb",
    "--mute-audio",
    "--no-first-run",
    "--no-default-browser-check",
    "--use-mock-keychain",
]

# GPU flags break rendering in a headed browser
_HEADLESS_ONLY_FLAGS = ("--disable-gpu", "--disable-accelerated-2d-canvas")

EVASION_SCRIPT = """
Object.defineProperties(navigator, {
  webdriver: { get: () => undefined },
  hardwareConcurrency: { get: () => 8 },
  deviceMemory: { get: () => 8 },
  platform: { get: () => 'Win32' },
  languages: { get: () => ['en-US', 'en'] },
  permissions: { get: () => ({ query: async () => ({ state: 'prompt' }) }) },
});
if (typeof window.chrome === 'undefined') {
  window.chrome = {
    app: {
      InstallState: { DISABLED: 'disabled', INSTALLED: 'installed', NOT_INSTALLED: 'not_installed' },
      RunningState: { CANNOT_RUN: 'cannot_run', READY_TO_RUN: 'ready_to_run', RUNNING: 'running' },
      getDetails: () => {},
      getIsInstalled: () => {},
      installState: () => {},
      isInstalled: false,
      runningState: () => {},
    },
    runtime: {
      OnInstalledReason: {
        CHROME_UPDATE: 'chrome_update', INSTALL: 'install',
        SHARED_MODULE_UPDATE: 'shared_module_update', UPDATE: 'update',
      },
      PlatformArch: {
        ARM: 'arm', ARM64: 'arm64', MIPS: 'mips', MIPS64: 'mips64',
        X86_32: 'x86-32', X86_64: 'x86-64',
      },
      PlatformOs: {
        ANDROID: 'android', CROS: 'cros', LINUX: 'linux', MAC: 'mac',
        OPENBSD: 'openbsd', WIN: 'win',
      },
      RequestUpdateCheckStatus: {
        NO_UPDATE: 'no_update', THROTTLED: 'throttled', UPDATE_AVAILABLE: 'update_available',
      },
      connect: () => ({
        postMessage: () => {},
        onMessage: { addListener: () => {}, removeListener: () => {} },
        disconnect: () => {},
      }),
    },
  };
}
"""


def build_launch_args(config: BrowserConfig) -> list[str]:
    """Chromium flags for the configured sandbox mode and viewport."""
    flags = list(_UNSANDBOXED_FLAGS if config.security_disabled else _SANDBOXED_FLAGS)
    flags += _COMMON_FLAGS
    if not config.headless:
        flags = [f for f in flags if f not in _HEADLESS_ONLY_FLAGS]
    flags.append(f"--window-size={config.viewport_width},{config.viewport_height}")
    flags.append(f"--user-agent={config.user_agent}")
    return flags


def build_launch_options(config: BrowserConfig) -> LaunchOptions:
    return LaunchOptions(
        headless=config.headless,
        args=build_launch_args(config),
        user_agent=config.user_agent,
        viewport_width=config.viewport_width,
        viewport_height=config.viewport_height,
        init_scripts=[EVASION_SCRIPT],
        user_data_dir=config.profile_dir or None,
        navigation_timeout=config.navigation_timeout,
    )
