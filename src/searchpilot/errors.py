"""
Error taxonomy for searchpilot.

Each error knows whether a plain retry can help and which remediation tier
it implies. Foreign exceptions (Playwright, httpx, OS) carry neither and are
classified by message instead; see ``resilience.recovery`` and
``resilience.retry``.
"""

from __future__ import annotations

from searchpilot.models import RecoveryLevel, RetryResult


class SearchPilotError(Exception):
    """Base for searchpilot errors."""

    retryable: bool = True
    recovery_level: RecoveryLevel = RecoveryLevel.MINOR


class BrowserInitError(SearchPilotError):
    """Launch or initial navigation did not complete in time. Retry after recovery."""

    recovery_level = RecoveryLevel.BROWSER


class NavigationError(SearchPilotError):
    """Target unreachable or page handle missing; navigating again may help."""

    recovery_level = RecoveryLevel.PAGE


class DetachedFrameError(SearchPilotError):
    """The page's main frame is gone; the session is internally broken."""

    retryable = False
    recovery_level = RecoveryLevel.BROWSER


class SelectorNotFoundError(SearchPilotError):
    """UI changed or is still loading."""

    recovery_level = RecoveryLevel.PAGE


class CaptchaDetectedError(SearchPilotError):
    """A bot challenge is showing; needs a fresh session, not a plain retry."""

    recovery_level = RecoveryLevel.BROWSER


class ExtractionFailureError(SearchPilotError):
    """No distillation tier produced usable content. Terminal for that page."""

    retryable = False


class SecurityRejectedError(SearchPilotError):
    """URL failed the SSRF policy. Never attempted."""

    retryable = False

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"URL rejected by security policy: {reason}")
        self.url = url
        self.reason = reason


class OperationTimeoutError(SearchPilotError, TimeoutError):
    """Polling or navigation exceeded its budget."""

    recovery_level = RecoveryLevel.PAGE


class CircuitOpenError(SearchPilotError):
    """The circuit is open; back off instead of retrying."""

    retryable = False

    def __init__(self, name: str, retry_at: float | None = None) -> None:
        super().__init__(f"Circuit breaker '{name}' is open")
        self.name = name
        self.retry_at = retry_at


class AttemptsExhaustedError(SearchPilotError):
    """Every attempt of a retried operation failed; ``result`` holds the last error."""

    retryable = False

    def __init__(self, result: RetryResult) -> None:
        self.result = result
        super().__init__(f"All {result.attempts} attempts failed: {result.error}")
