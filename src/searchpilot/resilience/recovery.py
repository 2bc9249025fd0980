"""Map an observed failure to the remediation tier it needs."""

from __future__ import annotations

from typing import Optional

from searchpilot.models import RecoveryLevel

# Browser process itself is unusable.
_CRITICAL_MARKERS = ("detached", "crashed", "disconnected", "protocol error")
# Page is broken but the process is fine.
_PAGE_MARKERS = ("navigation", "timeout", "net::err")


def classify_recovery_level(error: Optional[BaseException]) -> RecoveryLevel:
    """
    Case-insensitive substring match on the error message.

    Critical vocabulary is checked before navigation vocabulary; anything else
    (and no error at all) is a minor, in-place retry.
    """
    if error is None:
        return RecoveryLevel.MINOR
    msg = str(error).lower()
    if any(marker in msg for marker in _CRITICAL_MARKERS):
        return RecoveryLevel.BROWSER
    if any(marker in msg for marker in _PAGE_MARKERS):
        return RecoveryLevel.PAGE
    return RecoveryLevel.MINOR
