"""
Per-host politeness for crawl fetches.

Each host gets a concurrency semaphore and a minimum spacing between request
starts, both read from ``domain_policies.yaml``:

    defaults:
      requests_per_second: 2.0
      concurrent_limit: 5
    domains:
      docs.python.org:
        requests_per_second: 5
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, Optional
from urllib.parse import urlsplit

import structlog

logger = structlog.get_logger()

_DEFAULT_POLICY: dict[str, Any] = {
    "requests_per_second": 2.0,
    "concurrent_limit": 5,
}


class DomainRateLimiter:
    """Per-host rate limiting using asyncio semaphores and request spacing."""

    def __init__(
        self,
        policies: Optional[dict[str, Any]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        policies = policies or {}
        self._defaults = {**_DEFAULT_POLICY, **(policies.get("defaults") or {})}
        self._policies = {d.lower(): p for d, p in (policies.get("domains") or {}).items()}
        self._semaphores: dict[str, asyncio.Semaphore] = {}
        self._next_slot: dict[str, float] = {}
        self._clock = clock
        self._sleep = sleep

    def policy_for(self, host: str) -> dict[str, Any]:
        host = host.lower()
        policy = self._policies.get(host) or self._policies.get(host.removeprefix("www."))
        return {**self._defaults, **(policy or {})}

    def _semaphore(self, host: str) -> asyncio.Semaphore:
        if host not in self._semaphores:
            limit = int(self.policy_for(host)["concurrent_limit"])
            self._semaphores[host] = asyncio.Semaphore(max(1, limit))
        return self._semaphores[host]

    @asynccontextmanager
    async def acquire(self, url: str) -> AsyncIterator[None]:
        """Hold a slot for ``url``'s host for the duration of the block."""
        host = (urlsplit(url).hostname or "unknown").lower()
        rps = float(self.policy_for(host)["requests_per_second"])
        min_interval = 1.0 / rps if rps > 0 else 0.0

        async with self._semaphore(host):
            # Reserve the next start slot before sleeping so concurrent waiters queue up
            now = self._clock()
            slot = max(now, self._next_slot.get(host, 0.0))
            self._next_slot[host] = slot + min_interval
            wait_time = slot - now
            if wait_time > 0:
                logger.debug("rate_limit_wait", host=host, wait=round(wait_time, 3))
                await self._sleep(wait_time)
            yield
