"""
Recursive crawl orchestrator.

Depth 1 goes through the browser (full fidelity, same-domain links from the
rendered page). Deeper pages use the plain HTTP fetcher under per-domain
rate limits. Each page that passes the visited check contributes exactly one
result, success or failure; only successful pages have their first few
links followed, each as a concurrent branch.

A wall-clock deadline bounds the whole crawl. When it fires, the shared
deadline flag stops new pages from starting, in-flight branches are
cancelled, and whatever was collected is returned.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import Optional, Union

import structlog

from searchpilot.config import CrawlConfig, get_settings
from searchpilot.errors import SecurityRejectedError
from searchpilot.extraction.http_fetcher import HttpFetcher
from searchpilot.extraction.page_extractor import PageExtractor
from searchpilot.models import CrawlEnvelope, CrawlState, CrawlStatus, PageContentResult, SameDomainLink
from searchpilot.observability.metrics import metrics
from searchpilot.tools.rate_limiter import DomainRateLimiter
from searchpilot.tools.url_security import UrlSecurityGate

logger = structlog.get_logger()

MIN_DEPTH = 1
MAX_DEPTH = 5


def clamp_depth(depth: int) -> int:
    return max(MIN_DEPTH, min(int(depth), MAX_DEPTH))


def classify_results(results: list[PageContentResult]) -> CrawlStatus:
    succeeded = sum(1 for r in results if r.succeeded)
    if results and succeeded == len(results):
        return CrawlStatus.SUCCESS
    if succeeded > 0:
        return CrawlStatus.PARTIAL
    return CrawlStatus.ERROR


def status_message(status: CrawlStatus, results: list[PageContentResult]) -> Optional[str]:
    if status is CrawlStatus.PARTIAL:
        succeeded = sum(1 for r in results if r.succeeded)
        return f"Fetched {succeeded}/{len(results)} pages successfully. Some pages failed or timed out."
    if status is CrawlStatus.ERROR and results:
        return "Failed to fetch all content. Initial page fetch might have failed or timed out."
    if status is CrawlStatus.ERROR:
        return "Failed to fetch any content. Initial page fetch might have failed or timed out."
    return None


class RecursiveCrawler:
    """Bounded-depth, bounded-fan-out crawl from one root URL."""

    def __init__(
        self,
        page_extractor: PageExtractor,
        fetcher: Optional[HttpFetcher] = None,
        gate: Optional[UrlSecurityGate] = None,
        rate_limiter: Optional[DomainRateLimiter] = None,
        config: Optional[CrawlConfig] = None,
        deadline: Optional[float] = None,
    ) -> None:
        self.page_extractor = page_extractor
        self.config = config or CrawlConfig()
        self.gate = gate or UrlSecurityGate()
        self.fetcher = fetcher or HttpFetcher(self.config, gate=self.gate)
        self.rate_limiter = rate_limiter or DomainRateLimiter()
        self.deadline = deadline if deadline is not None else get_settings().crawl_deadline

    async def crawl(self, url: str, depth: int = 1) -> Union[PageContentResult, CrawlEnvelope]:
        """
        Extract ``url`` and, for depth > 1, its same-domain neighborhood.

        Depth is clamped to 1..5. Depth 1 returns the single page result;
        anything deeper returns the multi-page envelope. Never raises for
        page or orchestration failures.
        """
        depth = clamp_depth(depth)
        if depth == 1:
            result, _ = await self.page_extractor.extract(url)
            return result

        state = CrawlState()
        started = time.perf_counter()
        logger.info("crawl_started", url=url, depth=depth, deadline=self.deadline)
        try:
            await self._run_with_deadline(url, depth, state)
        except Exception as exc:
            envelope = self._failure_envelope(url, depth, state, exc)
        else:
            status = classify_results(state.results)
            envelope = CrawlEnvelope(
                status=status,
                message=status_message(status, state.results),
                root_url=url,
                exploration_depth=depth,
                pages_explored=len(state.results),
                content=list(state.results),
            )

        elapsed = time.perf_counter() - started
        metrics.record_crawl(envelope.status.value, elapsed)
        logger.info(
            "crawl_finished",
            url=url,
            status=envelope.status.value,
            pages=envelope.pages_explored,
            succeeded=state.succeeded_count,
            elapsed=round(elapsed, 2),
        )
        return envelope

    async def _run_with_deadline(self, url: str, depth: int, state: CrawlState) -> None:
        task = asyncio.create_task(self._visit(url, depth, 1, state))
        done, _ = await asyncio.wait({task}, timeout=self.deadline)
        if task in done:
            task.result()
            return

        state.deadline_exceeded = True
        logger.warning("crawl_deadline_exceeded", url=url, deadline=self.deadline, pages=len(state.results))
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        raise TimeoutError(f"Recursive fetch timed out after {self.deadline:g}s")

    def _failure_envelope(
        self, url: str, depth: int, state: CrawlState, exc: BaseException
    ) -> CrawlEnvelope:
        error = str(exc) or type(exc).__name__
        logger.error("crawl_failed", url=url, error=error, pages=len(state.results))
        if state.results:
            return CrawlEnvelope(
                status=CrawlStatus.PARTIAL,
                message=f"Operation failed: {error}. Returning partial results collected before failure.",
                root_url=url,
                exploration_depth=depth,
                pages_explored=len(state.results),
                content=list(state.results),
            )
        return CrawlEnvelope(
            status=CrawlStatus.ERROR,
            message=f"Recursive fetch failed: {error}",
            root_url=url,
            exploration_depth=depth,
            pages_explored=0,
            content=[],
        )

    async def _visit(self, url: str, max_depth: int, depth: int, state: CrawlState) -> None:
        if depth > max_depth or state.deadline_exceeded or not state.claim(url):
            return

        logger.info("crawl_page_started", depth=depth, url=url)
        links: list[SameDomainLink] = []
        try:
            if depth == 1:
                result, links = await self.page_extractor.extract(url)
            else:
                result, links = await self._fetch_simple(url)
            if result.text_content is None and result.error is None:
                result = PageContentResult.failure(url, "Failed to extract content", title=result.title)
        except Exception as exc:
            logger.error("crawl_page_failed", depth=depth, url=url, error=str(exc)[:200])
            result = PageContentResult.failure(url, str(exc) or type(exc).__name__)

        state.results.append(result)
        metrics.record_crawl_page("browser" if depth == 1 else "http", result.succeeded)

        if depth >= max_depth or result.error is not None or not links or state.deadline_exceeded:
            return
        follow = links[: self.config.links_per_page]
        logger.debug("crawl_following_links", depth=depth, url=url, links=[link.url for link in follow])
        await asyncio.gather(*(self._visit(link.url, max_depth, depth + 1, state) for link in follow))

    async def _fetch_simple(self, url: str) -> tuple[PageContentResult, list[SameDomainLink]]:
        try:
            await self.gate.ensure_allowed(url)
        except SecurityRejectedError as exc:
            return PageContentResult.failure(url, str(exc)), []
        async with self.rate_limiter.acquire(url):
            return await self.fetcher.fetch(url)
