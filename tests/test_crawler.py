"""Tests for the recursive crawl orchestrator."""

from __future__ import annotations

import asyncio
from collections import Counter
from typing import Callable, Optional

import pytest

from searchpilot.extraction.crawler import RecursiveCrawler, clamp_depth, classify_results, status_message
from searchpilot.models import CrawlEnvelope, CrawlStatus, PageContentResult, SameDomainLink
from searchpilot.tools.rate_limiter import DomainRateLimiter

ROOT = "https://docs.example.com/start"
LinkMap = Callable[[str], list[str]]


def five_children(url: str) -> list[str]:
    return [f"{url}/c{i}" for i in range(5)]


class FakeSite:
    """Serves every URL as a page whose links come from ``link_map``."""

    def __init__(
        self,
        link_map: LinkMap = five_children,
        failing: frozenset[str] = frozenset(),
        hanging: frozenset[str] = frozenset(),
        raising: Optional[str] = None,
    ) -> None:
        self.link_map = link_map
        self.failing = failing
        self.hanging = hanging
        self.raising = raising
        self.requested: list[str] = []

    async def _serve(self, url: str) -> tuple[PageContentResult, list[SameDomainLink]]:
        self.requested.append(url)
        if url in self.hanging:
            await asyncio.sleep(10)
        if url == self.raising:
            raise RuntimeError("connection pool exhausted")
        if url in self.failing:
            return PageContentResult.failure(url, "Client error (404): Not Found"), []
        links = [SameDomainLink(url=link, text=link) for link in self.link_map(url)]
        return PageContentResult(url=url, title=url, text_content=f"Content of {url}"), links

    async def extract(self, url: str) -> tuple[PageContentResult, list[SameDomainLink]]:
        return await self._serve(url)

    async def fetch(self, url: str) -> tuple[PageContentResult, list[SameDomainLink]]:
        return await self._serve(url)


def crawler_for(site: FakeSite, sleeper, deadline: float = 30.0) -> RecursiveCrawler:
    return RecursiveCrawler(
        site,
        fetcher=site,
        rate_limiter=DomainRateLimiter({"defaults": {"requests_per_second": 0, "concurrent_limit": 5}}, sleep=sleeper),
        deadline=deadline,
    )


def test_clamp_depth() -> None:
    assert clamp_depth(0) == 1
    assert clamp_depth(-3) == 1
    assert clamp_depth(3) == 3
    assert clamp_depth(42) == 5


class TestStatus:
    def test_all_succeeded(self) -> None:
        results = [PageContentResult(url="u", text_content="ok")]
        assert classify_results(results) is CrawlStatus.SUCCESS
        assert status_message(CrawlStatus.SUCCESS, results) is None

    def test_mixed(self) -> None:
        results = [PageContentResult(url="a", text_content="ok"), PageContentResult.failure("b", "boom")]
        assert classify_results(results) is CrawlStatus.PARTIAL
        assert status_message(CrawlStatus.PARTIAL, results) == (
            "Fetched 1/2 pages successfully. Some pages failed or timed out."
        )

    def test_nothing_succeeded(self) -> None:
        assert classify_results([PageContentResult.failure("a", "boom")]) is CrawlStatus.ERROR
        assert classify_results([]) is CrawlStatus.ERROR


class TestCrawl:
    @pytest.mark.asyncio
    async def test_depth_one_returns_single_page(self, sleeper) -> None:
        site = FakeSite()
        result = await crawler_for(site, sleeper).crawl(ROOT, 1)
        assert isinstance(result, PageContentResult)
        assert result.text_content == f"Content of {ROOT}"
        assert site.requested == [ROOT]

    @pytest.mark.asyncio
    async def test_zero_depth_is_clamped_to_one(self, sleeper) -> None:
        result = await crawler_for(FakeSite(), sleeper).crawl(ROOT, 0)
        assert isinstance(result, PageContentResult)

    @pytest.mark.asyncio
    async def test_fan_out_bounded_per_page(self, sleeper) -> None:
        site = FakeSite()
        envelope = await crawler_for(site, sleeper).crawl(ROOT, 3)

        assert isinstance(envelope, CrawlEnvelope)
        assert envelope.status is CrawlStatus.SUCCESS
        assert envelope.message is None
        assert envelope.exploration_depth == 3
        # root, three children, three grandchildren each
        assert envelope.pages_explored == 1 + 3 + 9
        assert envelope.content[0].url == ROOT
        assert f"{ROOT}/c3" not in site.requested

    @pytest.mark.asyncio
    async def test_pages_never_revisited(self, sleeper) -> None:
        def cyclic(url: str) -> list[str]:
            return [ROOT, "https://docs.example.com/a", "https://docs.example.com/b"]

        site = FakeSite(cyclic)
        envelope = await crawler_for(site, sleeper).crawl(ROOT, 5)

        counts = Counter(site.requested)
        assert set(counts.values()) == {1}
        assert envelope.pages_explored == 3

    @pytest.mark.asyncio
    async def test_failed_pages_are_not_followed(self, sleeper) -> None:
        site = FakeSite(failing=frozenset({f"{ROOT}/c0"}))
        envelope = await crawler_for(site, sleeper).crawl(ROOT, 3)

        assert envelope.status is CrawlStatus.PARTIAL
        assert envelope.pages_explored == 1 + 3 + 6
        assert envelope.message == "Fetched 9/10 pages successfully. Some pages failed or timed out."
        assert not any(url.startswith(f"{ROOT}/c0/") for url in site.requested)

    @pytest.mark.asyncio
    async def test_root_failure_is_an_error(self, sleeper) -> None:
        envelope = await crawler_for(FakeSite(failing=frozenset({ROOT})), sleeper).crawl(ROOT, 4)
        assert envelope.status is CrawlStatus.ERROR
        assert envelope.pages_explored == 1
        assert envelope.message == (
            "Failed to fetch all content. Initial page fetch might have failed or timed out."
        )

    @pytest.mark.asyncio
    async def test_fetch_exception_becomes_page_error(self, sleeper) -> None:
        site = FakeSite(raising=f"{ROOT}/c1")
        envelope = await crawler_for(site, sleeper).crawl(ROOT, 2)
        errors = {r.url: r.error for r in envelope.content if r.error}
        assert errors == {f"{ROOT}/c1": "connection pool exhausted"}

    @pytest.mark.asyncio
    async def test_deadline_returns_partial_results(self, sleeper) -> None:
        site = FakeSite(hanging=frozenset({f"{ROOT}/c2"}))
        envelope = await crawler_for(site, sleeper, deadline=0.05).crawl(ROOT, 2)

        assert envelope.status is CrawlStatus.PARTIAL
        assert envelope.message == (
            "Operation failed: Recursive fetch timed out after 0.05s. "
            "Returning partial results collected before failure."
        )
        assert envelope.content[0].url == ROOT
        assert {r.url for r in envelope.content[1:]} == {f"{ROOT}/c0", f"{ROOT}/c1"}

    @pytest.mark.asyncio
    async def test_deadline_before_any_page(self, sleeper) -> None:
        site = FakeSite(hanging=frozenset({ROOT}))
        envelope = await crawler_for(site, sleeper, deadline=0.05).crawl(ROOT, 3)

        assert envelope.status is CrawlStatus.ERROR
        assert envelope.pages_explored == 0
        assert envelope.content == []
        assert envelope.message.startswith("Recursive fetch failed: Recursive fetch timed out")

    @pytest.mark.asyncio
    async def test_blocked_link_reported_not_fetched(self, sleeper) -> None:
        site = FakeSite(lambda url: ["http://localhost/admin"] if url == ROOT else [])
        envelope = await crawler_for(site, sleeper).crawl(ROOT, 2)

        assert "http://localhost/admin" not in site.requested
        blocked = envelope.content[1]
        assert blocked.url == "http://localhost/admin"
        assert "security policy" in blocked.error
