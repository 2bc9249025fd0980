"""
searchpilot facade: the two operations exposed to the tool-protocol layer.

    async with SearchPilot() as pilot:
        answer = await pilot.perform_search("capital of France")
        payload = await pilot.extract_content_json("https://example.com", depth=2)

Wires the shared browser session, answer engine, SSRF gate, fetchers and
crawler from ``Settings``. Logs go to stderr; stdout belongs to the caller.
"""

from __future__ import annotations

import json
from typing import Any, Optional, Union

import httpx
import structlog

from searchpilot.browser.capability import BrowserLauncher
from searchpilot.browser.playwright_driver import PlaywrightLauncher
from searchpilot.browser.selectors import SelectorSet
from searchpilot.browser.session import BrowserSessionManager
from searchpilot.config import Settings, get_settings
from searchpilot.extraction.crawler import RecursiveCrawler
from searchpilot.extraction.distiller import ContentDistiller
from searchpilot.extraction.http_fetcher import HttpFetcher
from searchpilot.extraction.page_extractor import PageExtractor
from searchpilot.models import CrawlEnvelope, PageContentResult
from searchpilot.observability.logging import configure_logging
from searchpilot.observability.metrics import metrics
from searchpilot.resilience.circuit_breaker import CircuitBreaker
from searchpilot.resilience.retry import RetryExecutor
from searchpilot.search.answer_engine import AnswerEngine
from searchpilot.search.stabilizer import AnswerStabilizer
from searchpilot.tools.rate_limiter import DomainRateLimiter
from searchpilot.tools.url_security import UrlSecurityGate

logger = structlog.get_logger()


class SearchPilot:
    """Answer-engine search and recursive content extraction over one browser session."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        launcher: Optional[BrowserLauncher] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings or get_settings()
        obs = self.settings.observability
        configure_logging(obs.log_level, obs.log_json)
        metrics.configure(obs.metrics_enabled)
        if obs.metrics_enabled:
            metrics.start_server(obs.metrics_port)

        self._owns_launcher = launcher is None
        self._launcher = launcher or PlaywrightLauncher()
        selectors = SelectorSet.from_overrides(self.settings.selectors)

        self.session = BrowserSessionManager(self._launcher, self.settings.browser, selectors)
        self.breaker = CircuitBreaker("search", self.settings.circuit_breaker)
        self.engine = AnswerEngine(
            self.session,
            retry_config=self.settings.retry,
            breaker=self.breaker,
            executor=RetryExecutor(),
            stabilizer=AnswerStabilizer(self.settings.stabilization),
        )

        crawl = self.settings.crawl
        self.gate = UrlSecurityGate(self.settings.security)
        self.fetcher = HttpFetcher(
            crawl, user_agent=self.settings.browser.user_agent, client=http_client, gate=self.gate
        )
        self.page_extractor = PageExtractor(
            self.session,
            gate=self.gate,
            fetcher=self.fetcher,
            distiller=ContentDistiller(crawl),
            config=crawl,
        )
        self.crawler = RecursiveCrawler(
            self.page_extractor,
            fetcher=self.fetcher,
            gate=self.gate,
            rate_limiter=DomainRateLimiter(self.settings.domain_policies),
            config=crawl,
            deadline=self.settings.crawl_deadline,
        )

    async def __aenter__(self) -> SearchPilot:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def perform_search(self, query: str) -> str:
        return await self.engine.perform_search(query)

    async def extract_content(self, url: str, depth: int = 1) -> Union[PageContentResult, CrawlEnvelope]:
        return await self.crawler.crawl(url, depth)

    async def extract_content_json(self, url: str, depth: int = 1) -> str:
        """Either result shape as indented JSON with camelCase keys."""
        result = await self.extract_content(url, depth)
        return json.dumps(result.to_wire(), indent=2, ensure_ascii=False)

    async def close(self) -> None:
        await self.session.cleanup()
        await self.fetcher.close()
        if self._owns_launcher and isinstance(self._launcher, PlaywrightLauncher):
            await self._launcher.stop()
        logger.info("searchpilot_closed")
