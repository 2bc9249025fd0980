"""
Browser-driven single-page extraction (the crawl root).

Order of work:
  1. SSRF gate; a rejected URL never reaches the network
  2. repository landing pages are rewritten to their text-ingestion mirror
  3. a HEAD pre-check rejects non-text content types (skipped for the mirror)
  4. navigate the shared session page; non-2xx responses end here
  5. mirror pages: read the result field directly
  6. everything else: distill the rendered markup
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlsplit

import httpx
import structlog

from searchpilot.browser.scripts import READ_FIELD_VALUE
from searchpilot.browser.session import BrowserSessionManager
from searchpilot.config import CrawlConfig
from searchpilot.errors import NavigationError, SecurityRejectedError
from searchpilot.extraction.distiller import ContentDistiller
from searchpilot.extraction.http_fetcher import HttpFetcher
from searchpilot.extraction.links import extract_same_domain_links
from searchpilot.models import PageContentResult, SameDomainLink
from searchpilot.tools.url_security import UrlSecurityGate

logger = structlog.get_logger()

REPOSITORY_HOST = "github.com"
MIRROR_BASE_URL = "https://gitingest.com"
MIRROR_RESULT_SELECTOR = ".result-text"
NO_CONTENT_ERROR = "No meaningful content extracted"


def rewrite_repository_url(url: str) -> tuple[str, bool]:
    """
    Map ``https://github.com/<owner>/<repo>`` to its ingestion mirror.

    Only exact two-segment repository landing pages are rewritten; deeper
    paths (issues, blobs, trees) are left alone.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return url, False
    if (parts.hostname or "").lower() != REPOSITORY_HOST:
        return url, False
    segments = [segment for segment in parts.path.split("/") if segment]
    if len(segments) != 2:
        return url, False
    mirror = f"{MIRROR_BASE_URL}{parts.path}"
    logger.info("repository_url_rewritten", url=url, mirror=mirror)
    return mirror, True


def format_extraction_error(exc: BaseException, extraction_url: str) -> str:
    msg = str(exc)
    if isinstance(exc, TimeoutError) or "timeout" in msg.lower():
        reason = "Navigation or content loading timed out."
    elif "net::" in msg or "Failed to load" in msg:
        reason = "Could not resolve or load the URL."
    else:
        reason = msg or type(exc).__name__
    return f"Failed to extract content from {extraction_url}. Reason: {reason}"


class PageExtractor:
    """Full-fidelity extraction through the shared browser session."""

    def __init__(
        self,
        session: BrowserSessionManager,
        gate: Optional[UrlSecurityGate] = None,
        fetcher: Optional[HttpFetcher] = None,
        distiller: Optional[ContentDistiller] = None,
        config: Optional[CrawlConfig] = None,
    ) -> None:
        self.session = session
        self.config = config or CrawlConfig()
        self.gate = gate or UrlSecurityGate()
        self.fetcher = fetcher or HttpFetcher(self.config, gate=self.gate)
        self.distiller = distiller or ContentDistiller(self.config)

    async def extract(self, url: str) -> tuple[PageContentResult, list[SameDomainLink]]:
        """One page plus its same-domain links. Failures come back as error results."""
        try:
            await self.gate.ensure_allowed(url)
        except SecurityRejectedError as exc:
            return PageContentResult.failure(url, str(exc)), []

        extraction_url, is_mirror = rewrite_repository_url(url)
        if not is_mirror:
            type_error = await self._content_type_error(extraction_url)
            if type_error:
                return PageContentResult.failure(url, type_error), []

        async with self.session.operation():
            try:
                return await self._extract_rendered(url, extraction_url, is_mirror)
            except Exception as exc:
                logger.error("page_extraction_failed", url=extraction_url, error=str(exc)[:200])
                return PageContentResult.failure(url, format_extraction_error(exc, extraction_url)), []

    async def _content_type_error(self, url: str) -> Optional[str]:
        try:
            content_type = await self.fetcher.head_content_type(url)
        except SecurityRejectedError as exc:
            logger.warning("head_redirect_rejected", url=url, reason=exc.reason)
            return str(exc)
        except httpx.HTTPError as exc:
            logger.warning("head_check_failed", url=url, error=str(exc)[:200])
            return None
        if content_type and "html" not in content_type and "text/plain" not in content_type:
            logger.warning("unsupported_content_type", url=url, content_type=content_type)
            return f"Unsupported content type: {content_type}"
        return None

    async def _extract_rendered(
        self, url: str, extraction_url: str, is_mirror: bool
    ) -> tuple[PageContentResult, list[SameDomainLink]]:
        await self.session.ensure_ready(navigate=False)
        page = self.session.page
        if page is None or page.is_closed():
            raise NavigationError("Page not initialized")

        logger.info("page_extraction_started", url=extraction_url)
        response = await page.goto(
            extraction_url,
            timeout=self.session.config.navigation_timeout,
            wait_until="domcontentloaded",
        )
        title = (await page.title()) or None
        if response is not None and not response.ok:
            error = f"HTTP error {response.status} received when accessing URL: {extraction_url}"
            logger.error("page_http_error", url=extraction_url, status=response.status)
            return PageContentResult.failure(url, error, title=title), []

        if is_mirror:
            content = await self._read_mirror_field()
            if content:
                logger.info("mirror_content_extracted", url=extraction_url, length=len(content))
                return PageContentResult(url=url, title=title, text_content=content), []

        html = await page.content()
        links = extract_same_domain_links(html, extraction_url, limit=self.config.link_candidates)
        distilled = self.distiller.distill(html, page_title=title)
        if distilled is None:
            logger.warning("no_content_extracted", url=extraction_url)
            return PageContentResult.failure(url, NO_CONTENT_ERROR, title=title), []

        logger.info("page_extracted", url=extraction_url, method=distilled.method, length=len(distilled.text))
        return PageContentResult(url=url, title=distilled.title, text_content=distilled.text), links

    async def _read_mirror_field(self) -> Optional[str]:
        page = self.session.page
        if page is None:
            return None
        timeout = self.session.config.content_timeout
        if not await page.wait_for_selector(MIRROR_RESULT_SELECTOR, timeout=timeout, visible=False):
            logger.warning("mirror_field_timeout", selector=MIRROR_RESULT_SELECTOR, timeout=timeout)
        value = await page.evaluate(READ_FIELD_VALUE, MIRROR_RESULT_SELECTOR)
        return value.strip() if isinstance(value, str) and value.strip() else None
