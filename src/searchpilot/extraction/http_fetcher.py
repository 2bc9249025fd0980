"""
Lightweight HTTP extraction for pages below the crawl root.

No browser: one GET with browser-like headers, readability over the markup
(or the raw text for text/* responses), whitespace collapsed and capped.
Same-domain links come back with the result so recursion can continue.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlsplit

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from searchpilot.config import DEFAULT_USER_AGENT, CrawlConfig
from searchpilot.errors import SecurityRejectedError
from searchpilot.extraction.distiller import document_title, parse_html, readability_extract, visible_text
from searchpilot.extraction.links import extract_same_domain_links
from searchpilot.models import PageContentResult, SameDomainLink
from searchpilot.observability.metrics import metrics
from searchpilot.tools.url_security import UrlSecurityGate

logger = structlog.get_logger()

TRUNCATION_MARKER = "... (content truncated)"
TOO_SHORT_ERROR = "Extracted content is too short to be meaningful"
_READABILITY_MIN_LENGTH = 100

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "no address associated",
    "getaddrinfo",
    "enotfound",
)


def describe_http_error(exc: BaseException) -> str:
    """Category-level explanation for a failed simple fetch."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        reason = exc.response.reason_phrase or "Unknown error"
        if 400 <= status < 500:
            return f"Client error ({status}): {reason}"
        if status >= 500:
            return f"Server error ({status}): {reason}"
        return f"HTTP error ({status}): {reason}"

    msg = str(exc)
    lowered = msg.lower()
    if isinstance(exc, httpx.TimeoutException) or "timeout" in lowered or "timed out" in lowered:
        return "Request timeout - server took too long to respond"
    if any(marker in lowered for marker in _DNS_MARKERS):
        return "DNS resolution failed - domain not found"
    if "refused" in lowered:
        return "Connection refused - server is not accepting connections"
    if "reset" in lowered:
        return "Connection reset - network connection was interrupted"
    if isinstance(exc, httpx.TransportError):
        return f"Network error ({type(exc).__name__}): {msg}"
    return f"Request failed: {msg}"


def _finish_text(text: str, max_chars: int, min_chars: int) -> tuple[Optional[str], Optional[str]]:
    """(content, error) after whitespace collapse and length limits."""
    collapsed = " ".join(text.split())
    if len(collapsed) > max_chars:
        collapsed = collapsed[:max_chars] + TRUNCATION_MARKER
        logger.debug("content_truncated", max_chars=max_chars)
    if len(collapsed) < min_chars:
        return None, TOO_SHORT_ERROR
    return collapsed, None


class HttpFetcher:
    """GET/HEAD through one shared httpx client with browser-like headers."""

    def __init__(
        self,
        config: Optional[CrawlConfig] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        client: Optional[httpx.AsyncClient] = None,
        gate: Optional[UrlSecurityGate] = None,
    ) -> None:
        self.config = config or CrawlConfig()
        self.gate = gate or UrlSecurityGate()
        self.user_agent = user_agent
        self._client = client

    def _headers(self) -> dict[str, str]:
        return {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
            "Accept-Encoding": "gzip, deflate",
            "Upgrade-Insecure-Requests": "1",
        }

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.config.fetch_timeout)
        return self._client

    async def _send(self, method: str, url: str, timeout: float) -> httpx.Response:
        """Follow redirects one hop at a time so every target passes the SSRF gate."""
        client = await self._get_client()
        request = client.build_request(method, url, headers=self._headers(), timeout=timeout)
        for _ in range(client.max_redirects + 1):
            response = await client.send(request, follow_redirects=False)
            if response.next_request is None:
                return response
            request = response.next_request
            await response.aclose()
            logger.debug("redirect_followed", url=url, location=str(request.url))
            await self.gate.ensure_allowed(str(request.url))
        raise httpx.TooManyRedirects("Exceeded maximum allowed redirects.", request=request)

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(min=1, max=5),
        retry=retry_if_exception_type((httpx.ConnectTimeout, httpx.ReadError, httpx.RemoteProtocolError)),
        reraise=True,
    )
    async def _get(self, url: str) -> httpx.Response:
        return await self._send("GET", url, self.config.fetch_timeout)

    async def head_content_type(self, url: str) -> Optional[str]:
        """Content-Type from a HEAD request. Errors, including rejected redirects, propagate to the caller."""
        response = await self._send("HEAD", url, self.config.head_timeout)
        return response.headers.get("content-type")

    async def fetch(self, url: str) -> tuple[PageContentResult, list[SameDomainLink]]:
        """Extract one page. Failures come back as an error result, never raised."""
        domain = urlsplit(url).hostname or "unknown"
        logger.info("simple_fetch_started", url=url)
        try:
            response = await self._get(url)
            if response.status_code >= 400:
                raise httpx.HTTPStatusError(
                    f"HTTP {response.status_code}", request=response.request, response=response
                )
        except httpx.HTTPError as exc:
            error = describe_http_error(exc)
            status = exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else "error"
            metrics.record_fetch(domain, "GET", str(status))
            logger.warning("simple_fetch_failed", url=url, error=error)
            return PageContentResult.failure(url, error), []
        except SecurityRejectedError as exc:
            metrics.record_fetch(domain, "GET", "rejected")
            logger.warning("simple_fetch_redirect_rejected", url=url, reason=exc.reason)
            return PageContentResult.failure(url, str(exc)), []

        metrics.record_fetch(domain, "GET", str(response.status_code))
        content_type = response.headers.get("content-type", "")
        if "html" not in content_type and "text/" not in content_type:
            error = f"Unsupported content type: {content_type}"
            logger.warning("simple_fetch_unsupported", url=url, content_type=content_type)
            return PageContentResult.failure(url, error), []

        links: list[SameDomainLink] = []
        title: Optional[str] = None
        if "html" in content_type:
            soup = parse_html(response.text)
            title = document_title(soup)
            links = extract_same_domain_links(soup, str(response.url), limit=self.config.link_candidates)
            article_title, text = readability_extract(response.text)
            if len(text.strip()) > _READABILITY_MIN_LENGTH:
                title = article_title or title
            else:
                for tag in soup(["script", "style", "noscript"]):
                    tag.decompose()
                text = visible_text(soup.body or soup)
        else:
            text = response.text

        content, error = _finish_text(text, self.config.max_chars, self.config.min_content_length)
        if error:
            logger.warning("simple_fetch_too_short", url=url)
            return PageContentResult.failure(url, error, title=title), []

        logger.info("simple_fetch_succeeded", url=url, length=len(content or ""), links=len(links))
        return PageContentResult(url=url, title=title, text_content=content), links

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
