"""Same-domain link discovery for recursive crawling."""

from __future__ import annotations

from typing import Union
from urllib.parse import urldefrag, urljoin, urlsplit

from bs4 import BeautifulSoup

from searchpilot.extraction.distiller import parse_html
from searchpilot.models import SameDomainLink

_EXCLUDED_PREFIXES = ("#", "javascript:", "data:", "vbscript:", "mailto:", "tel:")


def extract_same_domain_links(
    markup: Union[str, BeautifulSoup],
    base_url: str,
    limit: int = 10,
) -> list[SameDomainLink]:
    """
    Anchors on the same host as ``base_url``, longest anchor text first.

    Relative hrefs are resolved against ``base_url``; fragments are dropped and
    duplicates collapse to their first (longest-text) occurrence. Links whose
    text is empty rank last and are labeled with their URL.
    """
    soup = parse_html(markup) if isinstance(markup, str) else markup
    base_host = urlsplit(base_url).hostname

    candidates: list[tuple[int, SameDomainLink]] = []
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.lower().startswith(_EXCLUDED_PREFIXES):
            continue
        try:
            absolute = urldefrag(urljoin(base_url, href)).url
            host = urlsplit(absolute).hostname
        except ValueError:
            continue
        if not host or host != base_host:
            continue
        text = anchor.get_text(" ", strip=True)
        candidates.append((len(text), SameDomainLink(url=absolute, text=text or absolute)))

    candidates.sort(key=lambda candidate: candidate[0], reverse=True)

    seen: set[str] = set()
    ranked: list[SameDomainLink] = []
    for _, link in candidates:
        if link.url in seen:
            continue
        seen.add(link.url)
        ranked.append(link)
        if len(ranked) >= limit:
            break
    return ranked
