"""
Primary-content distillation over raw page markup.

Three tiers, first hit wins:
  1. readability (Mozilla's algorithm via readability-lxml), accepted when its
     text is longer than its title
  2. the first structural container (article, main, common content ids and
     classes) with enough visible text
  3. the body with navigation, chrome and interactive elements stripped
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

import structlog
from bs4 import BeautifulSoup
from lxml.etree import ParserError
from readability import Document
from readability.readability import Unparseable

from searchpilot.config import CrawlConfig

logger = structlog.get_logger()

STRUCTURAL_SELECTORS = [
    "article",
    "main",
    '[role="main"]',
    "#content",
    ".content",
    "#main",
    ".main",
    "#article-body",
    ".article-body",
    ".post-content",
    ".entry-content",
]

# Removed from the body before the last-resort text read
CHROME_SELECTOR = (
    'nav, header, footer, aside, script, style, noscript, button, form, '
    '[role="navigation"], [role="banner"], [role="contentinfo"], [aria-hidden="true"]'
)

# Never rendered, so never part of visible text
_NON_RENDERED = ["script", "style", "noscript", "template"]

_BLANK_LINES = re.compile(r"\n\s*\n+")


@dataclass
class DistilledContent:
    title: Optional[str]
    text: str
    method: str


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def visible_text(node) -> str:
    """Approximate innerText: block-separated, whitespace-trimmed text."""
    text = node.get_text("\n", strip=True)
    return _BLANK_LINES.sub("\n\n", text).strip()


def document_title(soup: BeautifulSoup) -> Optional[str]:
    if soup.title and soup.title.string:
        return soup.title.string.strip() or None
    return None


def readability_extract(html: str) -> tuple[Optional[str], str]:
    """(title, text) from readability; empty text if the document cannot be parsed."""
    try:
        doc = Document(html)
        summary = doc.summary(html_partial=True)
        title = doc.short_title() or None
    except (Unparseable, ParserError, ValueError) as exc:
        logger.debug("readability_failed", error=str(exc)[:200])
        return None, ""
    return title, visible_text(parse_html(summary))


class ContentDistiller:
    """Runs the distillation tiers against one document."""

    def __init__(self, config: Optional[CrawlConfig] = None) -> None:
        self.config = config or CrawlConfig()

    def distill(self, html: str, page_title: Optional[str] = None) -> Optional[DistilledContent]:
        """Best available main text, or None when every tier falls short."""
        if not html or not html.strip():
            return None

        title, text = readability_extract(html)
        # readability-lxml has no length floor of its own
        if text and len(text) > max(len(title or ""), self.config.min_content_length):
            logger.debug("distilled", method="readability", length=len(text))
            return DistilledContent(title=title or page_title, text=text, method="readability")

        soup = parse_html(html)
        page_title = page_title or document_title(soup)
        for tag in soup(_NON_RENDERED):
            tag.decompose()

        for selector in STRUCTURAL_SELECTORS:
            element = soup.select_one(selector)
            if element is None:
                continue
            text = visible_text(element)
            if len(text) > self.config.selector_min_length:
                logger.debug("distilled", method=f"selector:{selector}", length=len(text))
                return DistilledContent(title=page_title, text=text, method=selector)

        body = soup.body or soup
        for element in body.select(CHROME_SELECTOR):
            element.decompose()
        text = visible_text(body)
        if len(text) > self.config.body_min_length:
            logger.debug("distilled", method="body", length=len(text))
            return DistilledContent(title=page_title, text=text, method="body (filtered)")

        return None
