"""Content distillation, link discovery and the recursive crawl."""

from searchpilot.extraction.crawler import RecursiveCrawler, clamp_depth
from searchpilot.extraction.distiller import ContentDistiller
from searchpilot.extraction.http_fetcher import HttpFetcher
from searchpilot.extraction.links import extract_same_domain_links
from searchpilot.extraction.page_extractor import PageExtractor, rewrite_repository_url

__all__ = [
    "ContentDistiller",
    "HttpFetcher",
    "PageExtractor",
    "RecursiveCrawler",
    "clamp_depth",
    "extract_same_domain_links",
    "rewrite_repository_url",
]
