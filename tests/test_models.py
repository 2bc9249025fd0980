"""
Unit tests for core data models.

Covers the caller-facing wire shapes (camelCase keys), page result
rules, crawl-state claiming and retry-policy validation.
"""

import pytest
from pydantic import ValidationError

from searchpilot.models import (
    CrawlEnvelope,
    CrawlState,
    CrawlStatus,
    PageContentResult,
    RecoveryLevel,
    RetryPolicy,
)


class TestPageContentResult:
    def test_success_wire_shape(self) -> None:
        result = PageContentResult(url="https://example.com/", title="Example", text_content="Body")
        assert result.succeeded
        assert result.to_wire() == {
            "url": "https://example.com/",
            "title": "Example",
            "textContent": "Body",
            "error": None,
        }

    def test_failure_has_no_content(self) -> None:
        result = PageContentResult.failure("https://example.com/", "Client error (404): Not Found")
        assert not result.succeeded
        assert result.text_content is None
        assert result.to_wire()["textContent"] is None

    def test_accepts_wire_alias(self) -> None:
        result = PageContentResult.model_validate({"url": "u", "textContent": "Body"})
        assert result.text_content == "Body"


class TestCrawlEnvelope:
    def test_wire_shape(self) -> None:
        envelope = CrawlEnvelope(
            status=CrawlStatus.PARTIAL,
            message="Fetched 1/2 pages successfully. Some pages failed or timed out.",
            root_url="https://example.com/",
            exploration_depth=2,
            pages_explored=2,
            content=[
                PageContentResult(url="https://example.com/", text_content="Root"),
                PageContentResult.failure("https://example.com/a", "boom"),
            ],
        )
        wire = envelope.to_wire()
        assert wire["status"] == "SuccessWithPartial"
        assert wire["rootUrl"] == "https://example.com/"
        assert wire["explorationDepth"] == 2
        assert wire["pagesExplored"] == 2
        assert wire["content"][0]["textContent"] == "Root"
        assert wire["content"][1] == {
            "url": "https://example.com/a",
            "title": None,
            "textContent": None,
            "error": "boom",
        }

    def test_message_omitted_on_success(self) -> None:
        envelope = CrawlEnvelope(
            status=CrawlStatus.SUCCESS, root_url="https://example.com/", exploration_depth=2
        )
        assert "message" not in envelope.to_wire()


class TestCrawlState:
    def test_claim_once(self) -> None:
        state = CrawlState()
        assert state.claim("https://example.com/")
        assert not state.claim("https://example.com/")

    def test_succeeded_count(self) -> None:
        state = CrawlState(
            results=[
                PageContentResult(url="a", text_content="ok"),
                PageContentResult.failure("b", "boom"),
            ]
        )
        assert state.succeeded_count == 1


class TestRetryPolicy:
    def test_at_least_one_attempt(self) -> None:
        assert RetryPolicy(max_attempts=0).max_attempts == 1

    def test_frozen(self) -> None:
        with pytest.raises(ValidationError):
            RetryPolicy().max_attempts = 5


def test_recovery_levels_are_ordered() -> None:
    assert RecoveryLevel.MINOR < RecoveryLevel.PAGE < RecoveryLevel.BROWSER
