"""
Ordered selector lists for the answer UI.

Order is significant: most specific / most likely first. Any list can be
replaced from ``config/selectors.yaml`` using the same keys as the
``SelectorSet`` fields.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

SEARCH_INPUT_SELECTORS = [
    '[role="textbox"]',
    'textarea[placeholder*="Ask"]',
    'textarea[placeholder*="Search"]',
    "textarea.w-full",
    'textarea[rows="1"]',
    "textarea",
]

RESPONSE_SELECTORS = [
    ".prose",
    '[class*="prose"]',
    '[class*="answer"]',
    '[class*="result"]',
]

CAPTCHA_SELECTORS = [
    # Generic CAPTCHA
    '[class*="captcha"]',
    '[id*="captcha"]',
    'iframe[src*="captcha"]',
    'iframe[src*="recaptcha"]',
    # Turnstile
    'iframe[src*="turnstile"]',
    '[class*="turnstile"]',
    '[id*="turnstile"]',
    # Challenge pages
    "#challenge-running",
    "#challenge-form",
    ".challenge-running",
    ".challenge-form",
    '[class*="challenge"]',
    '[id*="challenge"]',
    # Cloudflare
    ".cf-browser-verification",
    ".cf-checking-browser",
    ".cf-under-attack",
    "#cf-wrapper",
    ".cf-im-under-attack",
    "[data-ray]",
    ".ray-id",
    "#cf-error-details",
    ".cf-error-overview",
    # Bot detection
    '[class*="bot-detection"]',
    '[class*="security-check"]',
    '[class*="verification"]',
    'body[class*="challenge"]',
    'html[class*="challenge"]',
]

# Largest-block fallback when no response container ever appears
FALLBACK_ANSWER_SELECTORS = [
    "main",
    "article",
    ".content",
    ".answer",
    ".result",
    "p",
    "div > p",
    ".text",
    '[class*="text"]',
    "div:not(:empty)",
]


class SelectorSet(BaseModel):
    search_inputs: list[str] = Field(default_factory=lambda: list(SEARCH_INPUT_SELECTORS))
    responses: list[str] = Field(default_factory=lambda: list(RESPONSE_SELECTORS))
    captcha: list[str] = Field(default_factory=lambda: list(CAPTCHA_SELECTORS))
    fallback_answer: list[str] = Field(default_factory=lambda: list(FALLBACK_ANSWER_SELECTORS))

    @classmethod
    def from_overrides(cls, overrides: Optional[dict[str, Any]] = None) -> SelectorSet:
        """Build from the YAML overlay; unknown keys and empty lists are ignored."""
        overrides = overrides or {}
        fields = {
            name: [str(s) for s in value]
            for name, value in overrides.items()
            if name in cls.model_fields and isinstance(value, list) and value
        }
        return cls(**fields)
