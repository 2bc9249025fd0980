"""
Answer stabilization: poll the rendered answer until it stops streaming.

Each poll reads the response container's text. The answer counts as complete
when one of these holds:

  - it is long and has been identical for a few polls (longer answers need
    fewer repeats, they are less likely to still be streaming)
  - its last block ends a sentence, it has repeated at least twice and it
    clears a minimum length
  - it has not grown for a long run of polls and is already substantial

All thresholds live in ``StabilizationConfig``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from searchpilot.browser.capability import PageHandle
from searchpilot.browser.scripts import ANSWER_SNAPSHOT
from searchpilot.config import StabilizationConfig
from searchpilot.errors import OperationTimeoutError

logger = structlog.get_logger()

_UNSAFE_URL_PREFIXES = ("javascript:", "data:", "vbscript:", "#")
_SENTENCE_END = (".", "?", "!")


@dataclass
class AnswerSnapshot:
    text: str = ""
    tail: str = ""
    urls: list[str] = field(default_factory=list)

    @classmethod
    def from_page(cls, raw: Any) -> AnswerSnapshot:
        if not isinstance(raw, dict):
            return cls()
        return cls(
            text=str(raw.get("text") or ""),
            tail=str(raw.get("tail") or ""),
            urls=[str(u) for u in raw.get("urls") or []],
        )


def compose_answer(snapshot: AnswerSnapshot) -> str:
    """Answer text followed by its safe, de-duplicated outbound links."""
    urls: list[str] = []
    for url in snapshot.urls:
        if not url or url.lower().startswith(_UNSAFE_URL_PREFIXES) or url in urls:
            continue
        urls.append(url)
    if not urls:
        return snapshot.text
    return snapshot.text + "\n\nURLs:\n" + "\n".join(f"- {u}" for u in urls)


class AnswerStabilizer:
    """Explicit poll loop with an injectable sleep."""

    def __init__(
        self,
        config: Optional[StabilizationConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or StabilizationConfig()
        self._sleep = sleep

    async def snapshot(self, page: PageHandle, selectors: list[str]) -> AnswerSnapshot:
        return AnswerSnapshot.from_page(await page.evaluate(ANSWER_SNAPSHOT, selectors))

    def is_complete(self, snap: AnswerSnapshot, stable_polls: int, no_growth_polls: int) -> bool:
        cfg = self.config
        length = len(snap.text)
        if length == 0:
            return False
        if length > cfg.long_answer_length and stable_polls >= cfg.long_answer_stable_polls:
            return True
        if length > cfg.medium_answer_length and stable_polls >= cfg.medium_answer_stable_polls:
            return True
        if stable_polls >= cfg.short_answer_stable_polls:
            return True
        if (
            snap.tail.rstrip().endswith(_SENTENCE_END)
            and stable_polls >= cfg.completion_stable_polls
            and length > cfg.completion_min_length
        ):
            return True
        return no_growth_polls >= cfg.stall_polls and length > cfg.stall_min_length

    async def wait_for_answer(self, page: PageHandle, selectors: list[str]) -> str:
        """
        Poll until the answer is complete and return it with its URL list.

        Raises OperationTimeoutError if the poll cap is reached without any
        text appearing. If text did appear, the latest text is returned.
        """
        cfg = self.config
        previous = ""
        longest = 0
        stable_polls = 0
        no_growth_polls = 0
        last = AnswerSnapshot()

        for poll in range(1, cfg.max_polls + 1):
            snap = await self.snapshot(page, selectors)
            if snap.text:
                last = snap

            if snap.text and snap.text == previous:
                stable_polls += 1
            else:
                stable_polls = 0
            if len(snap.text) > longest:
                longest = len(snap.text)
                no_growth_polls = 0
            else:
                no_growth_polls += 1
            previous = snap.text

            if self.is_complete(snap, stable_polls, no_growth_polls):
                logger.info("answer_stabilized", polls=poll, length=len(snap.text), stable_polls=stable_polls)
                return compose_answer(snap)

            await self._sleep(cfg.poll_interval)

        if last.text:
            logger.warning("answer_poll_cap_reached", polls=cfg.max_polls, length=len(last.text))
            return compose_answer(last)
        raise OperationTimeoutError("No answer text appeared before the poll limit")

    async def read_partial(self, page: PageHandle, selectors: list[str]) -> Optional[str]:
        """Best-effort re-reads after a timeout. None if nothing substantial appeared."""
        cfg = self.config
        for attempt in range(1, cfg.partial_reads + 1):
            try:
                snap = await self.snapshot(page, selectors)
            except Exception as exc:
                logger.warning("partial_read_failed", attempt=attempt, error=str(exc)[:200])
                snap = AnswerSnapshot()
            if len(snap.text) > cfg.partial_min_length:
                logger.info("partial_answer_recovered", attempt=attempt, length=len(snap.text))
                return snap.text
            if attempt < cfg.partial_reads:
                await self._sleep(cfg.partial_read_interval)
        return None
