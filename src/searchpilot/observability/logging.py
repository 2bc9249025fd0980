"""
structlog configuration for searchpilot.

All output goes to stderr; stdout belongs to whatever tool protocol sits on
top. Console rendering goes through Rich, or plain JSON lines when
``SEARCHPILOT_LOG_JSON`` is set.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import structlog
from rich.console import Console
from rich.theme import Theme

_THEME = Theme({
    "log.info": "dim white",
    "log.warning": "bold #f59e0b",
    "log.error": "bold #dc2626",
    "log.debug": "dim #64748b",
    "log.key": "#64748b",
    "log.val": "#94a3b8",
})

console = Console(theme=_THEME, stderr=True, highlight=False)

_configured = False


class _RichStructlogRenderer:
    """Custom structlog processor that renders log lines via Rich."""

    _SKIP_KEYS = frozenset({"event", "level", "timestamp", "_record"})

    def __call__(self, logger_: object, method: str, event_dict: dict) -> str:  # noqa: ARG002
        event = event_dict.get("event", "")
        level = event_dict.get("level", "info").lower()
        ts = event_dict.get("timestamp", "")

        kv_parts = []
        for k, v in event_dict.items():
            if k in self._SKIP_KEYS:
                continue
            vs = str(v)
            if len(vs) > 120:
                vs = vs[:117] + "…"
            kv_parts.append(f"[log.key]{k}[/log.key]=[log.val]{vs}[/log.val]")
        kv_str = "  ".join(kv_parts)

        if level == "warning":
            prefix = "[log.warning]⚠[/log.warning]"
            ev_fmt = f"[log.warning]{event}[/log.warning]"
        elif level in ("error", "critical"):
            prefix = "[log.error]✗[/log.error]"
            ev_fmt = f"[log.error]{event}[/log.error]"
        elif level == "debug":
            prefix = "[log.debug]·[/log.debug]"
            ev_fmt = f"[log.debug]{event}[/log.debug]"
        else:
            prefix = "[#ea580c]▪[/#ea580c]"
            ev_fmt = f"[bold #e2e8f0]{event}[/bold #e2e8f0]"

        console.print(f"  [log.debug]{ts}[/log.debug] {prefix} {ev_fmt}  {kv_str}")
        raise structlog.DropEvent()


def configure_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """Install the processor chain once. Later calls are ignored."""
    global _configured
    if _configured:
        return
    from searchpilot.config import get_settings

    obs = get_settings().observability
    level_name = (level or obs.log_level).upper()
    use_json = obs.log_json if json_output is None else json_output

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if use_json:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(_RichStructlogRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level_name)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
    _configured = True
