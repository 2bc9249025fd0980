"""searchpilot: browser-driven answer search and recursive page content extraction."""

__version__ = "0.1.0"
