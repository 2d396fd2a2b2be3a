"""Formatting utilities for status reports."""

import time
from typing import Optional


def format_seconds_ago(timestamp: Optional[float], now: Optional[float] = None) -> str:
    """Format a Unix timestamp as "N seconds ago".

    Args:
        timestamp: Unix timestamp, or None.
        now: Reference time (defaults to the current time).

    Returns:
        "N seconds ago", or "Never" when timestamp is None.
    """
    if timestamp is None:
        return "Never"
    now = time.time() if now is None else now
    seconds = max(0, int(now - timestamp))
    return f"{seconds} second{'s' if seconds != 1 else ''} ago"


class ReportBuilder:
    """Accumulate "name: value" lines for a status report."""

    def __init__(self) -> None:
        self._lines: list[str] = []

    def add(self, name: str, value: object = None) -> None:
        """Add a line; a None value prints the name alone."""
        self._lines.append(name if value is None else f"{name}: {value}")

    def __str__(self) -> str:
        return "\n".join(self._lines) + "\n"
