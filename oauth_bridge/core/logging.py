"""
Logging utilities for the OAuth bridge service and its maintenance scripts.

Provides a consistent logging format and configuration.
"""

import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a sensible default format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )


def redact(value: str | None) -> str:
    """Shorten a credential-like identifier so it is safe to log."""
    if not value:
        return "<none>"
    return f"{value[:8]}..."


__all__ = ["configure_logging", "redact"]
