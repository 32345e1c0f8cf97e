"""Sweep expired authorization codes, sessions and refresh index entries.

Reads are already expiry-aware, so this only bounds storage growth. DynamoDB
tables with TTL enabled do the same work on their own; the sweep is still safe
to run against them.

Example usages::

    # One-off sweep against the configured backend.
    python -m scripts.purge_expired

    # Repeat every ten minutes (e.g. under systemd).
    python -m scripts.purge_expired --interval 600
"""

from __future__ import annotations

import argparse
import logging
import sys
import time

from oauth_bridge.core.config import get_settings
from oauth_bridge.core.logging import configure_logging
from oauth_bridge.dependencies import get_session_store

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_RUNTIME_ERROR = 5


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Delete expired OAuth bridge records.")
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between sweeps; omit to run once and exit.",
    )
    return parser


def run_once() -> int:
    return get_session_store().purge_expired()


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    configure_logging(get_settings().log_level)

    try:
        while True:
            removed = run_once()
            print(f"Removed {removed} expired records.")
            if args.interval is None:
                return EXIT_OK
            time.sleep(args.interval)
    except KeyboardInterrupt:
        return EXIT_OK
    except Exception:  # pylint: disable=broad-except
        logger.exception("Purge failed")
        return EXIT_RUNTIME_ERROR


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
