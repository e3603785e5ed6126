"""Command-line argument parsing for the PR dashboard API server."""

from __future__ import annotations

import argparse
from typing import Optional, Sequence

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _port(value: str) -> int:
    """Parse and validate a TCP port CLI value.

    Raises:
        argparse.ArgumentTypeError: If value is not an integer in 1-65535.
    """
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be an integer") from exc

    if not 0 < parsed < 65536:
        raise argparse.ArgumentTypeError("must be between 1 and 65535")

    return parsed


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments for the API server.

    Returns:
        Parsed CLI arguments containing host, port and log level.
    """
    parser = argparse.ArgumentParser(
        prog="prdash-api",
        description=(
            "Serve pull-request, review and activity aggregates for GitHub "
            "organizations as a JSON API."
        ),
    )

    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Interface to bind (default: 127.0.0.1).",
    )
    parser.add_argument(
        "--port",
        type=_port,
        default=None,
        help="Port to listen on (default: $PORT or 5174).",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default="INFO",
        help="Logging verbosity (default: INFO).",
    )

    return parser.parse_args(argv)
