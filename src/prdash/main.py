"""Process entrypoint for the PR dashboard API server."""

from __future__ import annotations

import logging
import sys
from typing import Optional, Sequence

import uvicorn

from .api import create_app
from .cli import parse_args
from .config import load_config
from .errors import AuthenticationError, ConfigurationError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_CONFIGURATION = 2
EXIT_AUTHENTICATION = 3


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def orchestrate_server(argv: Optional[Sequence[str]] = None) -> int:
    """Parse arguments, load configuration and serve until interrupted.

    Returns:
        Process exit code.
    """
    try:
        args = parse_args(argv)
        configure_logging(args.log_level)
        config = load_config(host=args.host, port=args.port)
        app = create_app(config)

        logger.info("API listening", extra={"host": config.host, "port": config.port})
        uvicorn.run(app, host=config.host, port=config.port, log_level=args.log_level.lower())
        return EXIT_OK
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIGURATION
    except AuthenticationError as exc:
        print(f"Authentication error: {exc}", file=sys.stderr)
        return EXIT_AUTHENTICATION
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected error while running the API server")
        print(f"Unexpected error: {exc}", file=sys.stderr)
        return EXIT_UNEXPECTED


def main() -> None:
    sys.exit(orchestrate_server())


if __name__ == "__main__":
    main()
