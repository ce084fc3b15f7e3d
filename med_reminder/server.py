"""
Command-line entry point that serves the API with uvicorn.
"""

from __future__ import annotations

import argparse
import logging

import uvicorn

from med_reminder.config import get_settings

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Medication reminder API server")
    parser.add_argument(
        "--host",
        type=str,
        default=settings.host,
        help="Interface to bind (default: all interfaces)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.port,
        help="Port to listen on",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=settings.log_level,
        help="Logging level",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Server on %s:%d", args.host, args.port)
    uvicorn.run(
        "med_reminder.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
