"""Command-line entry point.

Usage:
    gift-listing-tracker run [--dry-run]
    gift-listing-tracker test-alert

With no command, ``TEST_ALERT=1`` selects ``test-alert`` and anything else
selects ``run``.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from pydantic import ValidationError

from gift_listing_tracker import __version__
from gift_listing_tracker.alerter.dispatcher import AlertDispatchError
from gift_listing_tracker.config import Settings, get_settings
from gift_listing_tracker.pipeline import Pipeline

logger = logging.getLogger("gift_listing_tracker")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

EXIT_OK = 0
EXIT_CONFIG_ERROR = 2
EXIT_ALERT_FAILED = 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gift-listing-tracker",
        description="Watch TON marketplaces for gift listings and alert on Telegram",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override LOG_LEVEL",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Log alerts instead of sending them (overrides DRY_RUN)",
    )
    parser.add_argument(
        "command",
        nargs="?",
        choices=["run", "test-alert"],
        default=None,
        help="run: consume the trace stream (default); test-alert: send one alert and exit",
    )
    return parser


def configure_logging(level: int) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


async def _run(settings: Settings, *, dry_run: bool | None) -> None:
    pipeline = Pipeline(settings, dry_run=dry_run)
    await pipeline.run()


async def _test_alert(settings: Settings, *, dry_run: bool | None) -> None:
    pipeline = Pipeline(settings, dry_run=dry_run)
    await pipeline.send_test_alert()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        configure_logging(logging.INFO)
        logger.error("Invalid configuration: %s", e)
        return EXIT_CONFIG_ERROR

    level = getattr(logging, args.log_level) if args.log_level else settings.get_logging_level()
    configure_logging(level)

    command = args.command or ("test-alert" if settings.test_overrides.enabled else "run")
    dry_run = True if args.dry_run else None

    try:
        settings.validate_requirements(command=command)
    except ValueError as e:
        logger.error("Refusing to start: %s", e)
        return EXIT_CONFIG_ERROR

    logger.info("Starting %s (%s)", command, settings.redacted_summary())

    try:
        if command == "test-alert":
            asyncio.run(_test_alert(settings, dry_run=dry_run))
            logger.info("Test alert sent")
        else:
            asyncio.run(_run(settings, dry_run=dry_run))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except AlertDispatchError as e:
        logger.error("Test alert failed: %s", e)
        return EXIT_ALERT_FAILED

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
