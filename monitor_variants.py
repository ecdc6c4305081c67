"""CLI entrypoint for the variantwatch agent."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from variantwatch.db import Database, resolve_sqlite_path
from variantwatch.fetcher import DEFAULT_TIMEOUT, PageFetcher
from variantwatch.models import Badge
from variantwatch.notifications import EventNotifier, build_notifier_from_env
from variantwatch.runner import VariantWatchRunner
from variantwatch.scheduler import DEFAULT_INTERVAL_MINUTES, Scheduler

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _log_badge(badge: Badge) -> None:
    if badge.count:
        kind = "stock" if badge.stock_alert else "sale"
        logger.info("Items needing attention: %d (%s)", badge.count, kind)


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError:
        logger.warning("Ignoring non-numeric %s", name)
        return default


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Product variant stock and price monitor")
    parser.add_argument("--init", action="store_true", help="initialize storage and exit")
    parser.add_argument("--run", action="store_true", help="execute one check cycle")
    parser.add_argument(
        "--watch",
        action="store_true",
        help="keep running check cycles on the configured interval",
    )
    parser.add_argument("--track", metavar="URL", help="start tracking the product variant at URL")
    parser.add_argument("--color", help="colour name to track (defaults to the URL's colour)")
    parser.add_argument("--size", help="size to track (defaults to the URL's size)")
    parser.add_argument("--untrack", type=int, metavar="INDEX", help="stop tracking the item at INDEX")
    parser.add_argument("--list", action="store_true", help="list tracked items")
    parser.add_argument("--clear-markers", action="store_true", help="acknowledge all change markers")
    parser.add_argument("--open-notification", metavar="ID", help="print the URL for a notification id")
    parser.add_argument("--export", metavar="PATH", help="export tracked items to an xlsx file")
    parser.add_argument(
        "--interval",
        type=float,
        default=_env_int("CHECK_INTERVAL_MINUTES", DEFAULT_INTERVAL_MINUTES),
        help="minutes between check cycles in --watch mode",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=_env_int("MAX_WORKERS", 1),
        help="number of items checked in parallel",
    )
    parser.add_argument("--verbose", action="store_true", help="enable debug logging")
    return parser


def build_runner(workers: int) -> VariantWatchRunner:
    database_url = os.getenv("DATABASE_URL", "sqlite:///variantwatch.db")
    database = Database(path=resolve_sqlite_path(database_url))
    return VariantWatchRunner(
        store=database,
        fetcher=PageFetcher(timeout=_env_int("FETCH_TIMEOUT", DEFAULT_TIMEOUT)),
        notifier=EventNotifier(channel=build_notifier_from_env()),
        max_workers=max(1, workers),
        on_badge=_log_badge,
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    runner = build_runner(args.workers)
    runner.init()
    if args.init:
        return 0

    if args.track:
        result = runner.track_url(args.track, color=args.color, size=args.size)
        if not result.success:
            logger.error("Could not track %s: %s", args.track, result.reason)
            return 1
        return 0

    if args.untrack is not None:
        result = runner.untrack_item(args.untrack)
        if not result.success:
            logger.error("Could not untrack: %s", result.reason)
            return 1
        return 0

    if args.list:
        for index, item in enumerate(runner.list_items()):
            price = f"${item.current_price:g}" if item.current_price is not None else "N/A"
            print(f"[{index}] {item.label} | {item.size} | {item.stock_status.value} | {price} | {item.url}")
        return 0

    if args.clear_markers:
        runner.clear_change_markers()
        return 0

    if args.open_notification:
        url = runner.open_notification(args.open_notification)
        if url is None:
            logger.error("Unknown notification id %s", args.open_notification)
            return 1
        print(url)
        return 0

    if args.export:
        export_path = runner.store.export_items_to_xlsx(Path(args.export))
        logger.info("Exported tracked items to %s", export_path)
        return 0

    if args.watch:
        scheduler = Scheduler(runner.check_all, interval_minutes=args.interval, initial_delay_minutes=0)
        try:
            scheduler.run_forever()
        except KeyboardInterrupt:
            logger.info("Stopping watch loop")
        return 0

    if not args.run:
        parser.print_help()
        return 1

    summary = runner.check_all()
    if summary.events:
        for key, events in summary.events.items():
            logger.info("%s: %s", key, ", ".join(event.type for event in events))
    else:
        logger.info("No changes detected in this run.")
    return 0 if not summary.failed else 2


if __name__ == "__main__":
    sys.exit(main())
