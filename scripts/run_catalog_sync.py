#!/usr/bin/env python3
"""
Catalog Sync CLI

Runs the catalog sync in-process against the configured database.
Usage:
    python scripts/run_catalog_sync.py [--games pokemon,mtg | --games ALL] [--force]
    python scripts/run_catalog_sync.py --games pokemon --reset-cursors [--entity-prefix cards:]
"""
import argparse
import asyncio
import json
import logging
import sys

from app.jobs.catalog_sync import reset_catalog_cursors, run_catalog_sync_job
from app.services.catalog_sync.events import SyncEvent

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("run_catalog_sync")


async def log_event(event: SyncEvent) -> None:
    logger.info(
        f"[{event.type}] game={event.game} phase={event.phase} "
        f"processed={event.processed}/{event.total} {event.data or ''}"
    )


async def main_async(args) -> int:
    games = [g.strip() for g in args.games.split(",") if g.strip()] if args.games else None

    if args.reset_cursors:
        if not games or games == ["ALL"]:
            logger.error("--reset-cursors needs an explicit --games list")
            return 2
        reset = await reset_catalog_cursors(games, args.entity_prefix)
        print(json.dumps({"reset": reset}, indent=2))
        return 0

    summary = await run_catalog_sync_job(
        games=games,
        force=args.force,
        event_sink=log_event if args.verbose else None,
    )
    print(json.dumps(summary, indent=2, default=str))
    return 0 if summary["status"] == "completed" else 1


def main():
    parser = argparse.ArgumentParser(description="Sync the local card catalog from the provider")
    parser.add_argument("--games", default=None,
                        help="Comma-separated game slugs, or ALL (default: configured games)")
    parser.add_argument("--force", action="store_true", help="Ignore the duplicate-sync guard")
    parser.add_argument("--reset-cursors", action="store_true",
                        help="Delete persisted cursors for --games instead of syncing")
    parser.add_argument("--entity-prefix", default=None,
                        help="Only reset cursors whose entity starts with this (e.g. cards:)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every progress event")
    args = parser.parse_args()

    sys.exit(asyncio.run(main_async(args)))


if __name__ == "__main__":
    main()
