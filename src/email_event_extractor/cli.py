"""Command-line interface for the email event extractor.

This module provides the main entry point for the CLI application.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import structlog

from email_event_extractor import __version__
from email_event_extractor.config import Settings, get_settings
from email_event_extractor.extraction.extractor import EventExtractor
from email_event_extractor.mailbox import GmailMailboxSource
from email_event_extractor.ollama.client import OllamaClient
from email_event_extractor.pipeline import MergeEngine, PipelineRunner
from email_event_extractor.store import EventStore
from email_event_extractor.vector import EmbeddingIndex, build_embedder

logger = structlog.get_logger()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="email-events", description="Extract events from broadcast email")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Fetch recent mail and extract events")
    run_parser.add_argument(
        "--lookback-days",
        type=int,
        default=None,
        help="Only consider messages received in the last N days (default: settings lookback_days)",
    )
    run_parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the SQLite database (default: settings database_path)",
    )

    events_parser = subparsers.add_parser("events", help="List stored events")
    events_parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the SQLite database (default: settings database_path)",
    )
    events_parser.add_argument("--limit", type=int, default=25, help="Max results")

    stats_parser = subparsers.add_parser("stats", help="Show message, event and ignore-ledger counts")
    stats_parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the SQLite database (default: settings database_path)",
    )

    return parser


def _open_store(settings: Settings, db: Path | None) -> EventStore:
    store = EventStore(db or settings.database_path)
    store.initialize()
    return store


async def _cmd_run(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = _open_store(settings, args.db)

    source = GmailMailboxSource(settings)
    await source.authenticate()

    ollama = OllamaClient(settings)
    merge_engine = MergeEngine(
        store,
        EmbeddingIndex.from_settings(settings),
        build_embedder(settings, ollama),
        neighbor_count=settings.neighbor_count,
    )
    runner = PipelineRunner(
        settings=settings,
        source=source,
        store=store,
        extractor=EventExtractor(ollama, settings),
        merge_engine=merge_engine,
    )

    summary = await runner.run(lookback_days=args.lookback_days)
    for outcome, count in sorted(summary.counts.items()):
        print(f"{outcome.value}: {count}")
    if summary.skipped_fetches:
        print(f"fetch_failed: {summary.skipped_fetches}")
    return 0


def _cmd_events(args: argparse.Namespace) -> int:
    store = _open_store(get_settings(), args.db)

    for ev in store.list_events(limit=args.limit):
        print(f"{ev.date_time.isoformat(timespec='minutes')}\t{ev.location}\t{ev.title}\t({ev.organizer})")

    return 0


def _cmd_stats(args: argparse.Namespace) -> int:
    store = _open_store(get_settings(), args.db)

    stats = store.stats()
    print(f"Messages: {stats.total_messages} ({stats.processed_messages} processed)")
    print(f"Events: {stats.total_events}")
    print(f"Ignored messages: {stats.ignored_messages}")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    if args is None:
        args = sys.argv[1:]

    settings = get_settings()

    # Configure logging
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.log_level.upper())
        ),
    )

    logger.info("email_event_extractor_started", version=__version__)

    parser = _build_parser()
    parsed = parser.parse_args(args)

    if parsed.command == "run":
        return asyncio.run(_cmd_run(parsed))
    if parsed.command == "events":
        return _cmd_events(parsed)
    if parsed.command == "stats":
        return _cmd_stats(parsed)

    logger.error("unknown_command", command=parsed.command)
    return 2


if __name__ == "__main__":
    sys.exit(main())
