import argparse
import asyncio
import sys
from typing import List, Optional

from anitrack.background_scraper.worker import ScanOrchestrator
from anitrack.core.database import setup_database, teardown_database
from anitrack.core.logger import log_startup_info, logger
from anitrack.core.models import settings
from anitrack.scrapers.extractor import DetailExtractor
from anitrack.scrapers.fetcher import Fetcher
from anitrack.scrapers.models import ScanCursor
from anitrack.scrapers.scanner import PageScanner
from anitrack.services.records import AnimeStore
from anitrack.utils.http_client import http_client_manager


def build_scanner(session, store: AnimeStore) -> PageScanner:
    fetcher = Fetcher(session)
    return PageScanner(fetcher, DetailExtractor(fetcher), store)


async def scan_command(store: AnimeStore):
    session = await http_client_manager.get_session()
    orchestrator = ScanOrchestrator(build_scanner(session, store))
    summary = await orchestrator.run_locked()
    if summary:
        print(
            f"Scanned {summary.pages_scanned} pages, {summary.total_processed} updated ({summary.stop_reason})"
        )


async def serve_command(store: AnimeStore, interval: Optional[int]):
    session = await http_client_manager.get_session()
    orchestrator = ScanOrchestrator(build_scanner(session, store))
    await orchestrator.run_forever(interval=interval)


async def check_command(store: AnimeStore, page: int):
    session = await http_client_manager.get_session()
    scanner = build_scanner(session, store)

    print(f"Running manual scan of page {page}...")
    result = await scanner.scan(page, ScanCursor(page=page), settings.UNCHANGED_LIMIT)
    print(
        f"Updated: {result.processed} - Unchanged streak: {result.cursor.consecutive_unchanged} - Stop: {result.stop}"
    )

    print(f"Total Anime in DB: {await store.count()}")

    latest = await store.get_latest()
    if latest:
        print("Latest Anime:")
        print(f"Title: {latest.title}")
        print(f"Subs: {latest.sub_count}, Dubs: {latest.dub_count}")
        print(f"Player URLs (count): {len(latest.sources)}")


async def pending_command(store: AnimeStore, mark_processed: bool):
    notifications = await store.get_pending_notifications()

    print(f"\nFound {len(notifications)} pending notifications:")
    print("-" * 60)
    for notification in notifications:
        print(
            f"{notification['type']:<5} {notification['title']} ({notification['anime_url']})"
        )
        if mark_processed:
            await store.mark_notification_processed(notification["id"])
    print("-" * 60)


async def list_command(store: AnimeStore):
    records = sorted(await store.get_all(), key=lambda r: r.title.lower())

    print(f"\n{len(records)} anime stored:")
    print("-" * 60)
    for record in records:
        print(
            f"{record.sub_count:>4} sub {record.dub_count:>4} dub  {record.title} ({record.url})"
        )
    print("-" * 60)


async def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        description="AniTrack - incremental anime update tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run a single scan until the stop condition fires
  python -m anitrack scan

  # Scan now, then every hour
  python -m anitrack serve

  # Scan only the first listing page and show what is stored
  python -m anitrack check --page 1

  # List pending notifications and mark them processed
  python -m anitrack pending --mark-processed

  # Show every stored title with its sub and dub counts
  python -m anitrack list
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("scan", help="Run one scan")

    serve_parser = subparsers.add_parser("serve", help="Scan periodically")
    serve_parser.add_argument(
        "--interval", type=int, help="Seconds between scans (default: SCAN_INTERVAL)"
    )

    check_parser = subparsers.add_parser("check", help="Scan a single listing page")
    check_parser.add_argument("--page", type=int, default=1, help="Page number")

    pending_parser = subparsers.add_parser(
        "pending", help="List pending notifications"
    )
    pending_parser.add_argument(
        "--mark-processed", action="store_true", help="Mark listed notifications processed"
    )

    subparsers.add_parser("list", help="List stored anime with episode counts")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return

    try:
        await setup_database()
        store = AnimeStore()

        if args.command == "scan":
            await scan_command(store)

        elif args.command == "serve":
            log_startup_info(settings)
            await serve_command(store, args.interval)

        elif args.command == "check":
            await check_command(store, args.page)

        elif args.command == "pending":
            await pending_command(store, args.mark_processed)

        elif args.command == "list":
            await list_command(store)

    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}")
        logger.exception("CLI command failed")
        sys.exit(1)
    finally:
        await http_client_manager.close()
        await teardown_database()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
