import asyncio

from anitrack.background_scraper.worker import LOCK_KEY, ScanOrchestrator
from anitrack.core.logger import logger
from anitrack.scrapers.extractor import DetailExtractor
from anitrack.scrapers.fetcher import Fetcher
from anitrack.scrapers.models import PageScanResult, ScanCursor
from anitrack.scrapers.scanner import PageScanner
from anitrack.utils.distributed_lock import DistributedLock
from fakes import (
    BASE_URL,
    FakeResponse,
    FakeSession,
    InMemoryStore,
    RecordingSleep,
    detail_html,
    listing_html,
    make_record,
    run_with_db,
)


class ScriptedScanner:
    """Returns (processed, unchanged, stop, failed) tuples in order."""

    def __init__(self, *script):
        self.script = list(script)
        self.calls = []

    async def scan(self, page, cursor, limit):
        self.calls.append((page, cursor.consecutive_unchanged, limit))
        processed, unchanged, stop, failed = self.script.pop(0)
        return PageScanResult(
            processed=processed,
            cursor=ScanCursor(page=page, consecutive_unchanged=unchanged),
            stop=stop,
            failed=failed,
        )


def _orchestrator(scanner, **kwargs):
    sleep = RecordingSleep()
    kwargs.setdefault("unchanged_limit", 30)
    kwargs.setdefault("page_delay", 1)
    kwargs.setdefault("max_page_failures", 3)
    return ScanOrchestrator(scanner, sleep=sleep, **kwargs), sleep


def test_advances_pages_until_stop_signal():
    scanner = ScriptedScanner(
        (10, 2, False, False),
        (0, 20, False, False),
        (0, 30, True, False),
    )
    orchestrator, sleep = _orchestrator(scanner)

    summary = asyncio.run(orchestrator.run())

    assert scanner.calls == [(1, 0, 30), (2, 2, 30), (3, 20, 30)]
    assert summary.pages_scanned == 3
    assert summary.total_processed == 10
    assert summary.stop_reason == "stop_signal"
    assert sleep.delays == [1, 1]


def test_page_without_progress_or_unchanged_items_ends_run():
    scanner = ScriptedScanner((0, 0, False, False))
    orchestrator, sleep = _orchestrator(scanner)

    summary = asyncio.run(orchestrator.run())

    assert summary.pages_scanned == 1
    assert summary.stop_reason == "no_progress"
    assert sleep.delays == []


def test_failed_page_is_retried_in_place():
    scanner = ScriptedScanner(
        (0, 0, False, True),
        (3, 0, False, False),
        (0, 0, True, False),
    )
    orchestrator, sleep = _orchestrator(scanner)

    summary = asyncio.run(orchestrator.run())

    assert [call[0] for call in scanner.calls] == [1, 1, 2]
    assert summary.page_failures == 1
    assert summary.total_processed == 3
    assert summary.stop_reason == "stop_signal"


def test_repeated_page_failures_end_run():
    scanner = ScriptedScanner(*[(0, 0, False, True)] * 3)
    orchestrator, sleep = _orchestrator(scanner, max_page_failures=3)

    summary = asyncio.run(orchestrator.run())

    assert [call[0] for call in scanner.calls] == [1, 1, 1]
    assert summary.stop_reason == "page_failures"
    assert sleep.delays == [1, 1]


def test_overlapping_run_is_refused():
    class SlowScanner:
        def __init__(self):
            self.started = asyncio.Event()
            self.release = asyncio.Event()

        async def scan(self, page, cursor, limit):
            self.started.set()
            await self.release.wait()
            return PageScanResult(processed=0, cursor=cursor, stop=True)

    async def scenario():
        scanner = SlowScanner()
        orchestrator, _ = _orchestrator(scanner)
        first = asyncio.create_task(orchestrator.run())
        await scanner.started.wait()
        second = await orchestrator.run()
        scanner.release.set()
        return await first, second

    first, second = asyncio.run(scenario())

    assert first is not None
    assert first.stop_reason == "stop_signal"
    assert second is None


def test_end_to_end_scan_over_two_pages():
    page_1 = f"{BASE_URL}/anime/page/1/"
    page_2 = f"{BASE_URL}/anime/page/2/"
    store = InMemoryStore(
        [make_record(f"{BASE_URL}/anime/old.html", title="Old", dub_count=9)]
    )
    session = (
        FakeSession()
        .add(page_1, listing_html([("/anime/new.html", "New")]))
        .add(page_2, listing_html([("/anime/old.html", "Old")]))
        .add(f"{BASE_URL}/anime/new.html", detail_html(user_hash=None, meta="Серій: 1"))
        .add(f"{BASE_URL}/anime/old.html", detail_html(user_hash=None, meta="Серій: 9"))
        .add(f"{BASE_URL}/anime/page/3/", FakeResponse(404, reason="Not Found"))
    )
    fetcher = Fetcher(session, base_url=BASE_URL, sleep=RecordingSleep())
    scanner = PageScanner(
        fetcher, DetailExtractor(fetcher), store, item_delay=0, sleep=RecordingSleep()
    )
    orchestrator, _ = _orchestrator(scanner, unchanged_limit=1)

    summary = asyncio.run(orchestrator.run())

    assert summary.pages_scanned == 2
    assert summary.total_processed == 1
    assert [r.title for r in store.upserts] == ["New"]
    assert page_2 in session.urls()
    assert f"{BASE_URL}/anime/page/3/" not in session.urls()


def test_locked_run_skips_while_another_process_holds_the_lock():
    async def scenario(db):
        holder = DistributedLock(LOCK_KEY, timeout=60, db=db)
        await holder.acquire()

        scanner = ScriptedScanner((0, 0, True, False))
        orchestrator, _ = _orchestrator(scanner, db=db)
        summary = await orchestrator.run_locked()

        await holder.release()
        return summary, scanner.calls

    summary, calls = run_with_db(scenario)

    assert summary is None
    assert calls == []


def test_locked_run_releases_lock_afterwards():
    async def scenario(db):
        scanner = ScriptedScanner((0, 0, True, False))
        orchestrator, _ = _orchestrator(scanner, db=db)
        summary = await orchestrator.run_locked()
        rows = await db.fetch_all(
            "SELECT lock_key FROM scan_locks WHERE lock_key = :lock_key",
            {"lock_key": LOCK_KEY},
        )
        return summary, rows

    summary, rows = run_with_db(scenario)

    assert summary.stop_reason == "stop_signal"
    assert rows == []


def test_failed_run_is_logged_and_loop_continues():
    class StopLoop(Exception):
        pass

    class FlakyScanner:
        def __init__(self):
            self.calls = 0

        async def scan(self, page, cursor, limit):
            self.calls += 1
            if self.calls == 1:
                raise RuntimeError("listing exploded")
            return PageScanResult(processed=0, cursor=cursor, stop=True)

    class TwoCycleSleep:
        def __init__(self):
            self.delays = []

        async def __call__(self, delay):
            self.delays.append(delay)
            if len(self.delays) == 2:
                raise StopLoop()

    scanner = FlakyScanner()
    sleep = TwoCycleSleep()
    orchestrator = ScanOrchestrator(scanner, sleep=sleep)
    errors = []
    handler_id = logger.add(errors.append, level="ERROR", format="{message}")

    try:
        asyncio.run(orchestrator.run_forever(interval=5, use_lock=False))
        stopped = False
    except StopLoop:
        stopped = True
    finally:
        logger.remove(handler_id)

    assert stopped
    assert scanner.calls == 2
    assert sleep.delays == [5, 5]
    assert any("listing exploded" in message for message in errors)
