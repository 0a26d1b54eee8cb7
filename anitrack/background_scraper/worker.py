import asyncio
import time
from typing import Optional

from databases import Database

from anitrack.core.logger import logger
from anitrack.core.models import database, settings
from anitrack.scrapers.models import ScanCursor, ScanSummary
from anitrack.scrapers.scanner import PageScanner
from anitrack.utils.distributed_lock import DistributedLock

LOCK_KEY = "anitrack_scan_lock"


class ScanOrchestrator:
    """
    Walks the paginated listing from page 1 until a stop condition fires.

    A run stops when the scanner signals it (empty or missing page, or the
    unchanged limit was reached), when a page yields neither a change nor an
    unchanged item, or when the same page failed max_page_failures times in a
    row. Overlapping runs are refused in-process by run() and across processes
    by run_locked().
    """

    def __init__(
        self,
        scanner: PageScanner,
        unchanged_limit: int = None,
        page_delay: float = None,
        max_page_failures: int = None,
        sleep=asyncio.sleep,
        db: Database = database,
    ):
        self.scanner = scanner
        self.unchanged_limit = (
            unchanged_limit if unchanged_limit is not None else settings.UNCHANGED_LIMIT
        )
        self.page_delay = page_delay if page_delay is not None else settings.PAGE_DELAY
        self.max_page_failures = (
            max_page_failures
            if max_page_failures is not None
            else settings.PAGE_FAILURE_RETRIES
        )
        self.sleep = sleep
        self.db = db
        self.is_running = False
        self._run_lock = asyncio.Lock()

    async def run(self) -> Optional[ScanSummary]:
        if self._run_lock.locked():
            logger.log("SCAN", "A scan is already in progress. Skipping.")
            return None

        async with self._run_lock:
            return await self._run_scan()

    async def _run_scan(self) -> ScanSummary:
        cursor = ScanCursor(page=1, consecutive_unchanged=0)
        summary = ScanSummary(start_time=time.time())
        consecutive_failures = 0

        while True:
            result = await self.scanner.scan(
                cursor.page, cursor, self.unchanged_limit
            )
            summary.pages_scanned += 1
            summary.total_processed += result.processed
            cursor = ScanCursor(
                page=cursor.page,
                consecutive_unchanged=result.cursor.consecutive_unchanged,
            )

            if result.stop:
                summary.stop_reason = "stop_signal"
                logger.log("SCAN", "Stopping scan based on stop signal.")
                break

            if result.failed:
                consecutive_failures += 1
                summary.page_failures += 1
                if consecutive_failures >= self.max_page_failures:
                    summary.stop_reason = "page_failures"
                    logger.error(
                        f"Page {cursor.page} failed {consecutive_failures} times in a row. Stopping scan."
                    )
                    break

                logger.warning(
                    f"Retrying page {cursor.page} ({consecutive_failures}/{self.max_page_failures} failures)"
                )
                await self.sleep(self.page_delay)
                continue

            consecutive_failures = 0

            if result.processed == 0 and cursor.consecutive_unchanged == 0:
                summary.stop_reason = "no_progress"
                logger.log("SCAN", f"Page {cursor.page} produced nothing actionable. Stopping.")
                break

            cursor = ScanCursor(
                page=cursor.page + 1,
                consecutive_unchanged=cursor.consecutive_unchanged,
            )
            await self.sleep(self.page_delay)

        summary.end_time = time.time()
        logger.log(
            "SCAN",
            f"Scraping completed: {summary.pages_scanned} pages, {summary.total_processed} updated, {summary.page_failures} page failures in {summary.duration:.1f}s",
        )
        return summary

    async def run_locked(self) -> Optional[ScanSummary]:
        lock = DistributedLock(LOCK_KEY, db=self.db)
        if not await lock.acquire(wait_timeout=None):
            logger.log("SCAN", "Another instance is scanning. Skipping.")
            return None

        lock_task = asyncio.create_task(self._maintain_lock(lock))
        try:
            return await self.run()
        finally:
            lock_task.cancel()
            try:
                await lock_task
            except asyncio.CancelledError:
                pass
            await lock.release()

    async def run_forever(self, interval: int = None, use_lock: bool = True):
        interval_seconds = interval if interval is not None else settings.SCAN_INTERVAL
        self.is_running = True

        while self.is_running:
            try:
                logger.log("SCAN", "Starting periodic scan...")
                if use_lock:
                    await self.run_locked()
                else:
                    await self.run()
            except asyncio.CancelledError:
                self.is_running = False
                raise
            except Exception as e:
                logger.error(f"Error in scan loop: {e}")

            if self.is_running:
                await self.sleep(interval_seconds)

    async def _maintain_lock(self, lock: DistributedLock):
        while True:
            await asyncio.sleep(lock.timeout / 2)
            if not await lock.acquire():
                logger.warning("Failed to renew scan lock")
                return
