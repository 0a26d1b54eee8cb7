import asyncio
from typing import List, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from anitrack.core.logger import logger
from anitrack.core.models import settings
from anitrack.scrapers.changes import has_changed
from anitrack.scrapers.extractor import DetailExtractor
from anitrack.scrapers.fetcher import FetchFailed, Fetcher
from anitrack.scrapers.models import PageScanResult, ScanCursor, Skipped
from anitrack.services.records import BaseRecordStore

ITEM_SELECTOR = ".story"
LINK_SELECTOR = "h2 a, .story_c a"


def parse_listing(html: str, base_url: str) -> Tuple[int, List[Tuple[str, str]]]:
    """Return the number of listing items and the (url, title) pairs usable among them."""
    soup = BeautifulSoup(html, "html.parser")
    items = soup.select(ITEM_SELECTOR)

    entries = []
    for item in items:
        link = item.select_one(LINK_SELECTOR)
        if link is None:
            continue

        href = link.get("href")
        title = link.get_text().strip()
        if href and title:
            entries.append((urljoin(base_url + "/", href), title))

    return len(items), entries


class PageScanner:
    def __init__(
        self,
        fetcher: Fetcher,
        extractor: DetailExtractor,
        store: BaseRecordStore,
        item_delay: float = None,
        sleep=asyncio.sleep,
    ):
        self.fetcher = fetcher
        self.extractor = extractor
        self.store = store
        self.item_delay = item_delay if item_delay is not None else settings.ITEM_DELAY
        self.sleep = sleep

    def page_url(self, page: int) -> str:
        return f"{self.fetcher.base_url}/anime/page/{page}/"

    async def scan(self, page: int, cursor: ScanCursor, limit: int) -> PageScanResult:
        logger.log("SCAN", f"Scanning page {page}...")

        try:
            html = await self.fetcher.fetch(self.page_url(page))
            item_count, entries = parse_listing(html, self.fetcher.base_url)

            if item_count == 0:
                logger.log("SCAN", f"No items found on page {page}")
                return PageScanResult(processed=0, cursor=cursor, stop=True)

            processed = 0
            unchanged = cursor.consecutive_unchanged

            for index, (url, title) in enumerate(entries):
                if index > 0:
                    await self.sleep(self.item_delay)

                result = await self.extractor.extract(url, title)
                if isinstance(result, Skipped):
                    logger.log("SCAN", f"Skipped {title} ({url}): {result.reason}")
                    continue

                record = result.record
                existing = await self.store.get_by_url(record.url)

                if has_changed(existing, record):
                    logger.log("SCAN", f"Update detected for {title}. Upserting...")
                    await self.store.upsert(record)
                    processed += 1
                    unchanged = 0
                else:
                    logger.debug(f"No changes for {title}.")
                    unchanged += 1

                if unchanged >= limit:
                    logger.log(
                        "SCAN", f"Reached limit of {limit} unchanged items. Stopping."
                    )
                    return PageScanResult(
                        processed=processed,
                        cursor=ScanCursor(page=page, consecutive_unchanged=unchanged),
                        stop=True,
                    )

            return PageScanResult(
                processed=processed,
                cursor=ScanCursor(page=page, consecutive_unchanged=unchanged),
                stop=False,
            )
        except FetchFailed as e:
            if e.status == 404:
                logger.log("SCAN", f"Page {page} not found.")
                return PageScanResult(processed=0, cursor=cursor, stop=True)

            logger.error(f"Error scanning page {page}: {e}")
            return PageScanResult(processed=0, cursor=cursor, stop=False, failed=True)
        except Exception as e:
            logger.error(f"Error scanning page {page}: {e}")
            return PageScanResult(processed=0, cursor=cursor, stop=False, failed=True)
