import re
from datetime import datetime, timezone
from typing import List, Optional, Set, Tuple
from urllib.parse import urlencode

import orjson
from bs4 import BeautifulSoup
from pydantic import ValidationError

from anitrack.core.logger import log_extraction_error, logger
from anitrack.scrapers.fetcher import Fetcher
from anitrack.scrapers.models import (
    AnimeRecord,
    Extracted,
    ExtractionResult,
    PlayerSource,
    PlaylistPayload,
    Skipped,
)

LOGIN_HASH_PATTERN = re.compile(r"var\s+dle_login_hash\s*=\s*['\"]([^'\"]+)['\"]")
NEWS_ID_PATTERN = re.compile(r"var\s+dle_news_id\s*=\s*['\"]?(\d+)['\"]?")
EPISODE_NUM_PATTERN = re.compile(r"^(\d+)")
EPISODE_COUNT_PATTERN = re.compile(r"Серій:\s*(\d+)", re.IGNORECASE)

DUB_PREFIX = "0_0_"
SUB_PREFIX = "0_1_"

PLAYLIST_PATH = "/engine/ajax/playlists.php"


def select_text(soup: BeautifulSoup, selector: str) -> str:
    return "".join(node.get_text() for node in soup.select(selector)).strip()


def episode_number(text: str) -> str:
    match = EPISODE_NUM_PATTERN.match(text)
    return match.group(1) if match else text


def parse_playlist(fragment: str) -> Tuple[int, int, List[PlayerSource]]:
    """
    Count distinct sub/dub episode numbers in a playlist HTML fragment.

    Entries without a data-id or data-file are ignored. Every other entry is
    kept as a source, even when several entries share an episode number.
    """
    soup = BeautifulSoup(fragment, "html.parser")
    subs: Set[str] = set()
    dubs: Set[str] = set()
    sources: List[PlayerSource] = []

    for item in soup.select(".playlists-videos .playlists-items li"):
        source_id = item.get("data-id")
        media_file = item.get("data-file")
        if not (source_id and media_file):
            continue

        label = item.get_text().strip()
        number = episode_number(label)
        if source_id.startswith(DUB_PREFIX):
            dubs.add(number)
        elif source_id.startswith(SUB_PREFIX):
            subs.add(number)

        sources.append(
            PlayerSource(source_id=source_id, label=label, media_file=media_file)
        )

    return len(subs), len(dubs), sources


class DetailExtractor:
    def __init__(self, fetcher: Fetcher):
        self.fetcher = fetcher

    @property
    def base_url(self) -> str:
        return self.fetcher.base_url

    async def extract(self, url: str, title: str) -> ExtractionResult:
        try:
            logger.log("SCRAPER", f"Scraping details for: {title} ({url})")
            record = await self._extract(url, title)
            return Extracted(record)
        except Exception as e:
            log_extraction_error(title, url, e)
            return Skipped(f"{type(e).__name__}: {e}")

    async def _extract(self, url: str, title: str) -> AnimeRecord:
        html = await self.fetcher.fetch(url)
        soup = BeautifulSoup(html, "html.parser")

        description = select_text(soup, '.story_c_text, [itemprop="description"]')

        image_url = None
        image = soup.select_one(".story_post img")
        if image is not None:
            image_url = image.get("src")
            if image_url:
                image_url = self.fetcher.resolve(image_url)

        user_hash, news_id = self.extract_tokens(soup, html)

        sub_count = 0
        dub_count = 0
        sources: List[PlayerSource] = []
        if user_hash and news_id:
            sub_count, dub_count, sources = await self.fetch_playlist(
                news_id, user_hash, url
            )

        if sub_count == 0 and dub_count == 0:
            match = EPISODE_COUNT_PATTERN.search(select_text(soup, ".story_c_r, .meta"))
            if match:
                dub_count = int(match.group(1))

        return AnimeRecord(
            url=url,
            title=title,
            description=description or None,
            image_url=image_url or None,
            sub_count=sub_count,
            dub_count=dub_count,
            sources=sources,
            last_updated=datetime.now(timezone.utc),
        )

    @staticmethod
    def extract_tokens(
        soup: BeautifulSoup, html: str
    ) -> Tuple[Optional[str], Optional[str]]:
        hash_match = LOGIN_HASH_PATTERN.search(html)
        user_hash = hash_match.group(1) if hash_match else None

        news_id = None
        container = soup.select_one(".playlists-ajax")
        if container is not None:
            news_id = container.get("data-news_id")
        if not news_id:
            news_match = NEWS_ID_PATTERN.search(html)
            news_id = news_match.group(1) if news_match else None

        return user_hash, news_id

    async def fetch_playlist(
        self, news_id: str, user_hash: str, referer: str
    ) -> Tuple[int, int, List[PlayerSource]]:
        params = urlencode(
            {"news_id": news_id, "xfield": "playlist", "user_hash": user_hash}
        )
        try:
            body = await self.fetcher.fetch(
                f"{self.base_url}{PLAYLIST_PATH}?{params}",
                headers={
                    "X-Requested-With": "XMLHttpRequest",
                    "Referer": self.fetcher.resolve(referer),
                },
            )
            payload = PlaylistPayload.model_validate(orjson.loads(body))
        except (orjson.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Malformed playlist payload for {referer}: {e}")
            return 0, 0, []
        except Exception as e:
            logger.warning(f"Error fetching playlist for {referer}: {e}")
            return 0, 0, []

        if not (payload.success and payload.response):
            logger.debug(f"No playlist available for {referer}")
            return 0, 0, []

        return parse_playlist(payload.response)
