import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

import orjson
from databases import Database

from anitrack.core.logger import logger
from anitrack.core.models import database
from anitrack.scrapers.changes import classify_increase
from anitrack.scrapers.models import AnimeRecord, ChangeKind, PlayerSource


class BaseRecordStore(ABC):
    @abstractmethod
    async def get_by_url(self, url: str) -> Optional[AnimeRecord]:
        pass

    @abstractmethod
    async def upsert(self, record: AnimeRecord) -> Optional[ChangeKind]:
        pass


def _row_to_record(row) -> AnimeRecord:
    sources = orjson.loads(row["sources"]) if row["sources"] else []
    return AnimeRecord(
        url=row["url"],
        title=row["title"],
        description=row["description"],
        image_url=row["image_url"],
        sub_count=row["sub_count"] or 0,
        dub_count=row["dub_count"] or 0,
        sources=[PlayerSource(**source) for source in sources],
        last_updated=datetime.fromisoformat(row["last_updated"]),
    )


class AnimeStore(BaseRecordStore):
    """
    Anime records keyed by detail page URL, plus the notification queue.

    upsert() enqueues a pending notification whenever the stored sub or dub
    episode count grows. Records seen for the first time are stored without
    a notification.
    """

    def __init__(self, db: Database = database):
        self.db = db

    async def get_by_url(self, url: str) -> Optional[AnimeRecord]:
        row = await self.db.fetch_one(
            "SELECT * FROM animes WHERE url = :url", {"url": url}
        )
        if row is None:
            return None
        return _row_to_record(row)

    async def get_all(self) -> List[AnimeRecord]:
        rows = await self.db.fetch_all("SELECT * FROM animes")
        return [_row_to_record(row) for row in rows]

    async def get_latest(self) -> Optional[AnimeRecord]:
        row = await self.db.fetch_one(
            "SELECT * FROM animes ORDER BY last_updated DESC LIMIT 1"
        )
        if row is None:
            return None
        return _row_to_record(row)

    async def count(self) -> int:
        return int(await self.db.fetch_val("SELECT COUNT(*) FROM animes") or 0)

    async def upsert(self, record: AnimeRecord) -> Optional[ChangeKind]:
        async with self.db.transaction():
            existing = await self.get_by_url(record.url)

            await self.db.execute(
                """
                INSERT INTO animes (url, title, description, image_url, sub_count, dub_count, sources, last_updated)
                VALUES (:url, :title, :description, :image_url, :sub_count, :dub_count, :sources, :last_updated)
                ON CONFLICT (url) DO UPDATE SET
                    title = excluded.title,
                    description = excluded.description,
                    image_url = excluded.image_url,
                    sub_count = excluded.sub_count,
                    dub_count = excluded.dub_count,
                    sources = excluded.sources,
                    last_updated = excluded.last_updated
                """,
                {
                    "url": record.url,
                    "title": record.title,
                    "description": record.description,
                    "image_url": record.image_url,
                    "sub_count": record.sub_count,
                    "dub_count": record.dub_count,
                    "sources": orjson.dumps(
                        [source.model_dump() for source in record.sources]
                    ).decode(),
                    "last_updated": record.last_updated.isoformat(),
                },
            )

            # The record and its notification commit together
            kind = classify_increase(existing, record)
            if kind is not None:
                await self.db.execute(
                    """
                    INSERT INTO notification_queue (id, anime_url, title, type, status, created_at)
                    VALUES (:id, :anime_url, :title, :type, 'pending', :created_at)
                    """,
                    {
                        "id": str(uuid.uuid4()),
                        "anime_url": record.url,
                        "title": record.title,
                        "type": kind,
                        "created_at": time.time(),
                    },
                )

        if kind is not None:
            logger.log("DATABASE", f"Queued '{kind}' notification for {record.title}")

        return kind

    async def get_pending_notifications(self) -> List[dict]:
        rows = await self.db.fetch_all(
            """
            SELECT id, anime_url, title, type, created_at
            FROM notification_queue
            WHERE status = 'pending'
            ORDER BY created_at
            """
        )
        return [
            {
                "id": row["id"],
                "anime_url": row["anime_url"],
                "title": row["title"],
                "type": row["type"],
                "created_at": row["created_at"],
            }
            for row in rows
        ]

    async def mark_notification_processed(self, notification_id: str):
        await self.db.execute(
            "UPDATE notification_queue SET status = 'processed' WHERE id = :id",
            {"id": notification_id},
        )
