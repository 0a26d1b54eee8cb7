import os
import traceback

from databases import Database

from anitrack.core.logger import logger
from anitrack.core.models import database, settings

DATABASE_VERSION = "1.0"


async def setup_database(db: Database = database):
    try:
        if settings.DATABASE_TYPE == "sqlite" and db is database:
            directory = os.path.dirname(settings.DATABASE_PATH)
            if directory:
                os.makedirs(directory, exist_ok=True)

            if not os.path.exists(settings.DATABASE_PATH):
                open(settings.DATABASE_PATH, "a").close()

        if not db.is_connected:
            await db.connect()

        await db.execute(
            """
                CREATE TABLE IF NOT EXISTS db_version (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    version TEXT
                )
            """
        )

        current_version = await db.fetch_val(
            """
                SELECT version FROM db_version WHERE id = 1
            """
        )

        if current_version != DATABASE_VERSION:
            logger.log(
                "DATABASE",
                f"Database: Migration from {current_version} to {DATABASE_VERSION} version",
            )

            await db.execute(
                """
                    INSERT INTO db_version VALUES (1, :version)
                    ON CONFLICT (id) DO UPDATE SET version = :version
                """,
                {"version": DATABASE_VERSION},
            )

        await db.execute(
            """
                CREATE TABLE IF NOT EXISTS animes (
                    url TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT,
                    image_url TEXT,
                    sub_count INTEGER DEFAULT 0,
                    dub_count INTEGER DEFAULT 0,
                    sources TEXT,
                    last_updated TEXT NOT NULL
                )
            """
        )

        await db.execute(
            """
                CREATE TABLE IF NOT EXISTS notification_queue (
                    id TEXT PRIMARY KEY,
                    anime_url TEXT NOT NULL,
                    title TEXT,
                    type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    created_at REAL
                )
            """
        )

        await db.execute(
            """
                CREATE INDEX IF NOT EXISTS idx_notification_queue_status
                ON notification_queue (status, created_at)
            """
        )

        await db.execute(
            """
                CREATE TABLE IF NOT EXISTS scan_locks (
                    lock_key TEXT PRIMARY KEY,
                    instance_id TEXT,
                    timestamp INTEGER,
                    expires_at INTEGER
                )
            """
        )

        if settings.DATABASE_TYPE == "sqlite":
            await db.execute("PRAGMA busy_timeout=30000")  # 30 seconds timeout
            await db.execute("PRAGMA journal_mode=WAL")
    except Exception as e:
        logger.error(f"Error setting up the database: {e}")
        logger.exception(traceback.format_exc())
        raise


async def teardown_database(db: Database = database):
    try:
        await db.disconnect()
    except Exception as e:
        logger.error(f"Error tearing down the database: {e}")
        logger.exception(traceback.format_exc())
