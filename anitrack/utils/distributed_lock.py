import asyncio
import time
import uuid
from typing import Optional

from databases import Database

from anitrack.core.logger import logger
from anitrack.core.models import database, settings


class DistributedLock:
    def __init__(
        self,
        lock_key: str,
        timeout: int = None,
        retry_interval: float = 0.5,
        db: Database = database,
    ):
        """
        Database-backed lock preventing overlapping scans across processes.

        Args:
            lock_key: Unique key to identify the lock
            timeout: Lock lifetime in seconds (None = uses SCAN_LOCK_TTL)
            retry_interval: Interval between acquisition attempts in seconds
            db: Database holding the scan_locks table
        """
        self.lock_key = lock_key
        self.timeout = timeout if timeout else settings.SCAN_LOCK_TTL
        self.retry_interval = retry_interval
        self.instance_id = str(uuid.uuid4())
        self.acquired = False
        self.db = db

    async def acquire(self, wait_timeout: Optional[int] = None) -> bool:
        """
        Attempts to acquire (or renew) the lock.

        Args:
            wait_timeout: Maximum wait time in seconds (None = no waiting)

        Returns:
            True if lock was acquired, False otherwise
        """
        start_time = time.time()

        while True:
            try:
                await self._cleanup_expired_locks()

                expires_at = int(time.time() + self.timeout)
                await self.db.execute(
                    """
                    INSERT INTO scan_locks (lock_key, instance_id, timestamp, expires_at)
                    VALUES (:lock_key, :instance_id, :timestamp, :expires_at)
                    ON CONFLICT (lock_key) DO UPDATE SET expires_at = :expires_at
                    WHERE scan_locks.instance_id = :instance_id
                    """,
                    {
                        "lock_key": self.lock_key,
                        "instance_id": self.instance_id,
                        "timestamp": int(time.time()),
                        "expires_at": expires_at,
                    },
                )

                row = await self.db.fetch_one(
                    "SELECT instance_id FROM scan_locks WHERE lock_key = :lock_key",
                    {"lock_key": self.lock_key},
                )
                if row and row["instance_id"] == self.instance_id:
                    if not self.acquired:
                        logger.log(
                            "LOCK",
                            f"🔒 Lock acquired for {self.lock_key} by {self.instance_id[:8]}",
                        )
                    self.acquired = True
                    return True

                if wait_timeout is None:
                    return False

                if wait_timeout > 0 and (time.time() - start_time) >= wait_timeout:
                    logger.log(
                        "LOCK", f"⏰ Lock acquisition timeout for {self.lock_key}"
                    )
                    return False

                await asyncio.sleep(self.retry_interval)

            except Exception as e:
                logger.log("LOCK", f"❌ Error acquiring lock for {self.lock_key}: {e}")
                return False

    async def release(self):
        if not self.acquired:
            return

        try:
            await self.db.execute(
                "DELETE FROM scan_locks WHERE lock_key = :lock_key AND instance_id = :instance_id",
                {"lock_key": self.lock_key, "instance_id": self.instance_id},
            )
            self.acquired = False
            logger.log(
                "LOCK",
                f"🔓 Lock released for {self.lock_key} by {self.instance_id[:8]}",
            )
        except Exception as e:
            logger.log("LOCK", f"❌ Error releasing lock for {self.lock_key}: {e}")

    async def _cleanup_expired_locks(self):
        try:
            current_time = int(time.time())
            await self.db.execute(
                "DELETE FROM scan_locks WHERE expires_at < :current_time",
                {"current_time": current_time},
            )
        except Exception as e:
            logger.log("LOCK", f"❌ Error cleaning up expired locks: {e}")

    async def __aenter__(self):
        success = await self.acquire()
        if not success:
            raise RuntimeError(f"Failed to acquire lock for {self.lock_key}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.release()
