import asyncio
from typing import Dict, Optional
from urllib.parse import urljoin

import aiohttp

from anitrack.core.logger import logger
from anitrack.core.models import settings


class FetchFailed(Exception):
    def __init__(self, url: str, status: int, reason: Optional[str] = None):
        self.url = url
        self.status = status
        self.reason = reason or ""
        super().__init__(f"Failed to fetch {url}: {status} {self.reason}".rstrip())


class Fetcher:
    """
    GET requests against the source site with a fixed browser identity.

    Rate-limited responses (429) wait RATELIMIT_RETRY_DELAY before retrying,
    network errors wait NETWORK_RETRY_DELAY. Both draw from the same retry
    budget. Any other non-2xx status raises FetchFailed without retrying.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str = None,
        user_agent: str = None,
        ratelimit_delay: float = None,
        network_delay: float = None,
        sleep=asyncio.sleep,
    ):
        self.session = session
        self.base_url = base_url or settings.BASE_URL
        self.user_agent = user_agent or settings.USER_AGENT
        self.ratelimit_delay = (
            ratelimit_delay
            if ratelimit_delay is not None
            else settings.RATELIMIT_RETRY_DELAY
        )
        self.network_delay = (
            network_delay if network_delay is not None else settings.NETWORK_RETRY_DELAY
        )
        self.sleep = sleep

    def resolve(self, url: str) -> str:
        if url.startswith("/"):
            return urljoin(self.base_url + "/", url)
        return url

    async def fetch(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        retries: int = None,
    ) -> str:
        target_url = self.resolve(url)
        request_headers = {"User-Agent": self.user_agent, **(headers or {})}
        retries_left = retries if retries is not None else settings.FETCH_RETRIES

        while True:
            try:
                async with self.session.get(
                    target_url, headers=request_headers
                ) as response:
                    rate_limited = response.status == 429 and retries_left > 0
                    if not rate_limited:
                        if not 200 <= response.status < 300:
                            raise FetchFailed(
                                target_url, response.status, response.reason
                            )

                        return await response.text()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if retries_left <= 0:
                    raise

                logger.warning(
                    f"Error fetching {target_url}: {e}. Retrying in {self.network_delay}s... ({retries_left} retries left)"
                )
                retries_left -= 1
                await self.sleep(self.network_delay)
                continue

            logger.warning(
                f"Rate limited on {target_url}. Retrying in {self.ratelimit_delay}s... ({retries_left} retries left)"
            )
            retries_left -= 1
            await self.sleep(self.ratelimit_delay)
