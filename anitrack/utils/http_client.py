import asyncio
from typing import Optional

import aiohttp

from anitrack.core.models import settings

ACCEPT_LANGUAGE = "uk-UA,uk;q=0.9,en;q=0.6"


def create_session() -> aiohttp.ClientSession:
    """
    Session tuned for crawling one site one request at a time.

    A small keep-alive pool to the single host, the browser identity as
    default headers, and a cookie jar so the login hash embedded in detail
    pages stays valid for the playlist requests that follow.
    """
    connector = aiohttp.TCPConnector(
        limit=settings.HTTP_CLIENT_LIMIT_PER_HOST,
        limit_per_host=settings.HTTP_CLIENT_LIMIT_PER_HOST,
        keepalive_timeout=settings.HTTP_CLIENT_KEEPALIVE_TIMEOUT,
        enable_cleanup_closed=True,
    )
    timeout = aiohttp.ClientTimeout(
        total=settings.HTTP_CLIENT_TIMEOUT_TOTAL,
        connect=settings.HTTP_CLIENT_TIMEOUT_CONNECT,
    )
    return aiohttp.ClientSession(
        connector=connector,
        timeout=timeout,
        headers={
            "User-Agent": settings.USER_AGENT,
            "Accept-Language": ACCEPT_LANGUAGE,
        },
        cookie_jar=aiohttp.CookieJar(),
    )


class HttpClientManager:
    def __init__(self):
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()

    async def get_session(self) -> aiohttp.ClientSession:
        async with self._lock:
            if self._session is None or self._session.closed:
                self._session = create_session()
            return self._session

    async def close(self) -> None:
        async with self._lock:
            if self._session and not self._session.closed:
                await self._session.close()
            self._session = None


http_client_manager = HttpClientManager()
