import asyncio

from anitrack.core.models import settings
from anitrack.utils.http_client import HttpClientManager


def test_session_carries_browser_identity_and_small_pool():
    async def scenario():
        manager = HttpClientManager()
        session = await manager.get_session()
        again = await manager.get_session()
        details = (
            session is again,
            session.headers.get("User-Agent"),
            session.connector.limit_per_host,
            session.timeout.total,
            session.timeout.connect,
        )
        await manager.close()
        return details, session.closed

    (same, user_agent, per_host, total, connect), closed = asyncio.run(scenario())

    assert same
    assert user_agent == settings.USER_AGENT
    assert per_host == settings.HTTP_CLIENT_LIMIT_PER_HOST
    assert total == settings.HTTP_CLIENT_TIMEOUT_TOTAL
    assert connect == settings.HTTP_CLIENT_TIMEOUT_CONNECT
    assert closed


def test_closed_session_is_replaced():
    async def scenario():
        manager = HttpClientManager()
        first = await manager.get_session()
        await manager.close()
        second = await manager.get_session()
        await manager.close()
        return first is second

    assert not asyncio.run(scenario())
