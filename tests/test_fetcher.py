import asyncio

import aiohttp
import pytest

from anitrack.scrapers.fetcher import FetchFailed, Fetcher
from fakes import BASE_URL, FakeResponse, FakeSession, RecordingSleep

PAGE_URL = f"{BASE_URL}/anime/page/1/"


def _fetcher(session):
    sleep = RecordingSleep()
    return Fetcher(session, base_url=BASE_URL, user_agent="TestAgent/1.0", sleep=sleep), sleep


def test_rate_limited_twice_then_success():
    session = FakeSession().add(
        PAGE_URL,
        FakeResponse(429, reason="Too Many Requests"),
        FakeResponse(429, reason="Too Many Requests"),
        FakeResponse(200, "<html>ok</html>"),
    )
    fetcher, sleep = _fetcher(session)

    body = asyncio.run(fetcher.fetch(PAGE_URL, retries=3))

    assert body == "<html>ok</html>"
    assert sleep.delays == [10, 10]
    assert session.urls() == [PAGE_URL] * 3


def test_server_error_fails_immediately():
    session = FakeSession().add(PAGE_URL, FakeResponse(500, reason="Internal Server Error"))
    fetcher, sleep = _fetcher(session)

    with pytest.raises(FetchFailed) as excinfo:
        asyncio.run(fetcher.fetch(PAGE_URL, retries=3))

    assert excinfo.value.status == 500
    assert excinfo.value.reason == "Internal Server Error"
    assert sleep.delays == []
    assert len(session.calls) == 1


def test_not_found_is_not_retried():
    session = FakeSession().add(PAGE_URL, FakeResponse(404, reason="Not Found"))
    fetcher, sleep = _fetcher(session)

    with pytest.raises(FetchFailed) as excinfo:
        asyncio.run(fetcher.fetch(PAGE_URL))

    assert excinfo.value.status == 404
    assert sleep.delays == []


def test_network_error_retries_with_short_backoff():
    session = FakeSession().add(
        PAGE_URL,
        aiohttp.ClientConnectionError("connection reset"),
        asyncio.TimeoutError(),
        FakeResponse(200, "recovered"),
    )
    fetcher, sleep = _fetcher(session)

    assert asyncio.run(fetcher.fetch(PAGE_URL, retries=3)) == "recovered"
    assert sleep.delays == [3, 3]


def test_network_error_propagates_when_retries_exhausted():
    session = FakeSession().add(PAGE_URL, aiohttp.ClientConnectionError("down"))
    fetcher, sleep = _fetcher(session)

    with pytest.raises(aiohttp.ClientConnectionError):
        asyncio.run(fetcher.fetch(PAGE_URL, retries=2))

    assert sleep.delays == [3, 3]
    assert len(session.calls) == 3


def test_rate_limit_on_final_attempt_surfaces_as_fetch_failed():
    session = FakeSession().add(PAGE_URL, FakeResponse(429, reason="Too Many Requests"))
    fetcher, sleep = _fetcher(session)

    with pytest.raises(FetchFailed) as excinfo:
        asyncio.run(fetcher.fetch(PAGE_URL, retries=1))

    assert excinfo.value.status == 429
    assert sleep.delays == [10]


def test_mixed_failures_share_one_budget():
    session = FakeSession().add(
        PAGE_URL,
        FakeResponse(429),
        aiohttp.ClientConnectionError("flaky"),
        FakeResponse(429),
    )
    fetcher, sleep = _fetcher(session)

    with pytest.raises(FetchFailed):
        asyncio.run(fetcher.fetch(PAGE_URL, retries=2))

    assert sleep.delays == [10, 3]


def test_relative_url_and_headers():
    session = FakeSession().add(f"{BASE_URL}/anime/42-show.html", "detail")
    fetcher, _ = _fetcher(session)

    body = asyncio.run(
        fetcher.fetch("/anime/42-show.html", headers={"Referer": "https://x.test/"})
    )

    assert body == "detail"
    url, headers = session.calls[0]
    assert url == f"{BASE_URL}/anime/42-show.html"
    assert headers["User-Agent"] == "TestAgent/1.0"
    assert headers["Referer"] == "https://x.test/"


def test_resolve_handles_protocol_relative_urls():
    fetcher, _ = _fetcher(FakeSession())

    assert fetcher.resolve("/anime/1.html") == f"{BASE_URL}/anime/1.html"
    assert fetcher.resolve("//cdn.anitube.test/a.jpg") == "https://cdn.anitube.test/a.jpg"
    assert fetcher.resolve("https://other.test/x") == "https://other.test/x"
