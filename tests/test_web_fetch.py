import asyncio

import aiohttp
import pytest

from source_grabber.workflows.web_fetch import FetchConfig, URLFetcher, decode_body, interpret_body


def test_fetch_many_respects_concurrency_limit(monkeypatch):
    state = {"active": 0, "peak": 0}

    async def fake_fetch_once(self, session, url):
        state["active"] += 1
        state["peak"] = max(state["peak"], state["active"])
        await asyncio.sleep(0.01)
        state["active"] -= 1
        return 200, "text/plain", b"ok", "utf-8"

    monkeypatch.setattr(URLFetcher, "_fetch_once", fake_fetch_once)
    fetcher = URLFetcher(FetchConfig(concurrency=2, retries=0, backoff_initial=0))

    outcomes = asyncio.run(fetcher.fetch_many([f"https://example.com/{i}.txt" for i in range(6)]))

    assert all(outcome.success for outcome in outcomes)
    assert state["peak"] <= 2
    assert fetcher.peak_in_flight == 2
    assert fetcher.requests_started == 6


def test_retry_exhaustion_attempts_retries_plus_one(monkeypatch):
    calls = []

    async def always_fail(self, session, url):
        calls.append(url)
        raise aiohttp.ClientConnectionError("connection refused")

    monkeypatch.setattr(URLFetcher, "_fetch_once", always_fail)
    fetcher = URLFetcher(FetchConfig(retries=2, backoff_initial=0))

    outcome = asyncio.run(fetcher.fetch("https://example.com/app.js"))

    assert len(calls) == 3
    assert outcome.success is False
    assert outcome.attempts == 3
    assert isinstance(outcome.error, aiohttp.ClientConnectionError)
    assert outcome.payload() is None


def test_retry_recovers_after_timeout(monkeypatch):
    calls = []

    async def flaky(self, session, url):
        calls.append(url)
        if len(calls) == 1:
            raise asyncio.TimeoutError()
        return 200, "text/css", b"body{}", None

    monkeypatch.setattr(URLFetcher, "_fetch_once", flaky)
    fetcher = URLFetcher(FetchConfig(retries=3, backoff_initial=0))

    outcome = asyncio.run(fetcher.fetch("https://example.com/style.css"))

    assert outcome.success is True
    assert outcome.attempts == 2
    assert outcome.text == "body{}"
    assert outcome.content_type == "text/css"


def test_binary_body_is_mirrored_byte_for_byte(monkeypatch):
    png = b"\x89PNG\r\n\x1a\n\x00\xff\xfe"

    async def fake_fetch_once(self, session, url):
        return 200, "image/png", png, None

    monkeypatch.setattr(URLFetcher, "_fetch_once", fake_fetch_once)
    fetcher = URLFetcher(FetchConfig(retries=0))

    outcome = asyncio.run(fetcher.fetch("https://example.com/logo.png"))

    assert outcome.payload() == png


def test_interpret_body_parses_map_urls_as_json():
    raw = b'\xef\xbb\xbf{"version": 3, "sources": []}'

    assert interpret_body("https://example.com/app.js.map", raw) == {"version": 3, "sources": []}
    assert interpret_body("https://example.com/app.js", b"var a;") == "var a;"
    assert interpret_body("https://example.com/broken.map", b"{oops") == "{oops"


def test_decode_body_unknown_charset_falls_back():
    assert decode_body(b"abc", "no-such-charset") == "abc"
    assert decode_body("café".encode("latin-1"), "latin-1") == "café"


def test_fetch_once_requires_session():
    fetcher = URLFetcher(FetchConfig())

    with pytest.raises(RuntimeError):
        asyncio.run(fetcher._fetch_once(None, "https://example.com/"))
