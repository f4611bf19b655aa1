from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import aiohttp

from .grabber_config import (
    DEFAULT_BACKOFF_INITIAL,
    DEFAULT_BACKOFF_MAX,
    DEFAULT_CONCURRENCY,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT_MS,
    DEFAULT_USER_AGENT,
    SOURCE_MAP_SUFFIX,
)

logger = logging.getLogger(__name__)

Body = Union[str, Dict[str, Any], List[Any]]


@dataclass
class FetchConfig:
    """Configuration parameters for bounded, retrying asset downloads."""

    concurrency: int = DEFAULT_CONCURRENCY
    timeout: float = DEFAULT_TIMEOUT_MS / 1000.0
    retries: int = DEFAULT_RETRIES
    backoff_initial: float = DEFAULT_BACKOFF_INITIAL
    backoff_max: float = DEFAULT_BACKOFF_MAX
    user_agent: str = DEFAULT_USER_AGENT

    @property
    def max_attempts(self) -> int:
        return max(0, self.retries) + 1


@dataclass
class FetchOutcome:
    """Settled result of one URL's attempt sequence."""

    url: str
    success: bool
    body: Optional[Body] = None
    status: int = -1
    content_type: str = ""
    attempts: int = 0
    fetched_at: str = ""
    error: Optional[BaseException] = None
    raw_bytes: Optional[bytes] = field(default=None, repr=False, compare=False)

    @property
    def text(self) -> Optional[str]:
        return self.body if isinstance(self.body, str) else None

    def payload(self) -> Optional[bytes]:
        """Bytes to mirror on disk: the raw body, or the body re-encoded."""

        if self.raw_bytes is not None:
            return self.raw_bytes
        if isinstance(self.body, str):
            return self.body.encode("utf-8")
        if self.body is not None:
            return json.dumps(self.body, ensure_ascii=False, indent=2).encode("utf-8")
        return None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "url": self.url,
            "success": self.success,
            "status": self.status,
            "content_type": self.content_type,
            "attempts": self.attempts,
            "fetched_at": self.fetched_at,
            "bytes": len(self.raw_bytes) if self.raw_bytes is not None else 0,
        }
        if self.error is not None:
            payload["error"] = str(self.error) or type(self.error).__name__
        return payload


def decode_body(raw: bytes, charset: Optional[str] = None) -> str:
    try:
        return raw.decode(charset or "utf-8", "replace")
    except LookupError:
        return raw.decode("utf-8", "replace")


def interpret_body(url: str, raw: bytes, charset: Optional[str] = None) -> Body:
    """Decode a response body: JSON for ``.map`` URLs, text otherwise.

    A ``.map`` body that is not valid JSON is returned as text so the
    caller can report the decode failure itself.
    """

    text = decode_body(raw, charset)
    if url.endswith(SOURCE_MAP_SUFFIX):
        try:
            return json.loads(text.lstrip("\ufeff"))
        except json.JSONDecodeError:
            logger.debug("Body of %s is not valid JSON; keeping text", url)
    return text


class URLFetcher:
    """Async GET with one shared concurrency pool and per-URL retries.

    Use as an async context manager so a single ``aiohttp.ClientSession``
    (and connector) serves every request of the run.
    """

    def __init__(self, config: FetchConfig, session: Optional[aiohttp.ClientSession] = None) -> None:
        self.config = config
        self._session = session
        self._owns_session = session is None
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._in_flight = 0
        self.peak_in_flight = 0
        self.requests_started = 0

    async def __aenter__(self) -> "URLFetcher":
        if self._session is None:
            connector = aiohttp.TCPConnector(limit=self.config.concurrency)
            headers = {"User-Agent": self.config.user_agent}
            self._session = aiohttp.ClientSession(connector=connector, headers=headers)
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def _pool(self) -> asyncio.Semaphore:
        # Created lazily so it binds to the running loop.
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(max(1, self.config.concurrency))
        return self._semaphore

    async def fetch(self, url: str, *, probe: bool = False) -> FetchOutcome:
        """Fetch ``url`` inside the shared pool; never raises for network failures.

        ``probe`` marks speculative requests (such as the ``.map`` fallback)
        whose failures are expected and only logged at DEBUG.
        """

        async with self._pool():
            self._in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self._in_flight)
            try:
                return await self._fetch_with_retries(url, probe=probe)
            finally:
                self._in_flight -= 1

    async def fetch_many(self, urls: Iterable[str]) -> List[FetchOutcome]:
        urls = list(urls)
        logger.debug("Downloading %d URLs with concurrency=%d", len(urls), self.config.concurrency)
        return list(await asyncio.gather(*(self.fetch(url) for url in urls)))

    async def _fetch_with_retries(self, url: str, *, probe: bool = False) -> FetchOutcome:
        failure_level = logging.DEBUG if probe else logging.WARNING
        max_attempts = self.config.max_attempts
        delay = self.config.backoff_initial
        last_exc: Optional[BaseException] = None
        for attempt in range(1, max_attempts + 1):
            self.requests_started += 1
            logger.log(logging.DEBUG if probe else logging.INFO, "Downloading: %s", url)
            try:
                status, content_type, raw_bytes, charset = await self._fetch_once(self._session, url)
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                last_exc = exc
                remaining = max_attempts - attempt
                logger.log(
                    failure_level,
                    "Attempt %d failed for %s. %d attempts remaining. Error: %s",
                    attempt,
                    url,
                    remaining,
                    str(exc) or type(exc).__name__,
                )
                if remaining == 0:
                    break
                if delay > 0:
                    await asyncio.sleep(delay)
                delay = min(delay * 2, self.config.backoff_max)
                continue
            logger.debug("Download successful: %s", url)
            return FetchOutcome(
                url=url,
                success=True,
                body=interpret_body(url, raw_bytes, charset),
                status=status,
                content_type=content_type,
                attempts=attempt,
                fetched_at=datetime.now(timezone.utc).isoformat(),
                raw_bytes=raw_bytes,
            )
        logger.log(
            logging.DEBUG if probe else logging.ERROR,
            "All attempts to download %s failed: %s",
            url,
            (str(last_exc) or type(last_exc).__name__) if last_exc else "unknown error",
        )
        return FetchOutcome(
            url=url,
            success=False,
            attempts=max_attempts,
            fetched_at=datetime.now(timezone.utc).isoformat(),
            error=last_exc,
        )

    async def _fetch_once(
        self,
        session: Optional[aiohttp.ClientSession],
        url: str,
    ) -> Tuple[int, str, bytes, Optional[str]]:
        if session is None:
            raise RuntimeError("URLFetcher must be entered with 'async with' before fetching")
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)
        async with session.get(url, timeout=timeout) as resp:
            resp.raise_for_status()
            status = resp.status
            content_type = resp.headers.get("Content-Type", "").split(";")[0].strip()
            raw_bytes = await resp.read()
            charset = resp.charset
        return status, content_type, raw_bytes, charset
