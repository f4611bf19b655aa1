"""Per-page grab pipeline: ledger, root page, assets, source maps."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Dict, Iterable, List, Optional, Set

from .core.keys import (
    K_COUNTS,
    K_DISCOVERED,
    K_DURATION_MS,
    K_FAILED,
    K_FAILED_URLS,
    K_FETCHED,
    K_FINISHED_AT,
    K_FORCE,
    K_LEDGER_PATH,
    K_LEDGER_SIZE,
    K_OUTPUT_ROOT,
    K_SKIPPED,
    K_SOURCE_MAPS,
    K_SOURCES_WRITTEN,
    K_STARTED_AT,
    K_STATE,
    K_TARGET_URL,
)
from .workflows.download_utils import persist_payload
from .workflows.extract_utils import Asset, AssetKind, extract_css_assets, extract_html_assets
from .workflows.grabber_config import (
    ROOT_INDEX_FILENAME,
    GrabberConfig,
    env_backoff_initial,
    env_user_agent,
)
from .workflows.ledger import ProcessedUrlLedger
from .workflows.sourcemap_utils import SourceMapReconstructor
from .workflows.url_utils import url_to_file_path
from .workflows.web_fetch import FetchConfig, FetchOutcome, URLFetcher, decode_body

logger = logging.getLogger(__name__)


class RootFetchError(RuntimeError):
    """The target page could not be downloaded; nothing else can be discovered."""


class GrabState(str, Enum):
    IDLE = "idle"
    LEDGER_LOADED = "ledger_loaded"
    ROOT_FETCHED = "root_fetched"
    ASSETS_EXTRACTED = "assets_extracted"
    ASSETS_FETCHED = "assets_fetched"
    RECONSTRUCTING = "reconstructing"
    LEDGER_PERSISTED = "ledger_persisted"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class FetchedAsset:
    asset: Asset
    outcome: FetchOutcome
    path: Path


@dataclass
class GrabReport:
    """Counters and outcome of one grab run."""

    target_url: str
    output_root: Path
    ledger_path: Path
    force: bool
    state: GrabState = GrabState.IDLE
    discovered: int = 0
    skipped: int = 0
    fetched: int = 0
    source_maps: int = 0
    sources_written: int = 0
    ledger_size: int = 0
    failed_urls: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        finished = self.finished_at or datetime.now(timezone.utc)
        return {
            K_TARGET_URL: self.target_url,
            K_OUTPUT_ROOT: str(self.output_root),
            K_LEDGER_PATH: str(self.ledger_path),
            K_FORCE: self.force,
            K_STATE: self.state.value,
            K_STARTED_AT: self.started_at.replace(microsecond=0).isoformat().replace("+00:00", "Z"),
            K_FINISHED_AT: finished.replace(microsecond=0).isoformat().replace("+00:00", "Z"),
            K_DURATION_MS: int(self.duration_seconds * 1000),
            K_COUNTS: {
                K_DISCOVERED: self.discovered,
                K_SKIPPED: self.skipped,
                K_FETCHED: self.fetched,
                K_FAILED: len(self.failed_urls),
                K_SOURCE_MAPS: self.source_maps,
                K_SOURCES_WRITTEN: self.sources_written,
                K_LEDGER_SIZE: self.ledger_size,
            },
            K_FAILED_URLS: list(self.failed_urls),
        }


def fetch_config_for(config: GrabberConfig) -> FetchConfig:
    return FetchConfig(
        concurrency=config.concurrency,
        timeout=config.timeout_seconds,
        retries=config.retries,
        backoff_initial=env_backoff_initial(),
        user_agent=env_user_agent(),
    )


class SourceGrabber:
    """Runs the single-page workflow against an injected fetcher and ledger.

    Duplicate URLs within a run are claimed through an in-flight set before
    any await, so two references to the same URL never fetch twice.
    """

    def __init__(
        self,
        config: GrabberConfig,
        fetcher: URLFetcher,
        ledger: ProcessedUrlLedger,
        reconstructor: Optional[SourceMapReconstructor] = None,
    ) -> None:
        self.config = config
        self.fetcher = fetcher
        self.ledger = ledger
        self.reconstructor = reconstructor or SourceMapReconstructor(fetcher, config.src_dir)
        self.report = GrabReport(
            target_url=config.target_url,
            output_root=config.output_root_dir,
            ledger_path=config.ledger_path,
            force=config.force,
        )
        self.history: List[GrabState] = [GrabState.IDLE]
        self._inflight: Set[str] = set()

    @property
    def state(self) -> GrabState:
        return self.history[-1]

    def _transition(self, state: GrabState) -> None:
        logger.debug("State %s -> %s", self.state.value, state.value)
        self.history.append(state)
        self.report.state = state

    async def run(self) -> GrabReport:
        start = time.perf_counter()
        try:
            self.ledger.load()
            self._transition(GrabState.LEDGER_LOADED)

            logger.info("Starting download from %s", self.config.target_url)
            html = await self._load_root()
            self._transition(GrabState.ROOT_FETCHED)

            assets = extract_html_assets(html, self.config.target_url)
            self.report.discovered += len(assets)
            self._log_discovery(assets)
            self._transition(GrabState.ASSETS_EXTRACTED)

            fetched = await self._fetch_batch(assets)
            self._transition(GrabState.ASSETS_FETCHED)

            expandable = [item for item in fetched if self._needs_expansion(item.asset.kind)]
            if expandable:
                self._transition(GrabState.RECONSTRUCTING)
                await self._gather_logged(
                    [self._expand_text_asset(item) for item in expandable],
                    [item.asset.absolute_url for item in expandable],
                    record_failures=False,
                )

            self.ledger.save()
            self.report.ledger_size = len(self.ledger)
            self._transition(GrabState.LEDGER_PERSISTED)
            self._transition(GrabState.DONE)
            return self.report
        finally:
            self.report.duration_seconds = time.perf_counter() - start
            self.report.finished_at = datetime.now(timezone.utc)

    @staticmethod
    def _needs_expansion(kind: AssetKind) -> bool:
        if kind is AssetKind.CSS or kind is AssetKind.JS:
            return True
        if kind in (AssetKind.IMAGE, AssetKind.FONT, AssetKind.OTHER):
            return False
        raise ValueError(f"Unhandled asset kind: {kind!r}")

    def _log_discovery(self, assets: List[Asset]) -> None:
        counts: Dict[AssetKind, int] = {kind: 0 for kind in AssetKind}
        for asset in assets:
            counts[asset.kind] += 1
        logger.debug(
            "Discovered %d assets (css=%d js=%d other=%d)",
            len(assets),
            counts[AssetKind.CSS],
            counts[AssetKind.JS],
            counts[AssetKind.OTHER] + counts[AssetKind.IMAGE] + counts[AssetKind.FONT],
        )

    async def _load_root(self) -> str:
        root_url = self.config.target_url
        index_path = self.config.dist_dir / ROOT_INDEX_FILENAME
        if not self.config.force and self.ledger.is_processed(root_url) and index_path.exists():
            try:
                html = decode_body(index_path.read_bytes())
            except OSError as exc:
                logger.warning("Cannot reuse mirrored root page %s: %s", index_path, exc)
            else:
                logger.info("Reusing mirrored root page %s", index_path)
                return html

        outcome = await self.fetcher.fetch(root_url)
        if not outcome.success or outcome.text is None:
            self._transition(GrabState.ABORTED)
            reason = outcome.error or "content is not text"
            raise RootFetchError(f"Unable to download original web page {root_url}: {reason}")

        payload = outcome.payload()
        if payload is not None and persist_payload(index_path, payload):
            self.ledger.mark_processed(root_url)
            self.report.fetched += 1
        return outcome.text

    def _claim(self, assets: Iterable[Asset]) -> List[Asset]:
        pending: List[Asset] = []
        for asset in assets:
            url = asset.absolute_url
            if self.ledger.is_processed(url) or url in self._inflight:
                logger.debug("Skip (already downloaded): %s", url)
                self.report.skipped += 1
                continue
            self._inflight.add(url)
            pending.append(asset)
        return pending

    async def _fetch_batch(self, assets: List[Asset]) -> List[FetchedAsset]:
        pending = self._claim(assets)
        logger.info("Found %d assets, need to download %d new assets", len(assets), len(pending))
        results = await self._gather_logged(
            [self._fetch_asset(asset) for asset in pending],
            [asset.absolute_url for asset in pending],
        )
        return [item for item in results if isinstance(item, FetchedAsset)]

    async def _fetch_asset(self, asset: Asset) -> Optional[FetchedAsset]:
        url = asset.absolute_url
        try:
            outcome = await self.fetcher.fetch(url)
            if not outcome.success:
                self.report.failed_urls.append(url)
                return None
            path = url_to_file_path(url, self.config.dist_dir)
            payload = outcome.payload()
            if payload is None or not persist_payload(path, payload):
                self.report.failed_urls.append(url)
                return None
            self.ledger.mark_processed(url)
            self.report.fetched += 1
            return FetchedAsset(asset=asset, outcome=outcome, path=path)
        finally:
            self._inflight.discard(url)

    async def _expand_text_asset(self, item: FetchedAsset) -> None:
        text = item.outcome.text
        if text is None:
            return
        url = item.asset.absolute_url
        jobs: List[Awaitable[Any]] = [self._reconstruct(item, text)]
        labels = [f"source map of {url}"]
        if item.asset.kind is AssetKind.CSS:
            jobs.append(self._fetch_css_references(text, url))
            labels.append(f"stylesheet references of {url}")
        await self._gather_logged(jobs, labels, record_failures=False)

    async def _reconstruct(self, item: FetchedAsset, text: str) -> None:
        result = await self.reconstructor.process(text, item.asset.absolute_url, item.path)
        if result.found:
            self.report.source_maps += 1
        self.report.sources_written += len(result.written)

    async def _fetch_css_references(self, css_text: str, css_url: str) -> None:
        # One hop only: assets found in a stylesheet are not scanned again.
        assets = extract_css_assets(css_text, css_url)
        if not assets:
            return
        logger.info("Found %d assets in CSS: %s", len(assets), css_url)
        self.report.discovered += len(assets)
        await self._fetch_batch(assets)

    async def _gather_logged(
        self,
        jobs: List[Awaitable[Any]],
        labels: List[str],
        *,
        record_failures: bool = True,
    ) -> List[Any]:
        results = await asyncio.gather(*jobs, return_exceptions=True)
        for label, result in zip(labels, results):
            if isinstance(result, Exception):
                logger.error("Error processing %s: %s", label, result)
                if record_failures and label not in self.report.failed_urls:
                    self.report.failed_urls.append(label)
            elif isinstance(result, BaseException):
                raise result
        return list(results)


async def grab_site(
    config: GrabberConfig,
    *,
    fetcher: Optional[URLFetcher] = None,
    ledger: Optional[ProcessedUrlLedger] = None,
) -> GrabReport:
    """Mirror ``config.target_url`` and reconstruct sources from its source maps."""

    for directory in (config.dist_dir, config.src_dir):
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise RuntimeError(f"Unable to create output dir {directory}: {exc}") from exc

    if ledger is None:
        ledger = ProcessedUrlLedger(config.ledger_path, force=config.force)
    if fetcher is None:
        fetcher = URLFetcher(fetch_config_for(config))
    async with fetcher as active_fetcher:
        grabber = SourceGrabber(config, active_fetcher, ledger)
        return await grabber.run()


def run_grabber(config: GrabberConfig) -> GrabReport:
    return asyncio.run(grab_site(config))
