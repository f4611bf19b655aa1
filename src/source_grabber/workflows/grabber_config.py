"""Grabber defaults (headers, knobs, output layout) and the resolved run config.

Centralizes static defaults so the pipeline modules have no embedded magic
strings. Callers build a :class:`GrabberConfig` once per run with
:func:`build_config` and pass it down explicitly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from .url_utils import date_folder_name, domain_for_url

# Headers
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)

# Knob defaults
DEFAULT_TIMEOUT_MS = 30000
DEFAULT_RETRIES = 3
DEFAULT_CONCURRENCY = 5
DEFAULT_BACKOFF_INITIAL = 0.5
DEFAULT_BACKOFF_MAX = 4.0

# Environment knobs
ENV_TIMEOUT_MS = "SOURCE_GRABBER_TIMEOUT_MS"
ENV_RETRIES = "SOURCE_GRABBER_RETRIES"
ENV_CONCURRENCY = "SOURCE_GRABBER_CONCURRENCY"
ENV_BACKOFF_INITIAL = "SOURCE_GRABBER_BACKOFF_INITIAL"
ENV_USER_AGENT = "SOURCE_GRABBER_USER_AGENT"

# Output layout
OUTPUT_DIRNAME = "output"
DIST_DIRNAME = "dist"
SRC_DIRNAME = "src"
LEDGER_FILENAME = "downloaded_urls.json"
ROOT_INDEX_FILENAME = "index.html"
SOURCE_MAP_SUFFIX = ".map"


def _env_int(name: str, default: int) -> int:
    try:
        raw = os.getenv(name, "")
        return int(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        raw = os.getenv(name, "")
        return float(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def env_backoff_initial() -> float:
    return max(0.0, _env_float(ENV_BACKOFF_INITIAL, DEFAULT_BACKOFF_INITIAL))


def env_user_agent() -> str:
    return os.getenv(ENV_USER_AGENT, "").strip() or DEFAULT_USER_AGENT


@dataclass(frozen=True)
class GrabberConfig:
    """Resolved, immutable settings for one grab run."""

    target_url: str
    output_dir: Path
    force: bool
    timeout_ms: int
    retries: int
    concurrency: int
    debug: bool
    domain: str
    output_root_dir: Path
    dist_dir: Path
    src_dir: Path
    ledger_path: Path

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


def _sanity_check_knobs(timeout_ms: int, retries: int, concurrency: int) -> None:
    if timeout_ms <= 0:
        raise ValueError("timeout must be a positive number of milliseconds")
    if retries < 0:
        raise ValueError("retries must be zero or greater")
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")


def build_config(
    target_url: str,
    *,
    output_dir: Optional[Path] = None,
    force: bool = False,
    timeout_ms: Optional[int] = None,
    retries: Optional[int] = None,
    concurrency: Optional[int] = None,
    debug: bool = False,
    today: Optional[date] = None,
) -> GrabberConfig:
    """Resolve knobs (argument > env > default) and derive the output layout.

    Non-force runs land under ``output/<YYYY-MM-DD>/<domain>``; force runs
    write directly under ``output/<domain>``.
    """

    url = (target_url or "").strip()
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        raise ValueError(f"Target URL must be an absolute http(s) URL: {target_url!r}")

    timeout_value = timeout_ms if timeout_ms is not None else _env_int(ENV_TIMEOUT_MS, DEFAULT_TIMEOUT_MS)
    retries_value = retries if retries is not None else _env_int(ENV_RETRIES, DEFAULT_RETRIES)
    concurrency_value = (
        concurrency if concurrency is not None else _env_int(ENV_CONCURRENCY, DEFAULT_CONCURRENCY)
    )
    _sanity_check_knobs(timeout_value, retries_value, concurrency_value)

    root_dir = Path(output_dir or Path.cwd()).resolve()
    domain = domain_for_url(url)
    if force:
        output_root_dir = root_dir / OUTPUT_DIRNAME / domain
    else:
        output_root_dir = root_dir / OUTPUT_DIRNAME / date_folder_name(today) / domain

    return GrabberConfig(
        target_url=url,
        output_dir=root_dir,
        force=force,
        timeout_ms=timeout_value,
        retries=retries_value,
        concurrency=concurrency_value,
        debug=debug,
        domain=domain,
        output_root_dir=output_root_dir,
        dist_dir=output_root_dir / DIST_DIRNAME,
        src_dir=output_root_dir / SRC_DIRNAME,
        ledger_path=output_root_dir / LEDGER_FILENAME,
    )
