"""High-level exports for the grabber workflows."""

from .extract_utils import Asset, AssetKind, extract_css_assets, extract_html_assets
from .grabber_config import GrabberConfig, build_config
from .ledger import ProcessedUrlLedger
from .sourcemap_utils import SourceMapDocument, SourceMapError, SourceMapReconstructor
from .url_utils import resolve_url, url_to_file_path
from .web_fetch import FetchConfig, FetchOutcome, URLFetcher

__all__ = [
    "Asset",
    "AssetKind",
    "FetchConfig",
    "FetchOutcome",
    "GrabberConfig",
    "ProcessedUrlLedger",
    "SourceMapDocument",
    "SourceMapError",
    "SourceMapReconstructor",
    "URLFetcher",
    "build_config",
    "extract_css_assets",
    "extract_html_assets",
    "resolve_url",
    "url_to_file_path",
]
