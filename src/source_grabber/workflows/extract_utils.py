"""Asset discovery for HTML pages and stylesheet bodies."""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Set, Tuple
from urllib.parse import urlparse

from bs4 import BeautifulSoup  # type: ignore

from .url_utils import resolve_url

CSS_IMPORT_RE = re.compile(r"@import\s+[\"']([^\"']+)[\"']", re.IGNORECASE)
CSS_URL_RE = re.compile(r"url\(\s*['\"]?((?!data:)[^'\")\s]+)['\"]?\s*\)", re.IGNORECASE)

FONT_EXTENSIONS = {".woff", ".woff2", ".ttf", ".eot", ".otf"}
IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".ico"}


class AssetKind(str, Enum):
    CSS = "css"
    JS = "js"
    IMAGE = "image"
    FONT = "font"
    OTHER = "other"


@dataclass(frozen=True)
class Asset:
    """A referenced resource: the reference as written plus its absolute URL."""

    reference: str
    absolute_url: str
    kind: AssetKind


def _usable_reference(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    ref = value.strip()
    if not ref or ref.lower().startswith("data:"):
        return None
    return ref


def _is_stylesheet_link(tag) -> bool:
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    if any(token.lower() == "stylesheet" for token in rel):
        return True
    return (tag.get("as") or "").strip().lower() == "style"


def _dedupe(assets: Iterable[Asset]) -> List[Asset]:
    seen: Set[str] = set()
    unique: List[Asset] = []
    for asset in assets:
        if asset.absolute_url in seen:
            continue
        seen.add(asset.absolute_url)
        unique.append(asset)
    return unique


def extract_css_imports(css_text: str) -> List[str]:
    """Return quoted ``@import`` targets in document order."""

    return [match.group(1).strip() for match in CSS_IMPORT_RE.finditer(css_text or "")]


def classify_css_reference(reference: str) -> AssetKind:
    path = urlparse(reference).path or reference
    ext = posixpath.splitext(path)[1].lower()
    if ext in FONT_EXTENSIONS:
        return AssetKind.FONT
    if ext in IMAGE_EXTENSIONS:
        return AssetKind.IMAGE
    return AssetKind.OTHER


def extract_css_url_references(css_text: str) -> List[Tuple[str, AssetKind]]:
    """Return ``url(...)`` references (quoted or bare, never ``data:``) with their kind."""

    refs: List[Tuple[str, AssetKind]] = []
    for match in CSS_URL_RE.finditer(css_text or ""):
        ref = _usable_reference(match.group(1))
        if ref:
            refs.append((ref, classify_css_reference(ref)))
    return refs


def extract_css_assets(css_text: str, css_url: str) -> List[Asset]:
    """Assets referenced from a stylesheet body, resolved against the stylesheet URL."""

    return _dedupe(
        Asset(reference=ref, absolute_url=resolve_url(css_url, ref), kind=kind)
        for ref, kind in extract_css_url_references(css_text)
    )


def extract_html_assets(html: str, base_url: str) -> List[Asset]:
    """Collect stylesheet, script and media references from an HTML document.

    Order follows the kinds (stylesheets, scripts, media) and document
    order within each kind. Duplicates by absolute URL are dropped.
    """

    soup = BeautifulSoup(html or "", "lxml")
    css_refs: List[str] = []
    js_refs: List[str] = []
    media_refs: List[str] = []

    for tag in soup.find_all("link"):
        if not _is_stylesheet_link(tag):
            continue
        ref = _usable_reference(tag.get("href"))
        if ref:
            css_refs.append(ref)

    for tag in soup.find_all("script"):
        ref = _usable_reference(tag.get("src"))
        if ref:
            js_refs.append(ref)

    for tag in soup.find_all(["img", "source"]):
        ref = _usable_reference(tag.get("src"))
        if ref:
            media_refs.append(ref)

    for tag in soup.find_all("style"):
        css_text = tag.string if tag.string is not None else tag.get_text()
        for ref in extract_css_imports(css_text or ""):
            usable = _usable_reference(ref)
            if usable:
                css_refs.append(usable)

    assets: List[Asset] = []
    assets.extend(Asset(ref, resolve_url(base_url, ref), AssetKind.CSS) for ref in css_refs)
    assets.extend(Asset(ref, resolve_url(base_url, ref), AssetKind.JS) for ref in js_refs)
    assets.extend(Asset(ref, resolve_url(base_url, ref), AssetKind.OTHER) for ref in media_refs)
    return _dedupe(assets)
