"""Source map discovery, decoding and expansion into the original source tree."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import posixpath
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import unquote

from .download_utils import persist_json, persist_payload
from .grabber_config import SOURCE_MAP_SUFFIX
from .url_utils import resolve_url
from .web_fetch import URLFetcher

logger = logging.getLogger(__name__)

JS_SOURCE_MAPPING_RE = re.compile(r"//# sourceMappingURL=([^\s'\"]+)")
CSS_SOURCE_MAPPING_RE = re.compile(r"/\*# sourceMappingURL=([^\s*]+)\s*\*/")
JSON_DATA_URI_RE = re.compile(r"^data:application/json(?:;[^,;]+=[^,;]+)*(;base64)?,", re.IGNORECASE)

WEBPACK_PREFIX = "webpack://"


class SourceMapError(ValueError):
    """Raised when a source map payload cannot be decoded or is malformed."""


@dataclass
class SourceMapDocument:
    """Parsed source map; ``sources`` and ``sources_content`` are paired by index."""

    sources: List[str]
    sources_content: List[Optional[str]]
    names: List[str] = field(default_factory=list)
    mappings: str = ""
    version: int = 3
    file: Optional[str] = None
    source_root: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_payload(cls, payload: Any) -> "SourceMapDocument":
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                raise SourceMapError(f"source map is not valid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise SourceMapError("source map must be a JSON object")
        sources = payload.get("sources") or []
        if not isinstance(sources, list):
            raise SourceMapError("source map 'sources' must be a list")
        contents = payload.get("sourcesContent") or []
        if not isinstance(contents, list):
            raise SourceMapError("source map 'sourcesContent' must be a list")
        names = payload.get("names") or []
        if not isinstance(names, list):
            raise SourceMapError("source map 'names' must be a list")
        for key in ("file", "sourceRoot", "mappings"):
            value = payload.get(key)
            if value is not None and not isinstance(value, str):
                raise SourceMapError(f"source map '{key}' must be a string")
        try:
            version = int(payload.get("version") or 3)
        except (TypeError, ValueError) as exc:
            raise SourceMapError(f"source map 'version' is not a number: {exc}") from exc
        return cls(
            sources=[str(item) if item is not None else "" for item in sources],
            sources_content=[item if isinstance(item, str) else None for item in contents],
            names=[str(item) for item in names],
            mappings=payload.get("mappings") or "",
            version=version,
            file=payload.get("file"),
            source_root=payload.get("sourceRoot"),
            raw=payload,
        )

    def embedded_sources(self) -> List[Tuple[str, str]]:
        """``(source, content)`` pairs whose content is embedded in the map."""

        pairs: List[Tuple[str, str]] = []
        for idx, source in enumerate(self.sources):
            content = self.sources_content[idx] if idx < len(self.sources_content) else None
            if content is None or not source:
                continue
            pairs.append((source, content))
        return pairs


@dataclass
class ReconstructionResult:
    asset_url: str
    map_url: Optional[str] = None
    inline: bool = False
    map_path: Optional[Path] = None
    written: List[Path] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.map_path is not None


def find_source_mapping_url(text: str) -> Optional[str]:
    """Return the ``sourceMappingURL`` annotation value; JS form first, then CSS."""

    match = JS_SOURCE_MAPPING_RE.search(text or "")
    if match:
        return match.group(1)
    match = CSS_SOURCE_MAPPING_RE.search(text or "")
    if match:
        return match.group(1)
    return None


def is_inline_source_map(value: str) -> bool:
    return bool(JSON_DATA_URI_RE.match(value or ""))


def decode_inline_source_map(value: str) -> Dict[str, Any]:
    match = JSON_DATA_URI_RE.match(value or "")
    if not match:
        raise SourceMapError("not a JSON data URI")
    data = value[match.end():]
    try:
        if match.group(1):
            raw = base64.b64decode(data, validate=False).decode("utf-8")
        else:
            raw = unquote(data)
        payload = json.loads(raw)
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise SourceMapError(f"cannot decode inline source map: {exc}") from exc
    if not isinstance(payload, dict):
        raise SourceMapError("inline source map must be a JSON object")
    return payload


def sanitize_source_path(source: str) -> str:
    """Map a ``sources`` entry to a path relative to the source root.

    ``webpack://`` is stripped together with a leading dot-prefixed project
    segment. ``.`` segments collapse and leading ``..`` segments are dropped
    so the result never climbs out of the root.
    """

    path = source
    if path.startswith(WEBPACK_PREFIX):
        path = path[len(WEBPACK_PREFIX):]
        parts = path.split("/")
        if len(parts) > 1 and parts[0].startswith("."):
            parts.pop(0)
        path = "/".join(parts)
    if path.startswith("/"):
        path = path[1:]
    normalized = posixpath.normpath(path) if path else ""
    segments = [seg for seg in normalized.split("/") if seg not in {"", "."}]
    while segments and segments[0] == "..":
        segments.pop(0)
    return "/".join(segments)


class SourceMapReconstructor:
    """Recover pre-build sources for a downloaded script or stylesheet."""

    def __init__(self, fetcher: URLFetcher, src_dir: Path) -> None:
        self.fetcher = fetcher
        self.src_dir = Path(src_dir)

    async def process(self, content: str, asset_url: str, asset_path: Path) -> ReconstructionResult:
        result = ReconstructionResult(asset_url=asset_url)
        annotation = find_source_mapping_url(content)

        payload: Any = None
        if annotation and is_inline_source_map(annotation):
            result.inline = True
            try:
                payload = decode_inline_source_map(annotation)
            except SourceMapError as exc:
                logger.error("Error decoding inline source map for %s: %s", asset_url, exc)
                result.error = str(exc)
                return result
            logger.info("Found inline source map for %s", asset_url)
        else:
            probe = annotation is None
            map_url = resolve_url(asset_url, annotation) if annotation else asset_url + SOURCE_MAP_SUFFIX
            result.map_url = map_url
            outcome = await self.fetcher.fetch(map_url, probe=probe)
            if not outcome.success or outcome.body is None:
                logger.info("Source map not found for %s", asset_url)
                return result
            payload = outcome.body

        try:
            document = SourceMapDocument.from_payload(payload)
        except SourceMapError as exc:
            logger.error("Error processing source map for %s: %s", asset_url, exc)
            result.error = str(exc)
            return result

        map_path = Path(str(asset_path) + SOURCE_MAP_SUFFIX)
        if persist_json(map_path, document.raw):
            result.map_path = map_path
        result.written = self.expand(document)
        return result

    def expand(self, document: SourceMapDocument) -> List[Path]:
        """Write every embedded source under ``src_dir``; later maps overwrite earlier files."""

        written: List[Path] = []
        for source, content in document.embedded_sources():
            relative = sanitize_source_path(source)
            if not relative:
                logger.debug("Skipping source with empty path: %r", source)
                continue
            target = self.src_dir.joinpath(*relative.split("/"))
            if persist_payload(target, content):
                written.append(target)
        return written
