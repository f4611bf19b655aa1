"""URL resolution and URL-to-path mapping helpers."""

from __future__ import annotations

import logging
import posixpath
from datetime import date
from pathlib import Path
from typing import Optional
from urllib.parse import urljoin, urlparse

logger = logging.getLogger(__name__)


def _origin(parsed) -> str:
    # scheme + host + port; userinfo is not part of an origin
    host = parsed.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    port = parsed.port
    return f"{parsed.scheme}://{host}:{port}" if port is not None else f"{parsed.scheme}://{host}"


def resolve_url(base_url: str, reference: str) -> str:
    """Turn a reference found in a document into an absolute URL.

    Dot-relative references use standard relative resolution; when that
    fails the base URL is returned unchanged and callers should read it as
    "could not resolve". Bare references are rooted at the base origin.
    """

    if reference.startswith("http://") or reference.startswith("https://"):
        return reference

    parsed_base = urlparse(base_url)

    if reference.startswith("//"):
        return f"{parsed_base.scheme}:{reference}"

    if reference.startswith("/"):
        return f"{_origin(parsed_base)}{reference}"

    if reference.startswith("."):
        try:
            return urljoin(base_url, reference)
        except ValueError as exc:
            logger.error("Error resolving relative URL %s: %s", reference, exc)
            return base_url

    return f"{_origin(parsed_base)}/{reference}"


def url_to_file_path(url: str, root_dir: Path) -> Path:
    """Map an absolute URL onto ``root_dir``, keeping its directory structure.

    Extensionless paths map to an ``index.html`` inside the matching
    directory. The query string is not part of the local path.
    """

    file_path = urlparse(url).path or "/"
    if not posixpath.splitext(file_path)[1]:
        file_path = posixpath.join(file_path, "index.html")
    if file_path.startswith("/"):
        file_path = file_path[1:]
    parts = [part for part in file_path.split("/") if part not in {"", ".", ".."}]
    return Path(root_dir).joinpath(*parts)


def domain_for_url(url: str) -> str:
    """Return the URL host without a leading ``www.``."""

    host = (urlparse(url).hostname or "").lower()
    if host.startswith("www."):
        host = host[len("www."):]
    return host


def date_folder_name(today: Optional[date] = None) -> str:
    return (today or date.today()).strftime("%Y-%m-%d")
