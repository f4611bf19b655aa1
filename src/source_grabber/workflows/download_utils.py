"""Helpers for writing mirrored bodies, source maps and reconstructed sources."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Union

logger = logging.getLogger(__name__)

Payload = Union[bytes, str]


def persist_payload(path: Path, payload: Payload) -> bool:
    """Write ``payload`` to ``path``, creating parent directories.

    Returns False (after logging) when the filesystem refuses the write or
    the path itself is unusable (e.g. an embedded NUL byte), so the caller
    can treat the item as not downloaded.
    """

    target = Path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(payload, bytes):
            target.write_bytes(payload)
        else:
            target.write_text(payload, encoding="utf-8")
    except (OSError, ValueError) as exc:
        logger.error("Error saving file %s: %s", target, exc)
        return False
    logger.info("Saved: %s", target)
    return True


def persist_json(path: Path, data: Any) -> bool:
    return persist_payload(path, json.dumps(data, ensure_ascii=False, indent=2) + "\n")
