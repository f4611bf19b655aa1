"""Processed-URL ledger: the persisted set of absolute URLs already mirrored."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Set

logger = logging.getLogger(__name__)


class ProcessedUrlLedger:
    """Set of downloaded URLs with JSON-array persistence.

    Entries are only ever added. In force mode the on-disk ledger is not
    loaded, but :meth:`save` still overwrites it at the end of the run.
    """

    def __init__(self, path: Path, *, force: bool = False, initial: Optional[Iterable[str]] = None) -> None:
        self.path = Path(path)
        self.force = force
        self._urls: Set[str] = set(initial or ())

    def load(self) -> int:
        """Merge previously persisted URLs into the ledger and return its size."""

        if self.force:
            logger.info("Force mode: Will redownload all files")
            return len(self._urls)
        if not self.path.exists():
            return len(self._urls)
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Error reading ledger file %s: %s", self.path, exc)
            return len(self._urls)
        if isinstance(data, list):
            self._urls.update(str(item) for item in data if isinstance(item, str) and item)
            logger.info("Loaded %d URLs from ledger file", len(self._urls))
        else:
            logger.warning("Ignoring ledger file %s: expected a JSON array", self.path)
        return len(self._urls)

    def save(self) -> bool:
        urls: List[str] = sorted(self._urls)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(urls, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
        except OSError as exc:
            logger.error("Error saving ledger file %s: %s", self.path, exc)
            return False
        logger.info("Saved %d URLs to ledger file", len(urls))
        return True

    def is_processed(self, url: str) -> bool:
        return url in self._urls

    def mark_processed(self, url: str) -> None:
        self._urls.add(url)

    def snapshot(self) -> List[str]:
        return sorted(self._urls)

    def __contains__(self, url: object) -> bool:
        return url in self._urls

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._urls))

    def __len__(self) -> int:
        return len(self._urls)
