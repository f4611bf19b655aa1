"""Shared summary keys to avoid magic strings across grabber modules."""

from __future__ import annotations

# Run summary keys
K_TARGET_URL = "target_url"
K_OUTPUT_ROOT = "output_root"
K_STATE = "state"
K_FORCE = "force"
K_STARTED_AT = "started_at"
K_FINISHED_AT = "finished_at"
K_DURATION_MS = "duration_ms"
K_COUNTS = "counts"
K_FAILED_URLS = "failed_urls"
K_LEDGER_PATH = "ledger_path"

# Count keys
K_DISCOVERED = "discovered"
K_SKIPPED = "skipped"
K_FETCHED = "fetched"
K_FAILED = "failed"
K_SOURCE_MAPS = "source_maps"
K_SOURCES_WRITTEN = "sources_written"
K_LEDGER_SIZE = "ledger_size"
