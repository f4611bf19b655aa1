"""Environment diagnostics for ``source-grabber doctor``."""

from __future__ import annotations

import os
import tempfile
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .grabber_config import (
    DEFAULT_BACKOFF_INITIAL,
    DEFAULT_CONCURRENCY,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT_MS,
    ENV_BACKOFF_INITIAL,
    ENV_CONCURRENCY,
    ENV_RETRIES,
    ENV_TIMEOUT_MS,
    ENV_USER_AGENT,
    OUTPUT_DIRNAME,
)

KNOB_DEFAULTS = {
    ENV_TIMEOUT_MS: str(DEFAULT_TIMEOUT_MS),
    ENV_RETRIES: str(DEFAULT_RETRIES),
    ENV_CONCURRENCY: str(DEFAULT_CONCURRENCY),
    ENV_BACKOFF_INITIAL: str(DEFAULT_BACKOFF_INITIAL),
    ENV_USER_AGENT: "built-in browser UA",
}


@dataclass
class DoctorCheck:
    name: str
    passed: bool
    detail: str
    blocking: bool = True


def _lxml_check() -> DoctorCheck:
    from bs4 import BeautifulSoup, FeatureNotFound  # type: ignore

    try:
        BeautifulSoup("<p></p>", "lxml")
    except FeatureNotFound:
        return DoctorCheck("lxml", False, "lxml parser not installed (pip install lxml)")
    return DoctorCheck("lxml", True, "lxml parser available")


def _output_check(root: Path) -> DoctorCheck:
    # Nearest existing ancestor decides whether output/ can be created.
    target = root / OUTPUT_DIRNAME
    probe_dir = target
    while not probe_dir.exists() and probe_dir != probe_dir.parent:
        probe_dir = probe_dir.parent
    try:
        with tempfile.TemporaryFile(dir=probe_dir):
            pass
    except OSError as exc:
        return DoctorCheck("output_dir", False, f"{target} is not writable: {exc}")
    return DoctorCheck("output_dir", True, f"{target} is writable")


def _knob_checks() -> List[DoctorCheck]:
    checks = []
    for name, default in KNOB_DEFAULTS.items():
        value = os.getenv(name, "").strip()
        detail = f"{value} (env)" if value else f"{default} (default)"
        checks.append(DoctorCheck(name, True, detail, blocking=False))
    return checks


def build_doctor_report(*, output_dir: Optional[Path] = None) -> Dict[str, Any]:
    root = Path(output_dir or Path.cwd()).resolve()
    checks = [_lxml_check(), _output_check(root), *_knob_checks()]
    return {
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "ok": all(check.passed for check in checks if check.blocking),
        "checks": [asdict(check) for check in checks],
    }


def format_doctor_report(report: Dict[str, Any]) -> str:
    lines = [f"Source grabber doctor ({report.get('generated_at')})", ""]
    for check in report.get("checks", []):
        mark = "ok" if check["passed"] else ("FAIL" if check["blocking"] else "warn")
        lines.append(f"[{mark:>4}] {check['name']}: {check['detail']}")
    lines.append("")
    lines.append("All checks passed." if report.get("ok") else "Some checks failed.")
    return "\n".join(lines) + "\n"
