"""Preflight diagnostics for ``csscapture doctor`` and the capture runner.

Each check is a small function returning a ``DoctorCheck``; a report fails
only when a required check fails. Env overrides are listed for reference.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import browser_capture
from .capture_config import DEFAULT_OUT_DIR, IMPORT_FETCH_MODES

PLAYWRIGHT_REMEDY = "pip install playwright && playwright install chromium"

CONFIG_ENV_VARS = (
    "CSSCAPTURE_OUT_DIR",
    "CSSCAPTURE_NAV_TIMEOUT_MS",
    "CSSCAPTURE_HEADED",
    "CSSCAPTURE_IMPORT_FETCH",
    "CSSCAPTURE_IMPORT_CONCURRENCY",
    "CSSCAPTURE_IMPORT_TIMEOUT",
    "CSSCAPTURE_USER_AGENT",
)


@dataclass(frozen=True)
class DoctorCheck:
    name: str
    passed: bool
    detail: str = ""
    remedy: str = ""
    required: bool = True

    @property
    def marker(self) -> str:
        if self.passed:
            return "ok"
        return "FAIL" if self.required else "note"


@dataclass
class DoctorReport:
    checks: List[DoctorCheck] = field(default_factory=list)
    warnings: List[Dict[str, str]] = field(default_factory=list)
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def ok(self) -> bool:
        return all(check.passed for check in self.checks if check.required)

    def failed(self) -> List[DoctorCheck]:
        return [check for check in self.checks if check.required and not check.passed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generated_at": self.generated_at.replace(microsecond=0).isoformat().replace("+00:00", "Z"),
            "ok": self.ok,
            "checks": [asdict(check) for check in self.checks],
            "environment_warnings": list(self.warnings),
        }


def playwright_importable() -> bool:
    return browser_capture.async_playwright is not None


def nearest_existing(path: Path) -> Optional[Path]:
    """Walk up from ``path`` to the first directory that exists."""

    candidate = path
    while not candidate.exists():
        if candidate.parent == candidate:
            return None
        candidate = candidate.parent
    return candidate


def check_playwright() -> DoctorCheck:
    if playwright_importable():
        return DoctorCheck("playwright", True, "async API importable")
    return DoctorCheck("playwright", False, "playwright.async_api not importable", PLAYWRIGHT_REMEDY)


def check_out_dir(path: Path) -> DoctorCheck:
    try:
        anchor = nearest_existing(path)
        writable = anchor is not None and os.access(anchor, os.W_OK)
    except OSError:
        writable = False
    if writable:
        return DoctorCheck("out_dir", True, str(path))
    return DoctorCheck(
        "out_dir",
        False,
        f"{path} is not writable",
        "Pass --out or set CSSCAPTURE_OUT_DIR to a writable directory.",
    )


def check_env_overrides() -> DoctorCheck:
    present = [f"{name}={os.environ[name]}" for name in CONFIG_ENV_VARS if os.environ.get(name)]
    detail = ", ".join(present) if present else "none set; built-in defaults apply"
    return DoctorCheck("env", True, detail, required=False)


def collect_environment_warnings() -> List[Dict[str, str]]:
    warnings: List[Dict[str, str]] = []
    if not playwright_importable():
        warnings.append(
            {
                "code": "playwright_missing",
                "message": "Playwright is not importable; captures cannot run",
                "remedy": PLAYWRIGHT_REMEDY,
            }
        )
    mode = (os.getenv("CSSCAPTURE_IMPORT_FETCH") or "").strip().lower()
    if mode and mode not in IMPORT_FETCH_MODES:
        warnings.append(
            {
                "code": "import_fetch_invalid",
                "message": f"CSSCAPTURE_IMPORT_FETCH={mode} is not one of {', '.join(IMPORT_FETCH_MODES)}",
                "remedy": "Unset it or choose browser/http.",
            }
        )
    return warnings


def build_doctor_report(*, out_dir: Optional[Path] = None) -> DoctorReport:
    target = Path(out_dir or os.getenv("CSSCAPTURE_OUT_DIR") or DEFAULT_OUT_DIR)
    return DoctorReport(
        checks=[check_playwright(), check_out_dir(target), check_env_overrides()],
        warnings=collect_environment_warnings(),
    )


def format_doctor_report(report: DoctorReport) -> str:
    width = max((len(check.name) for check in report.checks), default=0)
    stamp = report.to_dict()["generated_at"]
    lines = [f"csscapture doctor ({stamp})", ""]
    for check in report.checks:
        lines.append(f"  {check.marker:<4}  {check.name:<{width}}  {check.detail}".rstrip())
        if check.remedy and not check.passed:
            lines.append(f"        {'':<{width}}  fix: {check.remedy}")
    if report.warnings:
        lines.append("")
        lines.append("warnings:")
        lines.extend(f"  {w.get('code', 'warning')}: {w.get('message', '')}" for w in report.warnings)
    lines.append("")
    failed = report.failed()
    if failed:
        lines.append(f"{len(failed)} required check(s) failed: {', '.join(c.name for c in failed)}")
    else:
        lines.append("ready to capture")
    return "\n".join(lines) + "\n"
