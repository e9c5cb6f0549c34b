from __future__ import annotations

import asyncio
import json
import os
import secrets
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .core.keys import (
    K_COUNTS,
    K_ITEMS,
    K_KIND,
    K_KIND_EXTERNAL,
    K_KIND_IMPORT,
    K_KIND_INLINE,
    K_OUT_DIR,
    K_PATH,
    K_RUN_ID,
    K_TARGET_URL,
    K_URL,
    K_WARNINGS,
)
from .workflows.browser_capture import CaptureConfig, CaptureReport, capture_page_styles
from .workflows.doctor import collect_environment_warnings

CaptureFunc = Callable[[CaptureConfig], Awaitable[CaptureReport]]


def generate_run_id(now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%SZ")
    suffix = secrets.token_hex(3)
    return f"{stamp}_{suffix}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _relative(path: Path) -> str:
    try:
        return os.path.relpath(path)
    except ValueError:
        return str(path)


def build_capture_summary(report: CaptureReport, run_id: str) -> Dict[str, Any]:
    """Stable JSON summary; lists only resources that were actually written."""

    finished_at = report.finished_at or datetime.now(timezone.utc)
    items: List[Dict[str, str]] = []
    for resource in report.resources:
        items.append({K_URL: resource.source_url, K_KIND: resource.kind, K_PATH: _relative(resource.local_path)})
    warnings = [
        {"url": str(failure.get("url") or ""), "error": str(failure.get("error") or "")}
        for failure in report.failures
    ]
    return {
        K_RUN_ID: run_id,
        K_TARGET_URL: report.target_url,
        K_OUT_DIR: _relative(report.out_dir),
        "started_at": _iso(report.started_at),
        "finished_at": _iso(finished_at),
        "duration_ms": int((finished_at - report.started_at).total_seconds() * 1000),
        K_COUNTS: {
            "total": len(items),
            K_KIND_EXTERNAL: report.count(K_KIND_EXTERNAL),
            K_KIND_IMPORT: report.count(K_KIND_IMPORT),
            K_KIND_INLINE: report.count(K_KIND_INLINE),
            "skipped": len(warnings),
        },
        K_ITEMS: items,
        K_WARNINGS: warnings,
    }


def format_capture_report(summary: Dict[str, Any]) -> str:
    lines: List[str] = []
    lines.append("")
    lines.append("Summary:")
    for item in summary.get(K_ITEMS) or []:
        lines.append(f" - [{item.get(K_KIND)}] {item.get(K_URL)} -> {item.get(K_PATH)}")
    warnings = summary.get(K_WARNINGS) or []
    if warnings:
        lines.append("Skipped:")
        for warning in warnings:
            lines.append(f" - {warning.get('url')}: {warning.get('error')}")
    counts = summary.get(K_COUNTS) or {}
    lines.append(f"Total: {counts.get('total', 0)} CSS files in {summary.get(K_OUT_DIR)}")
    return "\n".join(lines) + "\n"


def write_summary(summary: Dict[str, Any], path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(summary, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
    return path


def run_capture(
    config: CaptureConfig,
    *,
    summary_path: Optional[Path] = None,
    capture: Optional[CaptureFunc] = None,
) -> Tuple[Dict[str, Any], int]:
    """Run one capture and return ``(summary, exit_code)``.

    The summary JSON is written only when ``summary_path`` is given, so the
    stylesheet tree under ``config.out_dir`` holds nothing but captured CSS.
    Fatal failures (browser launch, navigation) propagate as ``CaptureError``.
    """

    run_id = generate_run_id()
    for warning in collect_environment_warnings():
        message = warning.get("message") or warning.get("code") or "environment warning"
        remedy = warning.get("remedy")
        if remedy:
            print(f"[csscapture] warning: {message} ({remedy})", file=sys.stderr)
        else:
            print(f"[csscapture] warning: {message}", file=sys.stderr)

    report = asyncio.run((capture or capture_page_styles)(config))
    summary = build_capture_summary(report, run_id)
    if summary_path is not None:
        write_summary(summary, summary_path)
    return summary, 0
