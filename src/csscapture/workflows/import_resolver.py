"""Single-pass ``@import`` resolution over already captured stylesheets.

Only sheets captured as ``external`` before the pass starts are scanned.
Sheets pulled in by an import are written but never scanned themselves,
which bounds the work to one level and rules out import cycles.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urljoin

import aiohttp

from ..core.keys import K_KIND_EXTERNAL, K_KIND_IMPORT
from .capture_config import IMPORT_CONCURRENCY, IMPORT_TIMEOUT_SECONDS
from .capture_sink import CaptureSink, CapturedResource

logger = logging.getLogger(__name__)

# Matches @import "x", @import 'x' and @import url(x) with optional quotes.
# Media qualifiers after the URL are ignored, not parsed.
IMPORT_PATTERN = re.compile(r"""@import\s+(?:url\()?["']?([^"')]+)["']?\)?""", re.IGNORECASE)


@dataclass
class FetchedText:
    status: int
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


FetchFunc = Callable[[str], Awaitable[FetchedText]]


def find_import_refs(css: str) -> List[str]:
    refs: List[str] = []
    for match in IMPORT_PATTERN.finditer(css or ""):
        ref = match.group(1).strip()
        if ref:
            refs.append(ref)
    return refs


def resolve_import_urls(css: str, stylesheet_url: str) -> List[str]:
    """Return absolute import targets, resolved against the stylesheet's own URL."""

    resolved: List[str] = []
    for ref in find_import_refs(css):
        try:
            target = urljoin(stylesheet_url, ref)
        except ValueError:
            logger.warning("Skipping malformed @import %r in %s", ref, stylesheet_url)
            continue
        if target not in resolved:
            resolved.append(target)
    return resolved


def make_session_fetcher(session: aiohttp.ClientSession, *, timeout: float = IMPORT_TIMEOUT_SECONDS) -> FetchFunc:
    """Fetch imports with a plain aiohttp session, outside the page."""

    client_timeout = aiohttp.ClientTimeout(total=timeout)

    async def _fetch(url: str) -> FetchedText:
        async with session.get(url, timeout=client_timeout) as resp:
            text = await resp.text(errors="replace") if 200 <= resp.status < 300 else ""
            return FetchedText(status=resp.status, text=text)

    return _fetch


def _read_text(resource: CapturedResource) -> str:
    return resource.local_path.read_text(encoding="utf-8")


async def _collect_targets(
    sources: List[CapturedResource],
    sink: CaptureSink,
    failures: List[Dict[str, Any]],
) -> List[str]:
    targets: List[str] = []
    for resource in sources:
        try:
            css = await asyncio.to_thread(_read_text, resource)
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Could not read captured stylesheet %s: %s", resource.local_path, exc)
            failures.append({"url": resource.source_url, "error": f"unreadable_source: {exc}"})
            continue
        for target in resolve_import_urls(css, resource.source_url):
            if target in sink.ledger or target in targets:
                continue
            targets.append(target)
    return targets


async def _fetch_and_capture(
    url: str,
    sink: CaptureSink,
    fetch: FetchFunc,
    semaphore: asyncio.Semaphore,
    failures: List[Dict[str, Any]],
) -> Optional[CapturedResource]:
    async with semaphore:
        if url in sink.ledger:
            return None
        try:
            fetched = await fetch(url)
        except Exception as exc:
            logger.warning("Error fetching @import %s: %s", url, exc)
            failures.append({"url": url, "error": f"fetch_failed: {exc}"})
            return None
        if not fetched.ok:
            logger.warning("Skipping @import %s: HTTP %s", url, fetched.status)
            failures.append({"url": url, "error": f"http_{fetched.status}"})
            return None
        try:
            return await sink.capture(url, fetched.text, kind=K_KIND_IMPORT)
        except OSError as exc:
            logger.warning("Could not write @import %s: %s", url, exc)
            failures.append({"url": url, "error": f"write_failed: {exc}"})
            return None


async def resolve_imports(
    sink: CaptureSink,
    fetch: FetchFunc,
    *,
    concurrency: int = IMPORT_CONCURRENCY,
    failures: Optional[List[Dict[str, Any]]] = None,
) -> List[CapturedResource]:
    """Fetch and capture every new ``@import`` target of the external sheets.

    Per-target failures are logged, appended to ``failures`` and skipped.
    Returns the newly captured resources in discovery order.
    """

    failures = failures if failures is not None else []
    sources = sink.resources(K_KIND_EXTERNAL)
    targets = await _collect_targets(sources, sink, failures)
    if not targets:
        return []
    logger.debug("resolving %d @import target(s) from %d stylesheet(s)", len(targets), len(sources))
    semaphore = asyncio.Semaphore(max(1, concurrency))
    results = await asyncio.gather(
        *(_fetch_and_capture(url, sink, fetch, semaphore, failures) for url in targets)
    )
    return [r for r in results if r is not None]


__all__ = [
    "FetchFunc",
    "FetchedText",
    "IMPORT_PATTERN",
    "find_import_refs",
    "make_session_fetcher",
    "resolve_import_urls",
    "resolve_imports",
]
