"""Browser-driven stylesheet capture for a single page.

The Playwright page is the event source: every response it delivers goes
through the classifier into the capture sink. Once the page is network-idle
and all pending handlers have finished, the inline ``<style>`` bundle is
written and a single ``@import`` pass runs over the external sheets.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import aiohttp

from ..core.keys import K_KIND_EXTERNAL
from .capture_config import (
    DEFAULT_OUT_DIR,
    DEFAULT_TARGET_URL,
    IMPORT_CONCURRENCY,
    IMPORT_FETCH_MODES,
    IMPORT_TIMEOUT_SECONDS,
    INLINE_STYLES_SCRIPT,
    NAVIGATION_TIMEOUT_MS,
    NAVIGATION_WAIT_UNTIL,
    USER_AGENT,
    VIEWPORT,
)
from .capture_sink import CaptureSink, CapturedResource
from .capture_utils import ResponseEvent, _env_bool, _env_float, _env_int, _env_str, classify
from .import_resolver import FetchFunc, FetchedText, make_session_fetcher, resolve_imports
from .inline_styles import aggregate_inline_styles

logger = logging.getLogger(__name__)

try:  # Playwright is a hard requirement for capture; doctor reports when it is missing
    from playwright.async_api import async_playwright  # type: ignore
except Exception:  # pragma: no cover - handled at runtime
    async_playwright = None  # type: ignore


class CaptureError(RuntimeError):
    """Fatal capture failure; the run stops and already written files stay."""


class CaptureLaunchError(CaptureError):
    pass


class CaptureNavigationError(CaptureError):
    pass


@dataclass
class CaptureConfig:
    """Configuration parameters for one capture run."""

    target_url: str = DEFAULT_TARGET_URL
    out_dir: Path = DEFAULT_OUT_DIR
    navigation_timeout_ms: int = NAVIGATION_TIMEOUT_MS
    headless: bool = True
    user_agent: str = USER_AGENT
    import_fetch: str = "browser"
    import_concurrency: int = IMPORT_CONCURRENCY
    import_timeout: float = IMPORT_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        self.out_dir = Path(self.out_dir)
        if self.import_fetch not in IMPORT_FETCH_MODES:
            raise ValueError(
                f"Unsupported import fetch mode: {self.import_fetch} (expected one of {', '.join(IMPORT_FETCH_MODES)})"
            )
        if self.navigation_timeout_ms <= 0:
            raise ValueError("navigation timeout must be positive")


def load_config_from_env(**overrides: Any) -> CaptureConfig:
    """Build a config from ``CSSCAPTURE_*`` env vars; non-None overrides win."""

    values: Dict[str, Any] = {
        "out_dir": Path(_env_str("CSSCAPTURE_OUT_DIR", str(DEFAULT_OUT_DIR))),
        "navigation_timeout_ms": _env_int("CSSCAPTURE_NAV_TIMEOUT_MS", NAVIGATION_TIMEOUT_MS),
        "headless": not _env_bool("CSSCAPTURE_HEADED", "0"),
        "user_agent": _env_str("CSSCAPTURE_USER_AGENT", USER_AGENT),
        "import_fetch": _env_str("CSSCAPTURE_IMPORT_FETCH", "browser").strip().lower(),
        "import_concurrency": max(1, _env_int("CSSCAPTURE_IMPORT_CONCURRENCY", IMPORT_CONCURRENCY)),
        "import_timeout": _env_float("CSSCAPTURE_IMPORT_TIMEOUT", IMPORT_TIMEOUT_SECONDS),
    }
    for key, value in overrides.items():
        if value is not None:
            values[key] = value
    return CaptureConfig(**values)


@dataclass
class CaptureReport:
    """Outcome of one capture run (successes and per-resource failures)."""

    target_url: str
    out_dir: Path
    resources: List[CapturedResource] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    def count(self, kind: Optional[str] = None) -> int:
        if kind is None:
            return len(self.resources)
        return sum(1 for r in self.resources if r.kind == kind)


def event_from_response(response: Any) -> ResponseEvent:
    """Snapshot a Playwright ``Response`` into a ``ResponseEvent``."""

    try:
        resource_type = response.request.resource_type or ""
    except Exception:
        resource_type = ""
    return ResponseEvent(
        url=response.url,
        status=int(response.status),
        resource_type=resource_type,
        headers=dict(response.headers or {}),
        read_text=response.text,
    )


def make_page_fetcher(page: Any, *, timeout_ms: int) -> FetchFunc:
    """Fetch imports through the page's request context (shares its cookies)."""

    async def _fetch(url: str) -> FetchedText:
        resp = await page.request.get(url, timeout=timeout_ms)
        text = await resp.text() if 200 <= resp.status < 300 else ""
        return FetchedText(status=resp.status, text=text)

    return _fetch


class StyleCapturePipeline:
    """Capture, inline aggregation and import resolution for one page."""

    def __init__(self, config: CaptureConfig, sink: Optional[CaptureSink] = None) -> None:
        self.config = config
        self.sink = sink if sink is not None else CaptureSink(config.out_dir)
        self.failures: List[Dict[str, Any]] = []
        self._pending: Set[asyncio.Future] = set()

    def on_response(self, response: Any) -> None:
        """Response listener; schedules handling so the network layer is never blocked."""

        event = response if isinstance(response, ResponseEvent) else event_from_response(response)
        task = asyncio.ensure_future(self.handle_event(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def handle_event(self, event: ResponseEvent) -> Optional[CapturedResource]:
        if event.url in self.sink.ledger:
            return None
        if not classify(event):
            return None
        try:
            body = await event.text()
        except Exception as exc:
            logger.warning("Error capturing CSS %s: %s", event.url, exc)
            self.failures.append({"url": event.url, "error": f"read_failed: {exc}"})
            return None
        try:
            return await self.sink.capture(event.url, body, kind=K_KIND_EXTERNAL)
        except OSError as exc:
            logger.warning("Could not write CSS %s: %s", event.url, exc)
            self.failures.append({"url": event.url, "error": f"write_failed: {exc}"})
            return None

    async def drain(self) -> None:
        """Wait until every scheduled response handler has finished."""

        while self._pending:
            pending = list(self._pending)
            await asyncio.gather(*pending, return_exceptions=True)
            self._pending.difference_update(pending)

    async def cancel_pending(self) -> None:
        """Cancel scheduled handlers and wait for them to unwind."""

        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._pending.difference_update(pending)

    async def navigate(self, page: Any) -> None:
        try:
            await page.goto(
                self.config.target_url,
                wait_until=NAVIGATION_WAIT_UNTIL,
                timeout=self.config.navigation_timeout_ms,
            )
        except Exception as exc:
            raise CaptureNavigationError(f"Navigation to {self.config.target_url} failed: {exc}") from exc

    async def collect_inline(self, page: Any) -> Optional[CapturedResource]:
        try:
            blocks = await page.evaluate(INLINE_STYLES_SCRIPT)
        except Exception as exc:
            logger.warning("Could not read inline styles from %s: %s", self.config.target_url, exc)
            self.failures.append({"url": self.config.target_url, "error": f"inline_failed: {exc}"})
            return None
        try:
            return await aggregate_inline_styles(self.sink, blocks or [], self.config.target_url)
        except OSError as exc:
            logger.warning("Could not write inline styles for %s: %s", self.config.target_url, exc)
            self.failures.append({"url": self.config.target_url, "error": f"write_failed: {exc}"})
            return None

    async def resolve(self, fetch: FetchFunc) -> List[CapturedResource]:
        return await resolve_imports(
            self.sink,
            fetch,
            concurrency=self.config.import_concurrency,
            failures=self.failures,
        )

    async def run(self, page: Any, fetch: Optional[FetchFunc] = None) -> CaptureReport:
        """Drive the full pipeline against an open page."""

        report = CaptureReport(target_url=self.config.target_url, out_dir=self.config.out_dir)
        logger.info("Capturing CSS from %s", self.config.target_url)
        page.on("response", self.on_response)
        try:
            await self.navigate(page)
            await self.drain()
        except BaseException:
            await self.cancel_pending()
            raise
        finally:
            page.remove_listener("response", self.on_response)
        await self.drain()

        await self.collect_inline(page)

        if fetch is not None:
            await self.resolve(fetch)
        elif self.config.import_fetch == "http":
            headers = {"User-Agent": self.config.user_agent}
            async with aiohttp.ClientSession(headers=headers) as session:
                await self.resolve(make_session_fetcher(session, timeout=self.config.import_timeout))
        else:
            timeout_ms = int(self.config.import_timeout * 1000)
            await self.resolve(make_page_fetcher(page, timeout_ms=timeout_ms))

        report.resources = self.sink.resources()
        report.failures = list(self.failures)
        report.finished_at = datetime.now(timezone.utc)
        return report


async def capture_page_styles(config: CaptureConfig) -> CaptureReport:
    """Launch Chromium, capture every stylesheet of ``config.target_url`` and close."""

    if async_playwright is None:
        raise CaptureLaunchError("Playwright is not installed; run `pip install playwright && playwright install chromium`")
    pipeline = StyleCapturePipeline(config)
    async with async_playwright() as p:  # type: ignore
        try:
            browser = await p.chromium.launch(headless=config.headless)
        except Exception as exc:
            raise CaptureLaunchError(f"Could not launch Chromium: {exc}") from exc
        context = await browser.new_context(user_agent=config.user_agent, viewport=VIEWPORT)
        try:
            page = await context.new_page()
            return await pipeline.run(page)
        finally:
            await context.close()
            await browser.close()


__all__ = [
    "CaptureConfig",
    "CaptureError",
    "CaptureLaunchError",
    "CaptureNavigationError",
    "CaptureReport",
    "StyleCapturePipeline",
    "capture_page_styles",
    "event_from_response",
    "load_config_from_env",
    "make_page_fetcher",
]
