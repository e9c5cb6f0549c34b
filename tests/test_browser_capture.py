import asyncio
from pathlib import Path

import pytest

from csscapture.workflows import browser_capture
from csscapture.workflows.browser_capture import (
    CaptureConfig,
    CaptureLaunchError,
    CaptureNavigationError,
    StyleCapturePipeline,
    capture_page_styles,
    event_from_response,
    load_config_from_env,
)
from fakes import FakePage, FakeResponse


def _files(root: Path):
    return sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())


def _example_page() -> FakePage:
    return FakePage(
        [
            FakeResponse(
                "https://example.com/page",
                content_type="text/html; charset=utf-8",
                resource_type="document",
                body="<html></html>",
            ),
            FakeResponse(
                "https://example.com/styles.css",
                content_type="text/css",
                body='@import url("base.css"); .x{color:red}',
            ),
            FakeResponse("https://example.com/styles.css", body="duplicate"),
            FakeResponse("https://example.com/app.js", content_type="application/javascript", resource_type="script"),
        ],
        inline_blocks=["body{margin:0}"],
        routes={"https://example.com/base.css": (200, '@import "c.css"; .base{}')},
    )


def test_end_to_end_capture_with_fake_page(tmp_path):
    out_dir = tmp_path / "out" / "css"
    config = CaptureConfig(target_url="https://example.com/page", out_dir=out_dir)
    page = _example_page()

    report = asyncio.run(StyleCapturePipeline(config).run(page))

    assert _files(out_dir) == [
        "example.com/base.css",
        "example.com/page.inline.css",
        "example.com/styles.css",
    ]
    assert report.count() == 3
    assert [r.kind for r in report.resources] == ["external", "inline", "import"]
    assert (out_dir / "example.com" / "styles.css").read_text(encoding="utf-8") == '@import url("base.css"); .x{color:red}'
    inline = (out_dir / "example.com" / "page.inline.css").read_text(encoding="utf-8")
    assert inline == "/* inline-style #0 */\nbody{margin:0}"
    assert page.request.calls == ["https://example.com/base.css"]
    assert page.goto_calls == [{"url": "https://example.com/page", "wait_until": "networkidle", "timeout": 60000}]
    assert page.listeners["response"] == []
    assert report.failures == []
    assert report.finished_at is not None


def test_navigation_failure_cancels_inflight_handlers(tmp_path):
    config = CaptureConfig(target_url="https://example.com/slow", out_dir=tmp_path)
    page = FakePage(
        [FakeResponse("https://example.com/late.css", body=".late{}", delay=0.5)],
        navigation_error=TimeoutError("Timeout 60000ms exceeded."),
        dispatch_before_error=True,
    )
    pipeline = StyleCapturePipeline(config)

    async def scenario():
        with pytest.raises(CaptureNavigationError):
            await pipeline.run(page)
        # checked inside the loop, before asyncio.run tears down leftovers
        return set(pipeline._pending)

    assert asyncio.run(scenario()) == set()
    assert _files(tmp_path) == []
    assert "https://example.com/late.css" not in pipeline.sink.ledger


def test_rejected_and_unreadable_responses_are_skipped(tmp_path):
    config = CaptureConfig(target_url="https://example.com/", out_dir=tmp_path)
    page = FakePage(
        [
            FakeResponse("https://example.com/404.css", status=404, body="Not found"),
            FakeResponse("https://example.com/redirect.css", status=302, error=RuntimeError("redirect body unavailable")),
            FakeResponse("https://example.com/ok.css", content_type="text/css; charset=utf-8", resource_type="fetch", body=".ok{}"),
        ]
    )

    report = asyncio.run(StyleCapturePipeline(config).run(page))

    assert [r.source_url for r in report.resources] == ["https://example.com/ok.css"]
    assert report.failures == [
        {"url": "https://example.com/redirect.css", "error": "read_failed: redirect body unavailable"}
    ]
    assert _files(tmp_path) == ["example.com/ok.css"]


def test_navigation_failure_is_fatal(tmp_path):
    config = CaptureConfig(target_url="https://example.com/slow", out_dir=tmp_path)
    page = FakePage([], navigation_error=TimeoutError("Timeout 60000ms exceeded."))

    with pytest.raises(CaptureNavigationError):
        asyncio.run(StyleCapturePipeline(config).run(page))

    assert page.listeners["response"] == []


def test_injected_fetch_is_used_for_imports(tmp_path):
    config = CaptureConfig(target_url="https://example.com/page", out_dir=tmp_path)
    page = _example_page()
    seen = []

    async def fetch(url):
        seen.append(url)
        from csscapture.workflows.import_resolver import FetchedText

        return FetchedText(status=500)

    report = asyncio.run(StyleCapturePipeline(config).run(page, fetch=fetch))

    assert seen == ["https://example.com/base.css"]
    assert page.request.calls == []
    assert report.count("import") == 0
    assert report.failures == [{"url": "https://example.com/base.css", "error": "http_500"}]


def test_event_from_response_snapshots_fields():
    response = FakeResponse("https://example.com/a.css", status=200, content_type="text/css", body="a{}")

    event = event_from_response(response)

    assert event.url == "https://example.com/a.css"
    assert event.resource_type == "stylesheet"
    assert event.content_type == "text/css"
    assert asyncio.run(event.text()) == "a{}"


def test_load_config_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("CSSCAPTURE_OUT_DIR", str(tmp_path / "styles"))
    monkeypatch.setenv("CSSCAPTURE_NAV_TIMEOUT_MS", "15000")
    monkeypatch.setenv("CSSCAPTURE_HEADED", "1")
    monkeypatch.setenv("CSSCAPTURE_IMPORT_FETCH", "HTTP")
    monkeypatch.setenv("CSSCAPTURE_IMPORT_CONCURRENCY", "0")

    config = load_config_from_env(target_url="https://example.com/")

    assert config.target_url == "https://example.com/"
    assert config.out_dir == tmp_path / "styles"
    assert config.navigation_timeout_ms == 15000
    assert config.headless is False
    assert config.import_fetch == "http"
    assert config.import_concurrency == 1


def test_load_config_overrides_win_over_env(monkeypatch, tmp_path):
    monkeypatch.setenv("CSSCAPTURE_NAV_TIMEOUT_MS", "15000")

    config = load_config_from_env(navigation_timeout_ms=5000, out_dir=tmp_path, headless=None)

    assert config.navigation_timeout_ms == 5000
    assert config.out_dir == tmp_path
    assert config.headless is True


def test_config_rejects_unknown_import_mode(monkeypatch):
    monkeypatch.setenv("CSSCAPTURE_IMPORT_FETCH", "curl")
    with pytest.raises(ValueError):
        load_config_from_env()


def test_capture_page_styles_requires_playwright(monkeypatch, tmp_path):
    monkeypatch.setattr(browser_capture, "async_playwright", None)

    with pytest.raises(CaptureLaunchError):
        asyncio.run(capture_page_styles(CaptureConfig(out_dir=tmp_path)))
