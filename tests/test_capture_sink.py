import asyncio
import os
import stat
from pathlib import Path

import pytest

from csscapture.workflows.capture_sink import CaptureSink, DedupLedger, write_text_atomic


def _files(root: Path):
    return sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())


def test_capture_writes_body_verbatim(tmp_path):
    sink = CaptureSink(tmp_path)
    body = "@charset \"utf-8\";\n.a{color:red}  /* keep */\n"

    resource = asyncio.run(sink.capture("https://example.com/styles.css", body))

    assert resource is not None
    assert resource.kind == "external"
    assert resource.local_path == tmp_path / "example.com" / "styles.css"
    assert resource.local_path.read_text(encoding="utf-8") == body


def test_capture_appends_css_suffix_when_missing(tmp_path):
    sink = CaptureSink(tmp_path)

    resource = asyncio.run(sink.capture("https://fonts.googleapis.com/css2?family=Inter", "x{}"))

    assert resource is not None
    assert resource.local_path.name.endswith(".css")
    assert resource.local_path.parent == tmp_path / "fonts.googleapis.com"


def test_repeated_urls_produce_one_file_each(tmp_path):
    sink = CaptureSink(tmp_path)
    urls = [
        "https://example.com/a.css",
        "https://example.com/b.css",
        "https://example.com/a.css",
        "https://example.com/a.css?v=2",
        "https://example.com/b.css",
    ]

    async def run():
        return [await sink.capture(url, f"/* {url} */") for url in urls]

    results = asyncio.run(run())

    assert sum(1 for r in results if r is not None) == 3
    assert len(sink.ledger) == 3
    assert len(_files(tmp_path)) == 3
    # First write wins; the duplicate does not overwrite
    assert (tmp_path / "example.com" / "a.css").read_text(encoding="utf-8") == "/* https://example.com/a.css */"


def test_concurrent_captures_of_same_url_write_once(tmp_path):
    sink = CaptureSink(tmp_path)

    async def run():
        return await asyncio.gather(
            *(sink.capture("https://example.com/race.css", f"body{{z-index:{i}}}") for i in range(10))
        )

    results = asyncio.run(run())

    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    assert len(sink.resources()) == 1
    assert _files(tmp_path) == ["example.com/race.css"]


def test_failed_write_releases_ledger_claim(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a dir", encoding="utf-8")
    sink = CaptureSink(blocker)

    with pytest.raises(OSError):
        asyncio.run(sink.capture("https://example.com/a.css", "a{}"))

    assert "https://example.com/a.css" not in sink.ledger
    assert sink.resources() == []


def test_unknown_kind_rejected(tmp_path):
    sink = CaptureSink(tmp_path)
    with pytest.raises(ValueError):
        asyncio.run(sink.capture("https://example.com/a.css", "a{}", kind="font"))


def test_resources_filter_by_kind(tmp_path):
    sink = CaptureSink(tmp_path)

    async def run():
        await sink.capture("https://example.com/a.css", "a{}")
        await sink.capture("https://example.com/b.css", "b{}", kind="import")

    asyncio.run(run())

    assert [r.source_url for r in sink.resources("external")] == ["https://example.com/a.css"]
    assert [r.source_url for r in sink.resources("import")] == ["https://example.com/b.css"]
    payload = sink.resources()[0].to_dict(relative_to=tmp_path)
    assert payload == {"url": "https://example.com/a.css", "kind": "external", "path": "example.com/a.css"}


def test_ledger_claim_is_exclusive():
    ledger = DedupLedger()

    async def run():
        return await asyncio.gather(*(ledger.claim("u") for _ in range(5)))

    assert sorted(asyncio.run(run())) == [False, False, False, False, True]
    assert "u" in ledger
    assert len(ledger) == 1


def test_write_text_atomic_leaves_no_temp_files(tmp_path):
    target = tmp_path / "deep" / "dir" / "x.css"

    write_text_atomic(target, "x{}")
    write_text_atomic(target, "y{}")

    assert target.read_text(encoding="utf-8") == "y{}"
    assert [p.name for p in target.parent.iterdir()] == ["x.css"]


def test_captured_files_follow_process_umask(tmp_path):
    sink = CaptureSink(tmp_path)
    previous = os.umask(0o022)
    try:
        resource = asyncio.run(sink.capture("https://example.com/a.css", "a{}"))
    finally:
        os.umask(previous)

    assert resource is not None
    assert stat.S_IMODE(resource.local_path.stat().st_mode) == 0o644


def test_empty_url_gets_a_visible_file_name(tmp_path):
    sink = CaptureSink(tmp_path)

    resource = asyncio.run(sink.capture("", "x{}"))

    assert resource is not None
    assert resource.local_path == tmp_path / "_.css"
