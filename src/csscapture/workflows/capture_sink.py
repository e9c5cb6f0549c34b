"""Deduplicated persistence of captured stylesheets."""

from __future__ import annotations

import asyncio
import logging
import os
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set

from ..core.keys import K_KIND, K_KIND_EXTERNAL, K_KIND_IMPORT, K_KIND_INLINE, K_PATH, K_URL
from .capture_config import CSS_SUFFIX
from .capture_utils import derive_path

logger = logging.getLogger(__name__)

RESOURCE_KINDS = (K_KIND_EXTERNAL, K_KIND_IMPORT, K_KIND_INLINE)


@dataclass(frozen=True)
class CapturedResource:
    """One stylesheet written during the current run."""

    source_url: str
    local_path: Path
    kind: str

    def to_dict(self, relative_to: Optional[Path] = None) -> Dict[str, str]:
        path = self.local_path
        if relative_to is not None:
            try:
                path = self.local_path.relative_to(relative_to)
            except ValueError:
                pass
        return {K_URL: self.source_url, K_KIND: self.kind, K_PATH: str(path)}


class DedupLedger:
    """Set of URLs already captured (or being captured) in this run.

    ``claim`` is the only way in: membership check and insertion happen under
    one lock, so concurrent handlers for the same URL cannot both win.
    """

    def __init__(self) -> None:
        self._seen: Set[str] = set()
        self._lock: asyncio.Lock = asyncio.Lock()

    def __contains__(self, url: object) -> bool:
        return url in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._seen))

    async def claim(self, url: str) -> bool:
        async with self._lock:
            if url in self._seen:
                return False
            self._seen.add(url)
            return True

    async def release(self, url: str) -> None:
        async with self._lock:
            self._seen.discard(url)


def write_text_atomic(path: Path, content: str) -> Path:
    """Write ``content`` so readers only ever see the complete file."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_name = str(path.parent / f".{path.name}.{secrets.token_hex(4)}.tmp")
    # Final mode follows the process umask.
    fd = os.open(tmp_name, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o666)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
            fh.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
    return path


class CaptureSink:
    """Persist stylesheet bodies under ``out_dir/<derived path>`` once per URL."""

    def __init__(self, out_dir: Path, ledger: Optional[DedupLedger] = None) -> None:
        self.out_dir = Path(out_dir)
        self.ledger = ledger if ledger is not None else DedupLedger()
        self._resources: List[CapturedResource] = []

    def path_for(self, url: str, *, suffix: str = CSS_SUFFIX) -> Path:
        rel = derive_path(url)
        if not rel.endswith(suffix):
            rel = rel + suffix
        return self.out_dir / rel

    async def capture(
        self,
        url: str,
        body: str,
        *,
        kind: str = K_KIND_EXTERNAL,
        suffix: str = CSS_SUFFIX,
        path_url: Optional[str] = None,
    ) -> Optional[CapturedResource]:
        """Write ``body`` for ``url`` unless it was already captured.

        Returns the new record, or None when the URL is already in the ledger.
        ``path_url`` derives the file location from a different URL than the
        ledger key (inline bundles key on ``<page>#inline``).
        """

        if kind not in RESOURCE_KINDS:
            raise ValueError(f"Unknown resource kind: {kind}")
        if not await self.ledger.claim(url):
            logger.debug("already captured: %s", url)
            return None
        target = self.path_for(path_url or url, suffix=suffix)
        try:
            await asyncio.to_thread(write_text_atomic, target, body or "")
        except BaseException:
            await self.ledger.release(url)
            raise
        resource = CapturedResource(source_url=url, local_path=target, kind=kind)
        self._resources.append(resource)
        logger.info("[%s] %s -> %s", kind, url, _display_path(target))
        return resource

    def resources(self, kind: Optional[str] = None) -> List[CapturedResource]:
        if kind is None:
            return list(self._resources)
        return [r for r in self._resources if r.kind == kind]

    def __len__(self) -> int:
        return len(self._resources)


def _display_path(path: Path) -> str:
    try:
        return os.path.relpath(path)
    except ValueError:
        return str(path)


__all__ = [
    "CaptureSink",
    "CapturedResource",
    "DedupLedger",
    "RESOURCE_KINDS",
    "write_text_atomic",
]
