"""Shared helper functions used by the capture workflow."""

from __future__ import annotations

import base64
import os
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlsplit

from .capture_config import (
    ACCEPTED_STATUS_MAX,
    ACCEPTED_STATUS_MIN,
    CSS_CONTENT_TYPE,
    EMPTY_URL_NAME,
    STYLESHEET_RESOURCE_TYPE,
)

_UNSAFE_PATH_CHARS = re.compile(r"[^a-z0-9._/-]+", re.IGNORECASE)


def _env_int(name: str, default: int = 0) -> int:
    try:
        raw = os.getenv(name, "")
        return int(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float = 0.0) -> float:
    try:
        raw = os.getenv(name, "")
        return float(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def _env_bool(name: str, default: str = "0") -> bool:
    raw = os.getenv(name, default)
    return str(raw).strip().lower() not in {"0", "false", "no", "off", ""}


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name, "")
    return raw if raw.strip() else default


def _b64url(raw: str) -> str:
    return base64.urlsafe_b64encode(raw.encode("utf-8", "surrogatepass")).decode("ascii").rstrip("=")


def _encode_whole(raw: str) -> str:
    return _b64url(raw) or EMPTY_URL_NAME


def sanitize_segment(value: str) -> str:
    """Replace every run of characters outside ``[a-z0-9._/-]`` with ``_``."""

    return _UNSAFE_PATH_CHARS.sub("_", value or "")


def derive_path(url: str) -> str:
    """Map any URL to a relative, filesystem-safe ``host/route`` path.

    The query string (when present) is appended as URL-safe base64 so that
    ``a.css?v=1`` and ``a.css?v=2`` land in different files. Input that cannot
    be parsed, or has no host, is encoded whole. Never raises.
    """

    raw = url if isinstance(url, str) else str(url)
    try:
        parts = urlsplit(raw)
        hostname = parts.hostname or ""
    except ValueError:
        return _encode_whole(raw)
    if not hostname:
        return _encode_whole(raw)

    host = sanitize_segment(hostname)
    # Dot segments are dropped rather than resolved so a path never climbs above its host.
    segments: List[str] = [
        seg for seg in sanitize_segment(parts.path).split("/") if seg not in {"", ".", ".."}
    ]
    joined = "/".join([host, *segments])
    query = f"?{parts.query}" if parts.query else ""
    if query:
        joined = f"{joined}_{_b64url(query)}"
    final = joined.replace("\\", "/").rstrip("/")
    return final or host


def is_success_status(status: int) -> bool:
    return ACCEPTED_STATUS_MIN <= int(status) < ACCEPTED_STATUS_MAX


def is_stylesheet_response(resource_type: Optional[str], content_type: Optional[str], status: int) -> bool:
    """Return True when a response should be captured as CSS.

    Redirects and error statuses are rejected before the type checks, so an
    error page served as ``text/css`` is never written.
    """

    try:
        if not is_success_status(status):
            return False
    except (TypeError, ValueError):
        return False
    if (resource_type or "").strip().lower() == STYLESHEET_RESOURCE_TYPE:
        return True
    return CSS_CONTENT_TYPE in (content_type or "").lower()


@dataclass(frozen=True)
class ResponseEvent:
    """Immutable view of one intercepted network response."""

    url: str
    status: int
    resource_type: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    read_text: Optional[Callable[[], Awaitable[str]]] = field(default=None, repr=False, compare=False)

    @property
    def content_type(self) -> str:
        for key, value in (self.headers or {}).items():
            if key.lower() == "content-type":
                return value or ""
        return ""

    async def text(self) -> str:
        if self.read_text is None:
            raise RuntimeError(f"No body reader attached for {self.url}")
        return await self.read_text()


def classify(event: ResponseEvent) -> bool:
    return is_stylesheet_response(event.resource_type, event.content_type, event.status)


def sanity_check() -> None:
    assert derive_path("https://example.com/styles.css") == "example.com/styles.css"
    assert derive_path("https://example.com/") == "example.com"
    assert derive_path("https://example.com/a.css?v=1") != derive_path("https://example.com/a.css?v=2")
    assert is_stylesheet_response("stylesheet", "", 200)
    assert not is_stylesheet_response("", "text/css", 404)


sanity_check()

__all__ = [
    "ResponseEvent",
    "classify",
    "derive_path",
    "is_stylesheet_response",
    "is_success_status",
    "sanitize_segment",
    "sanity_check",
]
