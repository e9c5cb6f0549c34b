"""Capture defaults (target, paths, timeouts, headers, stylesheet markers).

Centralizes static defaults so the pipeline modules have no embedded magic
strings. ``CaptureConfig`` reads these as its baseline; environment variables
and CLI flags override them per run.
"""

from __future__ import annotations

from pathlib import Path

# Target / output
DEFAULT_TARGET_URL = "https://www.soundtrack.io/es/"
DEFAULT_OUT_DIR = Path("out") / "css"

# Browser / network
NAVIGATION_TIMEOUT_MS = 60000
NAVIGATION_WAIT_UNTIL = "networkidle"
IMPORT_TIMEOUT_SECONDS = 20.0
IMPORT_CONCURRENCY = 4
IMPORT_FETCH_MODES = ("browser", "http")
USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)
VIEWPORT = {"width": 1920, "height": 1080}

# Stylesheet detection
STYLESHEET_RESOURCE_TYPE = "stylesheet"
CSS_CONTENT_TYPE = "text/css"
ACCEPTED_STATUS_MIN = 200
ACCEPTED_STATUS_MAX = 400  # exclusive

# Output naming
CSS_SUFFIX = ".css"
INLINE_SUFFIX = ".inline.css"
INLINE_URL_FRAGMENT = "#inline"
INLINE_MARKER = "/* inline-style #{index} */"
EMPTY_URL_NAME = "_"

# In-page script listing every <style> element's text, in document order.
INLINE_STYLES_SCRIPT = """
() => Array.from(document.querySelectorAll("style")).map((s) => s.textContent || "")
"""
