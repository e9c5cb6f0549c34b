"""High-level exports for the capture workflows."""

from .browser_capture import (
    CaptureConfig,
    CaptureError,
    CaptureNavigationError,
    CaptureReport,
    StyleCapturePipeline,
    capture_page_styles,
    load_config_from_env,
)
from .capture_sink import CaptureSink, CapturedResource, DedupLedger
from .capture_utils import ResponseEvent, classify, derive_path, is_stylesheet_response
from .import_resolver import FetchedText, resolve_imports
from .inline_styles import aggregate_inline_styles

__all__ = [
    "CaptureConfig",
    "CaptureError",
    "CaptureNavigationError",
    "CaptureReport",
    "CaptureSink",
    "CapturedResource",
    "DedupLedger",
    "FetchedText",
    "ResponseEvent",
    "StyleCapturePipeline",
    "aggregate_inline_styles",
    "capture_page_styles",
    "classify",
    "derive_path",
    "is_stylesheet_response",
    "load_config_from_env",
    "resolve_imports",
]
