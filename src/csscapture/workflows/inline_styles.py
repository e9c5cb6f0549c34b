"""Bundle a page's inline ``<style>`` blocks into one labelled stylesheet."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Tuple

from ..core.keys import K_KIND_INLINE
from .capture_config import INLINE_MARKER, INLINE_SUFFIX, INLINE_URL_FRAGMENT
from .capture_sink import CaptureSink, CapturedResource

logger = logging.getLogger(__name__)


def number_blocks(blocks: Iterable[Optional[str]]) -> List[Tuple[int, str]]:
    return [(idx, css or "") for idx, css in enumerate(blocks)]


def render_inline_bundle(blocks: Iterable[Optional[str]]) -> str:
    """Join blocks in document order, each preceded by its index marker."""

    return "\n\n".join(
        f"{INLINE_MARKER.format(index=idx)}\n{css}" for idx, css in number_blocks(blocks)
    )


def inline_bundle_key(page_url: str) -> str:
    return f"{page_url}{INLINE_URL_FRAGMENT}"


async def aggregate_inline_styles(
    sink: CaptureSink,
    blocks: Iterable[Optional[str]],
    page_url: str,
) -> Optional[CapturedResource]:
    """Persist one ``.inline.css`` bundle for ``page_url``.

    No blocks means no file; a second call for the same page is a no-op.
    """

    block_list = list(blocks or [])
    if not block_list:
        logger.debug("no inline styles on %s", page_url)
        return None
    return await sink.capture(
        inline_bundle_key(page_url),
        render_inline_bundle(block_list),
        kind=K_KIND_INLINE,
        suffix=INLINE_SUFFIX,
        path_url=page_url,
    )


__all__ = [
    "aggregate_inline_styles",
    "inline_bundle_key",
    "number_blocks",
    "render_inline_bundle",
]
