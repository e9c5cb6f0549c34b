"""Shared summary keys to avoid magic strings across csscapture modules."""

from __future__ import annotations

# Captured resource keys
K_URL = "url"
K_KIND = "kind"
K_PATH = "path"

# Resource kinds
K_KIND_EXTERNAL = "external"
K_KIND_IMPORT = "import"
K_KIND_INLINE = "inline"

# Run summary keys
K_RUN_ID = "run_id"
K_TARGET_URL = "target_url"
K_OUT_DIR = "out_dir"
K_COUNTS = "counts"
K_ITEMS = "items"
K_WARNINGS = "warnings"
