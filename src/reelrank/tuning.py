"""Centralized tuning constants for tokenization, features and ranking.

All thresholds, offsets and concurrency knobs should be defined here and
referenced by the session and its collaborators (single source of truth).
"""

from __future__ import annotations

import os
from typing import Any, Dict, List

# ---------------------------------------------------------------------------
# Feature extraction
NGRAM_WINDOWS = 5
MIN_NGRAM_SUPPORT = 2
BLOOM_FP_RATE = 0.01

# ``None`` derives the merge threshold from corpus size: max(2, log2(n + 1)).
MIN_MERGE_SUPPORT = None
MIN_MERGE_SUPPORT_FLOOR = 2

# ---------------------------------------------------------------------------
# Metric classifier offsets (bias is opt-in per run)
FILE_SIZE_OFFSET = 1_048_576.0
DIR_SIZE_OFFSET = 0.0
FILE_AGE_OFFSET = 86_400.0

# ---------------------------------------------------------------------------
# Discovery
VIDEO_EXTENSIONS: List[str] = [
    "avi",
    "flv",
    "mov",
    "f4v",
    "m2ts",
    "m4v",
    "mkv",
    "mpg",
    "webm",
    "wmv",
    "mp4",
]

# ---------------------------------------------------------------------------
# Selection
BATCH_SIZE = 1
RANDOM_TOP_N = 0

# ---------------------------------------------------------------------------
# Concurrency
PARALLEL_WORKERS_DEFAULT = max(1, min(32, os.cpu_count() or 1))
COUNTER_SHARDS = max(1, os.cpu_count() or 1)
PARALLEL_CHUNK_MIN = 100

# ---------------------------------------------------------------------------
# Playback / feedback
FEEDBACK_PARAMS: Dict[str, float] = {
    "startup_timeout_seconds": 60.0,
    "decision_timeout_seconds": 0.0,  # 0 waits indefinitely
    "poll_interval_ms": 100.0,
    "http_timeout_seconds": 2.0,
}
FEEDBACK_ERROR_POLICY = "skip"
FEEDBACK_MAX_RETRIES = 1


def apply_overrides(data: Dict[str, Any]) -> None:
    """Merge numeric/dict tuning overrides into module globals (best-effort)."""
    if not isinstance(data, dict):
        return

    module_globals = globals()
    for key, value in data.items():
        if key not in module_globals:
            continue
        current = module_globals[key]
        if isinstance(current, dict) and isinstance(value, dict):
            current.update(value)
        elif isinstance(current, bool) or isinstance(value, bool):
            continue
        elif isinstance(current, (int, float)) and isinstance(value, (int, float)):
            module_globals[key] = value
