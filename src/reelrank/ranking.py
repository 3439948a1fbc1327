"""Score combination, ranking and candidate selection.

A ranking pass over the active pool has three steps:

1. Raw scoring.  Every enabled classifier scores every active entry, in
   parallel chunks.  The step returns only once all chunks are done,
   because normalization needs each classifier's min and max over the
   whole pool.
2. Normalization.  Raw scores are min-max scaled to ``[0, 1]`` per
   classifier.  A classifier whose scores are all equal (including a pool
   of one) contributes the neutral value ``0.5``.
3. Combination.  The combined score is the mean of the normalized scores.
   Entries are ordered by combined score, highest first, with discovery
   order breaking ties.

Selection picks from that ordering and never removes anything from the pool.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np

from . import tuning
from .classifiers import Classifier
from .entry import Entry, PoolStats
from .shards import chunked, run_chunks

NEUTRAL_SCORE = 0.5


def compute_raw_scores(
    entries: Sequence[Entry],
    classifiers: Sequence[Classifier],
    stats: PoolStats,
    workers: int = 1,
) -> None:
    """Fill ``entry.raw_scores`` for every entry; returns after all are done."""

    def score_chunk(chunk: Sequence[Entry]) -> int:
        for entry in chunk:
            stats.refresh(entry)
            entry.raw_scores = {c.name: float(c.score(entry, stats)) for c in classifiers}
        return len(chunk)

    chunks = chunked(list(entries), workers)
    if workers > 1 and len(chunks) > 1:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            run_chunks(executor, score_chunk, chunks)
    else:
        run_chunks(None, score_chunk, chunks)


def min_max_normalize(values: np.ndarray) -> np.ndarray:
    """Scale ``values`` to ``[0, 1]``; constant input maps to ``0.5``."""
    if values.size == 0:
        return values.astype(float)
    lo = float(values.min())
    hi = float(values.max())
    if hi == lo or not np.isfinite(hi - lo):
        return np.full(values.shape, NEUTRAL_SCORE, dtype=float)
    return (values - lo) / (hi - lo)


def combine_scores(entries: Sequence[Entry], names: Sequence[str]) -> Dict[str, Dict[str, float]]:
    """Normalize each classifier column and set ``entry.combined``.

    Returns the per-classifier raw bounds, for reporting.
    """
    bounds: Dict[str, Dict[str, float]] = {}
    if not entries:
        return bounds
    matrix = np.array([[e.raw_scores[name] for name in names] for e in entries], dtype=float)
    matrix = matrix.reshape(len(entries), len(names))
    normalized = np.empty_like(matrix)
    for col, name in enumerate(names):
        column = matrix[:, col]
        normalized[:, col] = min_max_normalize(column)
        bounds[name] = {"min": float(column.min()), "max": float(column.max())}
    combined = normalized.mean(axis=1) if names else np.full(len(entries), NEUTRAL_SCORE)
    for row, entry in enumerate(entries):
        entry.normalized_scores = {name: float(normalized[row, col]) for col, name in enumerate(names)}
        entry.combined = float(combined[row])
    return bounds


def order_entries(entries: Sequence[Entry]) -> List[Entry]:
    """Highest combined score first; discovery order breaks ties."""
    return sorted(entries, key=lambda e: (-e.combined, e.order))


@dataclass
class Ranker:
    """Rank an active pool and select the next candidate(s)."""

    classifiers: Sequence[Classifier]
    workers: int = 1
    batch_size: int = tuning.BATCH_SIZE
    random_top_n: int = tuning.RANDOM_TOP_N
    seed: Optional[int] = None
    last_bounds: Dict[str, Dict[str, float]] = field(default_factory=dict, init=False)
    _rng: np.random.Generator = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._rng = np.random.default_rng(self.seed)

    @property
    def names(self) -> List[str]:
        return [c.name for c in self.classifiers]

    def rank(self, entries: Sequence[Entry], stats: PoolStats) -> List[Entry]:
        """Score, normalize and order ``entries`` (the caller's active pool)."""
        compute_raw_scores(entries, self.classifiers, stats, workers=self.workers)
        self.last_bounds = combine_scores(entries, self.names)
        return order_entries(entries)

    def select(self, ranked: Sequence[Entry]) -> List[Entry]:
        """Top-K, or a uniform random draw of K from the top N when N is set."""
        k = max(1, int(self.batch_size))
        if not ranked:
            return []
        n = int(self.random_top_n or 0)
        if n <= 0:
            return list(ranked[:k])
        window = list(ranked[: max(n, 1)])
        picks = self._rng.choice(len(window), size=min(k, len(window)), replace=False)
        return [window[i] for i in sorted(int(p) for p in picks)]
