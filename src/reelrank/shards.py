"""Sharded concurrent counter.

Parallel counting passes (tokenizer pair counts, corpus n-gram counts,
decision replay) accumulate into thread-local ``Counter`` objects and merge
them here.  Keys are partitioned by ``hash(key) % shards`` and each shard is
guarded by its own lock, so concurrent merges rarely contend.  Merging is
plain integer addition, so the final totals never depend on how the work was
chunked or in which order chunks finished.
"""

from __future__ import annotations

import threading
from collections import Counter
from concurrent.futures import Executor
from typing import Callable, Dict, Generic, Hashable, Iterator, List, Mapping, Optional, Sequence, Tuple, TypeVar

from . import tuning

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")
R = TypeVar("R")


def chunked(items: Sequence[T], workers: int) -> List[Sequence[T]]:
    """Split ``items`` into contiguous chunks, roughly one per worker."""
    size = max(tuning.PARALLEL_CHUNK_MIN, len(items) // max(1, workers))
    return [items[i:i + size] for i in range(0, len(items), size)]


def run_chunks(executor: Optional[Executor], fn: Callable[[Sequence[T]], R], chunks: List[Sequence[T]]) -> List[R]:
    """Apply ``fn`` to every chunk, in parallel when an executor is given.

    Results come back in chunk order; the call returns only once every chunk
    is done, which makes it the barrier between parallel phases.
    """
    if executor is None or len(chunks) <= 1:
        return [fn(chunk) for chunk in chunks]
    return list(executor.map(fn, chunks))


class ShardedCounter(Generic[K]):
    """Integer counts split across independently locked shards."""

    def __init__(self, shards: int = 1) -> None:
        if shards < 1:
            raise ValueError("shard count must be >= 1")
        self._shards: List[Dict[K, int]] = [{} for _ in range(shards)]
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(shards)]

    def _index(self, key: K) -> int:
        return hash(key) % len(self._shards)

    @staticmethod
    def _bump(shard: Dict[K, int], key: K, delta: int) -> None:
        count = shard.get(key, 0) + delta
        if count == 0:
            shard.pop(key, None)
        else:
            shard[key] = count

    def add(self, key: K, delta: int = 1) -> None:
        """Add ``delta`` to ``key``; a count that reaches zero is dropped."""
        if not delta:
            return
        idx = self._index(key)
        with self._locks[idx]:
            self._bump(self._shards[idx], key, delta)

    def merge(self, local: Mapping[K, int]) -> None:
        """Fold a thread-local count mapping in, taking each shard lock once."""
        grouped: Dict[int, List[Tuple[K, int]]] = {}
        for key, delta in local.items():
            if delta:
                grouped.setdefault(self._index(key), []).append((key, delta))
        for idx, items in grouped.items():
            shard = self._shards[idx]
            with self._locks[idx]:
                for key, delta in items:
                    self._bump(shard, key, delta)

    def get(self, key: K, default: int = 0) -> int:
        idx = self._index(key)
        with self._locks[idx]:
            return self._shards[idx].get(key, default)

    def __len__(self) -> int:
        return sum(len(shard) for shard in self._shards)

    def __contains__(self, key: object) -> bool:
        try:
            idx = self._index(key)  # type: ignore[arg-type]
        except TypeError:
            return False
        with self._locks[idx]:
            return key in self._shards[idx]

    def items(self) -> Iterator[Tuple[K, int]]:
        """Iterate over a per-shard snapshot of ``(key, count)`` pairs."""
        for idx, shard in enumerate(self._shards):
            with self._locks[idx]:
                snapshot = list(shard.items())
            yield from snapshot

    def to_counter(self) -> Counter:
        out: Counter = Counter()
        for key, count in self.items():
            out[key] = count
        return out
