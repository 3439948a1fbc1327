"""N-gram feature extraction.

A feature is a contiguous run of 1..W token ids, represented as a tuple of
ints.  Corpus counts are document frequencies: each distinct n-gram counts
once per path, however many times it repeats inside that path.  Only
n-grams reaching the minimum support survive; they populate a
:class:`~reelrank.bloom.BloomFilter` and an exact set.  Per-entry feature
extraction asks the filter first and confirms every "possibly present"
answer against the exact set, so extraction has neither false negatives
nor false positives.
"""

from __future__ import annotations

from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Sequence, Tuple

from . import tuning
from .bloom import BloomFilter
from .shards import ShardedCounter, chunked, run_chunks

Feature = Tuple[int, ...]


def ngram_windows(tokens: Sequence[int], windows: int) -> FrozenSet[Feature]:
    """Return the distinct n-grams of ``tokens`` for n in ``1..windows``."""
    seq = tuple(tokens)
    out = set()
    for n in range(1, max(0, windows) + 1):
        for i in range(len(seq) - n + 1):
            out.add(seq[i:i + n])
    return frozenset(out)


def count_ngrams_sequential(sequences: Iterable[Sequence[int]], windows: int) -> Counter:
    """Single-threaded document-frequency count (reference implementation)."""
    counts: Counter = Counter()
    for tokens in sequences:
        counts.update(ngram_windows(tokens, windows))
    return counts


def count_ngrams(
    sequences: Sequence[Sequence[int]],
    windows: int,
    workers: int = 1,
    shards: int = 1,
) -> Counter:
    """Document-frequency count using thread-local counts merged into shards.

    The result is identical to :func:`count_ngrams_sequential` for any
    worker and shard count.
    """
    counter: ShardedCounter[Feature] = ShardedCounter(shards)

    def count_chunk(chunk: Sequence[Sequence[int]]) -> int:
        local: Counter = Counter()
        for tokens in chunk:
            local.update(ngram_windows(tokens, windows))
        counter.merge(local)
        return len(chunk)

    chunks = chunked(list(sequences), workers)
    if workers > 1 and len(chunks) > 1:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            run_chunks(executor, count_chunk, chunks)
    else:
        run_chunks(None, count_chunk, chunks)
    return counter.to_counter()


@dataclass(frozen=True)
class FeatureIndex:
    """Frozen set of frequent features plus its membership filter."""

    windows: int
    frequent: FrozenSet[Feature]
    bloom: BloomFilter

    @classmethod
    def build(
        cls,
        sequences: Sequence[Sequence[int]],
        windows: int = tuning.NGRAM_WINDOWS,
        min_support: int = tuning.MIN_NGRAM_SUPPORT,
        fp_rate: float = tuning.BLOOM_FP_RATE,
        workers: int = 1,
        shards: int = 1,
    ) -> "FeatureIndex":
        counts = count_ngrams(sequences, windows, workers=workers, shards=shards)
        frequent = frozenset(f for f, c in counts.items() if c >= min_support)
        bloom = BloomFilter(len(frequent), fp_rate)
        for feature in sorted(frequent):
            bloom.add(feature)
        return cls(windows=windows, frequent=frequent, bloom=bloom)

    def __len__(self) -> int:
        return len(self.frequent)

    def __contains__(self, feature: object) -> bool:
        return feature in self.frequent

    def features_for(self, tokens: Sequence[int]) -> FrozenSet[Feature]:
        """Return the frequent features present in ``tokens``."""
        bloom = self.bloom
        frequent = self.frequent
        return frozenset(
            f for f in ngram_windows(tokens, self.windows) if bloom.might_contain(f) and f in frequent
        )


def extract_features(
    index: FeatureIndex,
    sequences: Sequence[Sequence[int]],
    workers: int = 1,
) -> List[FrozenSet[Feature]]:
    """Featurize many token sequences in parallel, preserving input order."""
    if workers <= 1 or len(sequences) <= tuning.PARALLEL_CHUNK_MIN:
        return [index.features_for(tokens) for tokens in sequences]
    with ThreadPoolExecutor(max_workers=workers) as executor:
        results: List[List[FrozenSet[Feature]]] = run_chunks(
            executor,
            lambda chunk: [index.features_for(tokens) for tokens in chunk],
            chunked(list(sequences), workers),
        )
    return [fs for chunk in results for fs in chunk]


def render_feature(feature: Feature, vocab_tokens: Sequence[str]) -> str:
    return "".join(vocab_tokens[t] for t in feature)
