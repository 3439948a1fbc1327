"""Classifier set.

Four scorers share one contract, ``score(entry, stats) -> float``:

``FeatureClassifier``
    Online log-odds model over n-gram features.  For each feature present
    in an entry it adds::

        log((pos + 1) / (pos_total + V)) - log((neg + 1) / (neg_total + V))

    where ``V`` is the number of distinct frequent features.  With no
    decisions every term is ``log(1/V) - log(1/V) == 0``.

``FileSizeClassifier`` / ``DirSizeClassifier`` / ``FileAgeClassifier``
    ``sign(bias) * log_|bias|(metric + offset)``.  A classifier whose bias is
    ``None`` is never built, so it is excluded from combination rather than
    scored as zero.

Only the session's decision path mutates :class:`FeatureTable` after
bootstrap; bootstrap seeding counts in parallel through sharded counters.
"""

from __future__ import annotations

import math
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, FrozenSet, List, Optional, Sequence, Tuple, Union

from .entry import Entry, Label, PoolStats
from .ngrams import Feature, render_feature
from .shards import ShardedCounter, chunked, run_chunks

if TYPE_CHECKING:  # pragma: no cover
    from .config_service import SessionConfig

LabeledFeatures = Tuple[FrozenSet[Feature], Label]


@dataclass
class FeatureTable:
    """Per-feature positive/negative counts plus per-class decision totals."""

    vocab_size: int = 1
    pos: Counter = field(default_factory=Counter)
    neg: Counter = field(default_factory=Counter)
    pos_total: int = 0
    neg_total: int = 0

    def __post_init__(self) -> None:
        self.vocab_size = max(1, int(self.vocab_size))

    @property
    def decisions(self) -> int:
        return self.pos_total + self.neg_total

    def update(self, features: FrozenSet[Feature], label: Label) -> None:
        """Apply one decision: bump every feature of the entry and its class total."""
        if label is Label.POSITIVE:
            self.pos.update(features)
            self.pos_total += 1
        else:
            self.neg.update(features)
            self.neg_total += 1

    def seed(self, decisions: Sequence[LabeledFeatures], workers: int = 1, shards: int = 1) -> None:
        """Replay logged decisions, counting in parallel into sharded counters."""
        pos: ShardedCounter[Feature] = ShardedCounter(shards)
        neg: ShardedCounter[Feature] = ShardedCounter(shards)
        totals: ShardedCounter[Label] = ShardedCounter(1)

        def count_chunk(chunk: Sequence[LabeledFeatures]) -> int:
            local_pos: Counter = Counter()
            local_neg: Counter = Counter()
            local_totals: Counter = Counter()
            for features, label in chunk:
                (local_pos if label is Label.POSITIVE else local_neg).update(features)
                local_totals[label] += 1
            pos.merge(local_pos)
            neg.merge(local_neg)
            totals.merge(local_totals)
            return len(chunk)

        chunks = chunked(list(decisions), workers)
        if workers > 1 and len(chunks) > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                run_chunks(executor, count_chunk, chunks)
        else:
            run_chunks(None, count_chunk, chunks)

        self.pos.update(pos.to_counter())
        self.neg.update(neg.to_counter())
        self.pos_total += totals.get(Label.POSITIVE)
        self.neg_total += totals.get(Label.NEGATIVE)

    def log_odds(self, feature: Feature) -> float:
        v = self.vocab_size
        return math.log((self.pos[feature] + 1) / (self.pos_total + v)) - math.log(
            (self.neg[feature] + 1) / (self.neg_total + v)
        )


@dataclass
class FeatureClassifier:
    table: FeatureTable
    name: str = "ngram"

    def score(self, entry: Entry, stats: Optional[PoolStats] = None) -> float:
        if not self.table.decisions:
            return 0.0
        log_odds = self.table.log_odds
        return sum(log_odds(f) for f in entry.features)

    def explain(
        self, features: FrozenSet[Feature], vocab_tokens: Sequence[str], limit: int = 50
    ) -> List[Tuple[str, float]]:
        """Top ``limit`` features by absolute contribution, rendered as text."""
        scored = [(render_feature(f, vocab_tokens), self.table.log_odds(f)) for f in features]
        scored.sort(key=lambda item: (-abs(item[1]), item[0]))
        return scored[:limit]


@dataclass
class _MetricClassifier:
    """Shared log-scaled metric scoring; subclasses supply ``metric``."""

    bias: float
    offset: float = 0.0
    name: str = "metric"

    def __post_init__(self) -> None:
        if not abs(self.bias) > 1.0:
            raise ValueError(f"{self.name} bias must satisfy |bias| > 1 (got {self.bias})")
        self._log_base = math.log(abs(self.bias))
        self._sign = -1.0 if self.bias < 0 else 1.0

    def metric(self, entry: Entry, stats: PoolStats) -> float:  # pragma: no cover - abstract
        raise NotImplementedError

    def score(self, entry: Entry, stats: PoolStats) -> float:
        value = max(self.metric(entry, stats) + self.offset, 1.0)
        return self._sign * math.log(value) / self._log_base


@dataclass
class FileSizeClassifier(_MetricClassifier):
    name: str = "file_size"

    def metric(self, entry: Entry, stats: PoolStats) -> float:
        return float(entry.size)


@dataclass
class DirSizeClassifier(_MetricClassifier):
    name: str = "dir_size"

    def metric(self, entry: Entry, stats: PoolStats) -> float:
        return float(stats.dir_file_count(entry))


@dataclass
class FileAgeClassifier(_MetricClassifier):
    name: str = "file_age"

    def metric(self, entry: Entry, stats: PoolStats) -> float:
        return stats.age_seconds(entry)


Classifier = Union[FeatureClassifier, FileSizeClassifier, DirSizeClassifier, FileAgeClassifier]


def build_classifiers(table: FeatureTable, config: "SessionConfig") -> List[Classifier]:
    """Feature classifier first, then each metric classifier that has a bias."""
    classifiers: List[Classifier] = [FeatureClassifier(table)]
    metric_specs: List[Tuple[type, Optional[float], float]] = [
        (FileSizeClassifier, config.file_size_bias, config.file_size_offset),
        (DirSizeClassifier, config.dir_size_bias, config.dir_size_offset),
        (FileAgeClassifier, config.file_age_bias, config.file_age_offset),
    ]
    for cls, bias, offset in metric_specs:
        if bias is not None:
            classifiers.append(cls(bias=float(bias), offset=float(offset)))
    return classifiers
