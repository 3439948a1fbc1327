"""Candidate entries and the statistics shared by the classifiers."""

from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple


class Label(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"


class EntryState(str, Enum):
    UNCLASSIFIED = "unclassified"
    POSITIVE = "positive"
    NEGATIVE = "negative"

    @classmethod
    def from_label(cls, label: Label) -> "EntryState":
        return cls.POSITIVE if label is Label.POSITIVE else cls.NEGATIVE


@dataclass
class Entry:
    """One candidate file.

    ``order`` is the discovery index and the final ranking tie-break.
    ``raw_scores`` and ``normalized_scores`` are keyed by classifier name and
    rewritten by every ranking pass.
    """

    path: Path
    size: int = 0
    created: float = 0.0
    order: int = 0
    dir_file_count: int = 0
    age_seconds: float = 0.0
    normalized: str = ""
    tokens: Tuple[int, ...] = ()
    features: FrozenSet[Tuple[int, ...]] = frozenset()
    raw_scores: Dict[str, float] = field(default_factory=dict)
    normalized_scores: Dict[str, float] = field(default_factory=dict)
    combined: float = 0.0
    state: EntryState = EntryState.UNCLASSIFIED

    @property
    def directory(self) -> Path:
        return self.path.parent

    @property
    def is_unclassified(self) -> bool:
        return self.state is EntryState.UNCLASSIFIED

    def classify(self, label: Label) -> None:
        """Move to a terminal state; classifying twice raises ``ValueError``."""
        if not self.is_unclassified:
            raise ValueError(f"{self.path} is already {self.state.value}")
        self.state = EntryState.from_label(label)


@dataclass
class PoolStats:
    """Pool-wide statistics needed by the metric classifiers.

    ``dir_counts`` holds the number of active entries per directory and is
    maintained as entries join or leave the pool.
    """

    now: float = field(default_factory=time.time)
    dir_counts: Counter = field(default_factory=Counter)

    @classmethod
    def from_entries(cls, entries: Iterable[Entry], now: Optional[float] = None) -> "PoolStats":
        stats = cls(now=time.time() if now is None else now)
        for entry in entries:
            stats.add_entry(entry)
        return stats

    def add_entry(self, entry: Entry) -> None:
        self.dir_counts[entry.directory] += 1

    def remove_entry(self, entry: Entry) -> None:
        directory = entry.directory
        self.dir_counts[directory] -= 1
        if self.dir_counts[directory] <= 0:
            del self.dir_counts[directory]

    def dir_file_count(self, entry: Entry) -> int:
        return self.dir_counts.get(entry.directory, 0)

    def age_seconds(self, entry: Entry) -> float:
        return max(0.0, self.now - entry.created)

    def refresh(self, entry: Entry) -> None:
        """Copy the live directory count and age onto ``entry``."""
        entry.dir_file_count = self.dir_file_count(entry)
        entry.age_seconds = self.age_seconds(entry)


def active(entries: Iterable[Entry]) -> List[Entry]:
    return [e for e in entries if e.is_unclassified]
