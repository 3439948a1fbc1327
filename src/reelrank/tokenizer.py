"""Corpus-trained pair-merge tokenizer.

:meth:`PairTokenizer.train` learns a sub-word vocabulary from normalized
paths without looking at any labels.  Every string starts as a sequence of
single characters; the most frequent adjacent pair across the whole corpus
is merged into a new token, the merge is appended to the ordered merge
table, and the process repeats until no pair reaches the minimum support.
Pair counts live in a sharded counter; the next merge is taken from a
lazily refreshed max-heap, so a merge only touches the strings that contain
the merged pair.

Rules that keep training reproducible:

- Reserved tokens (``<UNK>``, space and the path separator) occupy the first
  ids and never take part in a merge.
- Character tokens are created in sorted character order, so ids do not
  depend on corpus order.
- Among pairs with the same count, the pair whose ``(left, right)`` token
  strings sort first wins.

:meth:`PairTokenizer.encode` replays the merge table in learned order over
the character split of any string; characters never seen in training map to
``<UNK>``.  A corpus with no repeated pairs simply yields character tokens.
"""

from __future__ import annotations

import heapq
import math
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from . import tuning
from .normalize import SEPARATOR
from .shards import ShardedCounter, chunked, run_chunks

UNKNOWN_TOKEN = "<UNK>"
UNKNOWN_ID = 0

Pair = Tuple[int, int]


@dataclass
class Vocabulary:
    """Bidirectional token/id mapping plus the ordered merge table."""

    tokens: List[str] = field(default_factory=list)
    ids: Dict[str, int] = field(default_factory=dict)
    reserved: int = 0
    merges: List[Tuple[Pair, int]] = field(default_factory=list)

    @classmethod
    def with_reserved(cls, reserved_chars: str = " " + SEPARATOR) -> "Vocabulary":
        vocab = cls()
        vocab.get_or_create(UNKNOWN_TOKEN)
        for ch in reserved_chars:
            vocab.get_or_create(ch)
        vocab.reserved = len(vocab.tokens)
        return vocab

    def get_or_create(self, text: str) -> int:
        token_id = self.ids.get(text)
        if token_id is None:
            token_id = len(self.tokens)
            self.tokens.append(text)
            self.ids[text] = token_id
        return token_id

    def token_id(self, text: str) -> int:
        return self.ids.get(text, UNKNOWN_ID)

    def token(self, token_id: int) -> str:
        return self.tokens[token_id]

    def is_reserved(self, token_id: int) -> bool:
        return token_id < self.reserved

    def merge(self, pair: Pair) -> int:
        merged = self.get_or_create(self.tokens[pair[0]] + self.tokens[pair[1]])
        self.merges.append((pair, merged))
        return merged

    def __len__(self) -> int:
        return len(self.tokens)


def derive_min_support(corpus_size: int) -> int:
    """Merge threshold for a corpus of ``corpus_size`` strings.

    Rare pairs are never merged, which acts as crude stemming: ``cook`` stays
    a shared stem across ``cooking``/``cooked`` unless the suffix is common.
    """
    return max(tuning.MIN_MERGE_SUPPORT_FLOOR, int(math.log2(corpus_size + 1)))


def _pairs(seq: Sequence[int], reserved: int) -> List[Pair]:
    return [(a, b) for a, b in zip(seq, seq[1:]) if a >= reserved and b >= reserved]


def _replace(seq: Sequence[int], pair: Pair, merged: int) -> List[int]:
    a, b = pair
    out: List[int] = []
    i = 0
    n = len(seq)
    while i < n:
        if seq[i] == a and i + 1 < n and seq[i + 1] == b:
            out.append(merged)
            i += 2
        else:
            out.append(seq[i])
            i += 1
    return out


class PairTokenizer:
    """Apply a learned merge table to new strings."""

    def __init__(self, vocab: Vocabulary) -> None:
        self.vocab = vocab
        self._ranks: Dict[Pair, Tuple[int, int]] = {
            pair: (rank, merged) for rank, (pair, merged) in enumerate(vocab.merges)
        }

    @property
    def merges(self) -> List[Tuple[Pair, int]]:
        return self.vocab.merges

    # ------------------------------------------------------------------
    # Training
    @classmethod
    def train(
        cls,
        corpus: Iterable[str],
        min_support: Optional[int] = None,
        workers: int = 1,
        shards: int = 1,
    ) -> "PairTokenizer":
        strings = list(corpus)
        vocab = Vocabulary.with_reserved()
        for ch in sorted({ch for s in strings for ch in s}):
            vocab.get_or_create(ch)
        if not strings:
            return cls(vocab)

        threshold = derive_min_support(len(strings)) if min_support is None else int(min_support)
        reserved = vocab.reserved
        seqs: List[List[int]] = [[vocab.ids[ch] for ch in s] for s in strings]
        counts: ShardedCounter[Pair] = ShardedCounter(shards)
        index: Dict[Pair, Set[int]] = {}

        def count_chunk(idxs: Sequence[int]) -> Dict[Pair, List[int]]:
            local: Counter = Counter()
            seen: Dict[Pair, List[int]] = {}
            for idx in idxs:
                for pair in _pairs(seqs[idx], reserved):
                    local[pair] += 1
                    seen.setdefault(pair, []).append(idx)
            counts.merge(local)
            return seen

        def rewrite_chunk(
            pair: Pair, merged: int, idxs: Sequence[int]
        ) -> Tuple[List[Tuple[int, List[int], Set[Pair], Set[Pair]]], List[Pair]]:
            local: Counter = Counter()
            updates = []
            for idx in idxs:
                old_seq = seqs[idx]
                new_seq = _replace(old_seq, pair, merged)
                old_pairs = _pairs(old_seq, reserved)
                new_pairs = _pairs(new_seq, reserved)
                local.subtract(old_pairs)
                local.update(new_pairs)
                updates.append((idx, new_seq, set(old_pairs), set(new_pairs)))
            counts.merge(local)
            return updates, [p for p, delta in local.items() if delta]

        def heap_entry(p: Pair, count: int) -> Tuple[int, str, str, Pair]:
            return (-count, vocab.tokens[p[0]], vocab.tokens[p[1]], p)

        executor = ThreadPoolExecutor(max_workers=workers) if workers > 1 else None
        try:
            for seen in run_chunks(executor, count_chunk, chunked(range(len(seqs)), workers)):
                for p, idxs in seen.items():
                    index.setdefault(p, set()).update(idxs)

            # Lazy max-heap: an entry whose count no longer matches the counter
            # is stale, and a fresh entry was pushed when the count changed.
            heap = [heap_entry(p, c) for p, c in counts.items()]
            heapq.heapify(heap)
            while heap:
                neg_count, _, _, pair = heapq.heappop(heap)
                count = -neg_count
                if counts.get(pair) != count:
                    continue
                if count < threshold:
                    break

                merged = vocab.merge(pair)
                affected = sorted(index.get(pair, ()))
                changed: Set[Pair] = set()
                rewrite = partial(rewrite_chunk, pair, merged)
                for updates, deltas in run_chunks(executor, rewrite, chunked(affected, workers)):
                    changed.update(deltas)
                    for idx, new_seq, old_pairs, new_pairs in updates:
                        seqs[idx] = new_seq
                        for p in old_pairs - new_pairs:
                            members = index.get(p)
                            if members is not None:
                                members.discard(idx)
                                if not members:
                                    del index[p]
                        for p in new_pairs - old_pairs:
                            index.setdefault(p, set()).add(idx)
                for p in changed:
                    current = counts.get(p)
                    if current > 0:
                        heapq.heappush(heap, heap_entry(p, current))
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

        return cls(vocab)

    # ------------------------------------------------------------------
    # Encoding
    def encode(self, text: str) -> List[int]:
        ids = [self.vocab.token_id(ch) for ch in text]
        if not self._ranks:
            return ids
        while len(ids) > 1:
            best: Optional[Tuple[int, int]] = None
            best_pair: Optional[Pair] = None
            for pair in zip(ids, ids[1:]):
                hit = self._ranks.get(pair)
                if hit is not None and (best is None or hit[0] < best[0]):
                    best = hit
                    best_pair = pair
            if best is None or best_pair is None:
                break
            ids = _replace(ids, best_pair, best[1])
        return ids

    def decode(self, ids: Iterable[int]) -> List[str]:
        return [self.vocab.token(i) for i in ids]
