"""Probabilistic membership filter for frequent n-gram features.

The filter is sized from an expected capacity and a target false-positive
rate using the usual formulas::

    m = -n * ln(p) / ln(2)^2      (bits)
    k = m / n * ln(2)             (hash functions)

Bit positions come from double hashing a single 128-bit BLAKE2b digest, so
every process computes the same positions for the same item (Python's
built-in ``hash`` is salted per process and is not used here).
"""

from __future__ import annotations

import hashlib
import math
from typing import Iterable, List, Tuple, Union

import numpy as np

Item = Union[bytes, str, Tuple[int, ...]]


def _encode(item: Item) -> bytes:
    if isinstance(item, bytes):
        return item
    if isinstance(item, str):
        return item.encode("utf-8")
    return b"t:" + ",".join(str(int(x)) for x in item).encode("ascii")


def optimal_size(capacity: int, fp_rate: float) -> Tuple[int, int]:
    """Return ``(bits, hashes)`` for ``capacity`` items at ``fp_rate``."""
    if not 0.0 < fp_rate < 1.0:
        raise ValueError("fp_rate must be between 0 and 1 (exclusive)")
    n = max(1, int(capacity))
    bits = max(8, int(math.ceil(-n * math.log(fp_rate) / (math.log(2) ** 2))))
    hashes = max(1, int(round(bits / n * math.log(2))))
    return bits, hashes


class BloomFilter:
    """Fixed-size bloom filter; add-only, no false negatives."""

    def __init__(self, capacity: int, fp_rate: float = 0.01) -> None:
        self.capacity = max(1, int(capacity))
        self.fp_rate = float(fp_rate)
        self.num_bits, self.num_hashes = optimal_size(self.capacity, self.fp_rate)
        self._bits = np.zeros((self.num_bits + 7) // 8, dtype=np.uint8)
        self._count = 0

    @classmethod
    def from_items(cls, items: Iterable[Item], fp_rate: float = 0.01) -> "BloomFilter":
        items = list(items)
        bloom = cls(len(items), fp_rate)
        for item in items:
            bloom.add(item)
        return bloom

    def _positions(self, item: Item) -> List[int]:
        digest = hashlib.blake2b(_encode(item), digest_size=16).digest()
        h1 = int.from_bytes(digest[:8], "little")
        h2 = int.from_bytes(digest[8:], "little") | 1
        m = self.num_bits
        return [(h1 + i * h2) % m for i in range(self.num_hashes)]

    def add(self, item: Item) -> None:
        for pos in self._positions(item):
            self._bits[pos >> 3] |= np.uint8(1 << (pos & 7))
        self._count += 1

    def might_contain(self, item: Item) -> bool:
        """``False`` means definitely absent; ``True`` means possibly present."""
        bits = self._bits
        return all(bits[pos >> 3] & (1 << (pos & 7)) for pos in self._positions(item))

    __contains__ = might_contain

    def __len__(self) -> int:
        return self._count

    def fill_ratio(self) -> float:
        """Fraction of bits set (useful for reports)."""
        return float(np.unpackbits(self._bits)[: self.num_bits].sum()) / self.num_bits
