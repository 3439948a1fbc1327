"""Corpus pair-merge tokenizer: determinism, tie-break and fallbacks."""

import random
import sys
from collections import Counter
from pathlib import Path

SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from reelrank.normalize import SEPARATOR, normalize
from reelrank.tokenizer import UNKNOWN_ID, UNKNOWN_TOKEN, PairTokenizer, derive_min_support


def merged_strings(tok: PairTokenizer):
    return [tok.vocab.token(merged) for _, merged in tok.merges]


def synthetic_corpus(n: int, seed: int = 3):
    rng = random.Random(seed)
    words = ["action", "comedy", "hero", "sequel", "clip", "nature", "episode", "final", "cut", "raw"]
    out = []
    for _ in range(n):
        parts = [rng.choice(words) for _ in range(rng.randint(2, 4))]
        out.append(normalize(SEPARATOR.join(["movies", rng.choice(words), ".".join(parts) + ".mp4"])))
    return out


# ============================================================================
# Merge order and tie-break
# ============================================================================

def test_equal_counts_merge_lexicographically_smallest_pair_first():
    tok = PairTokenizer.train(["cd", "ab", "cd", "ab"], min_support=2)
    assert merged_strings(tok) == ["ab", "cd"]


def test_more_frequent_pair_wins_over_smaller_pair():
    tok = PairTokenizer.train(["ab", "xy", "xy", "xy"], min_support=1)
    assert merged_strings(tok)[0] == "xy"


def test_repeated_phrase_becomes_word_tokens():
    tok = PairTokenizer.train(["hello world"] * 10)
    assert tok.decode(tok.encode("hello world")) == ["hello", " ", "world"]


def test_training_is_deterministic_and_order_independent():
    corpus = synthetic_corpus(150)
    shuffled = list(corpus)
    random.Random(11).shuffle(shuffled)
    a = PairTokenizer.train(corpus, min_support=3)
    b = PairTokenizer.train(corpus, min_support=3)
    c = PairTokenizer.train(shuffled, min_support=3)
    assert a.vocab.tokens == b.vocab.tokens == c.vocab.tokens
    assert a.merges == b.merges == c.merges


def test_parallel_training_matches_sequential():
    corpus = synthetic_corpus(400)
    seq = PairTokenizer.train(corpus, min_support=3, workers=1, shards=1)
    par = PairTokenizer.train(corpus, min_support=3, workers=4, shards=8)
    assert par.vocab.tokens == seq.vocab.tokens
    assert par.merges == seq.merges


def test_encode_matches_training_segmentation():
    corpus = synthetic_corpus(120)
    tok = PairTokenizer.train(corpus, min_support=3)
    for text in corpus[:20]:
        assert "".join(tok.decode(tok.encode(text))) == text


# ============================================================================
# Reserved tokens and degenerate corpora
# ============================================================================

def test_reserved_tokens_occupy_first_ids():
    tok = PairTokenizer.train([])
    assert tok.vocab.tokens[:3] == [UNKNOWN_TOKEN, " ", SEPARATOR]
    assert tok.vocab.reserved == 3


def test_pairs_touching_reserved_tokens_never_merge():
    tok = PairTokenizer.train(["a b" + SEPARATOR + "c"] * 20, min_support=2)
    for text in merged_strings(tok):
        assert " " not in text and SEPARATOR not in text


def test_empty_corpus_falls_back_to_unknown_tokens():
    tok = PairTokenizer.train([])
    assert tok.merges == []
    assert tok.encode("ab") == [UNKNOWN_ID, UNKNOWN_ID]


def test_corpus_without_repeats_is_character_level():
    tok = PairTokenizer.train(["abc", "xyz"], min_support=2)
    assert tok.merges == []
    assert tok.decode(tok.encode("abc")) == ["a", "b", "c"]


def test_unseen_characters_map_to_unknown():
    tok = PairTokenizer.train(["ab"] * 5)
    ids = tok.encode("abq")
    assert tok.decode(ids) == ["ab", UNKNOWN_TOKEN]


def test_derived_min_support():
    assert derive_min_support(0) == 2
    assert derive_min_support(3) == 2
    assert derive_min_support(10) == 3
    assert derive_min_support(1023) == 10


# ============================================================================
# Merge selection against a plain re-count of every pair
# ============================================================================

def recount_merges(corpus, min_support):
    """Merge strings chosen by recounting all pairs before every merge."""
    reserved = {" ", SEPARATOR}
    seqs = [list(s) for s in corpus]
    merges = []
    while True:
        counts = Counter()
        for seq in seqs:
            for a, b in zip(seq, seq[1:]):
                if a not in reserved and b not in reserved:
                    counts[(a, b)] += 1
        if not counts:
            return merges
        (left, right), count = min(counts.items(), key=lambda kv: (-kv[1], kv[0][0], kv[0][1]))
        if count < min_support:
            return merges
        merges.append(left + right)
        for i, seq in enumerate(seqs):
            out = []
            j = 0
            while j < len(seq):
                if j + 1 < len(seq) and seq[j] == left and seq[j + 1] == right:
                    out.append(left + right)
                    j += 2
                else:
                    out.append(seq[j])
                    j += 1
            seqs[i] = out


def test_incremental_merge_selection_matches_full_recount():
    corpus = synthetic_corpus(250, seed=5) + ["aaaa", "aaa", "abab", "ababab"]
    expected = recount_merges(corpus, 2)
    assert len(expected) > 20
    assert merged_strings(PairTokenizer.train(corpus, min_support=2)) == expected
    assert merged_strings(PairTokenizer.train(corpus, min_support=2, workers=4, shards=8)) == expected


def test_large_corpus_trains_many_merges():
    rng = random.Random(9)
    pool = ["".join(rng.choice("abcdefghijklmnopqrstuvwxyz") for _ in range(rng.randint(4, 9))) for _ in range(600)]
    corpus = [SEPARATOR.join(rng.choice(pool) for _ in range(3)) + " mp4" for _ in range(3000)]
    tok = PairTokenizer.train(corpus, workers=4, shards=8)
    assert len(tok.merges) > 500
    for text in corpus[:50]:
        assert "".join(tok.decode(tok.encode(text))) == text
