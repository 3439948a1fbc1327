"""Session orchestrator.

A :class:`Session` owns the candidate pool and every piece of learned
state.  Its lifecycle:

bootstrap
    Discover files, train the tokenizer on every known path (candidates plus
    already decided ones, each relative to the playlist directory), build the
    n-gram index, featurize every entry and replay the decision log into the
    feature table.  The tokenizer and index are frozen into a
    :class:`CorpusModel` and only read afterwards.

run
    Rank the active pool, present the selected batch one candidate at a
    time, and apply each answer in arrival order: the decision is written to
    the log first, then the entry leaves the pool and the feature table is
    updated.  The pool is re-ranked after every batch.

score
    Bootstrap and a single ranking pass; the decision log is never written.

Progress lines go through ``_emit_log`` (console and/or ``log_callback``);
every public operation returns a JSON-serialisable report dict.
"""

from __future__ import annotations

import os
import threading
import time
from collections import Counter
from concurrent.futures import Executor, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, Iterator, List, Optional, Sequence, Set, Tuple

from .classifiers import Classifier, FeatureClassifier, FeatureTable, build_classifiers
from .config_service import SessionConfig
from .entry import Entry, Label, PoolStats, active
from .ngrams import Feature, FeatureIndex, extract_features
from .normalize import normalize
from .playback import FeedbackChannel, FeedbackProvider, FeedbackResult
from .playlist import M3uPlaylist
from .ranking import Ranker
from .shards import chunked, run_chunks
from .tokenizer import PairTokenizer
from .walk import walk


def path_text(path: Path, base: Path) -> str:
    """Normalized text of ``path`` relative to ``base`` (absolute when not relatable)."""
    try:
        rel = os.path.relpath(path, base)
    except ValueError:
        rel = str(path)
    return normalize(rel)


@dataclass(frozen=True)
class CorpusModel:
    """Frozen tokenizer + feature index shared read-only by scoring tasks."""

    tokenizer: PairTokenizer
    index: FeatureIndex
    base: Path

    @property
    def vocab_tokens(self) -> List[str]:
        return self.tokenizer.vocab.tokens

    def featurize(self, path: Path) -> Tuple[str, Tuple[int, ...], FrozenSet[Feature]]:
        text = path_text(path, self.base)
        tokens = tuple(self.tokenizer.encode(text))
        return text, tokens, self.index.features_for(tokens)


@dataclass
class Session:
    """Interactive ranking session over one decision log."""

    config: SessionConfig
    playlist: M3uPlaylist
    feedback: Optional[FeedbackProvider] = None
    log_callback: Optional[Callable[[str], None]] = None
    log_to_console: bool = True

    entries: List[Entry] = field(init=False, default_factory=list)
    model: Optional[CorpusModel] = field(init=False, default=None)
    table: Optional[FeatureTable] = field(init=False, default=None)
    classifiers: List[Classifier] = field(init=False, default_factory=list)
    ranker: Optional[Ranker] = field(init=False, default=None)
    stats: PoolStats = field(init=False, default_factory=PoolStats)
    _timings: Dict[str, float] = field(init=False, default_factory=dict)
    _cancel: threading.Event = field(init=False, default_factory=threading.Event, repr=False)
    _bootstrap_report: Optional[Dict[str, Any]] = field(init=False, default=None)

    # ------------------------------------------------------------------
    # Logging helpers
    def _emit_log(self, msg: str) -> None:
        if self.log_to_console:
            print(msg)
        if self.log_callback is not None:
            try:
                self.log_callback(msg)
            except Exception:
                pass

    @contextmanager
    def _timed(self, name: str) -> Iterator[None]:
        self._emit_log(f"[{name}] start")
        started = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - started
            self._timings[name] = round(self._timings.get(name, 0.0) + elapsed, 6)
            self._emit_log(f"[{name}] done in {elapsed:.3f}s")

    def _executor(self) -> Optional[Executor]:
        workers = self.config.workers
        return ThreadPoolExecutor(max_workers=workers) if workers > 1 else None

    # ------------------------------------------------------------------
    # State
    @property
    def pool(self) -> List[Entry]:
        """Active (unclassified) entries in discovery order."""
        return active(self.entries)

    def cancel(self) -> None:
        """Stop presenting candidates; applied decisions stay applied."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # ------------------------------------------------------------------
    # Bootstrap
    def bootstrap(self) -> Dict[str, Any]:
        """Discover, tokenize, featurize and seed; idempotent."""
        if self._bootstrap_report is not None:
            return self._bootstrap_report
        cfg = self.config
        workers = cfg.workers
        report: Dict[str, Any] = {
            "roots": [str(r) for r in cfg.roots],
            "playlist": str(self.playlist.path),
            "files_discovered": 0,
            "files_skipped_extension": 0,
            "dirs_scanned": 0,
            "decisions_loaded": len(self.playlist.entries),
            "candidates": 0,
            "already_classified": 0,
            "failed": 0,
            "errors": [],
        }

        with self._timed("walk"):
            found = walk(cfg.roots, cfg.extensions, workers=workers)
        report["files_discovered"] = len(found.files)
        report["files_skipped_extension"] = found.skipped_extension
        report["dirs_scanned"] = found.dirs_scanned
        report["errors"].extend(found.errors)
        report["failed"] = len(found.errors)
        for err in found.errors:
            self._emit_log(f"Skipped {err['path']}: {err['error']}")

        decided = self.playlist.decided()
        entries: List[Entry] = []
        for order, info in enumerate(found.files):
            entry = Entry(path=info.path, size=info.size, created=info.created, order=order)
            label = decided.get(info.path)
            if label is not None:
                entry.classify(label)
            entries.append(entry)

        known_paths: List[Path] = [e.path for e in entries]
        seen: Set[Path] = set(known_paths)
        for decision in self.playlist.entries:
            if decision.path not in seen:
                seen.add(decision.path)
                known_paths.append(decision.path)

        base = self.playlist.root
        executor = self._executor()
        try:
            with self._timed("tokenizer"):
                texts = self._map(executor, lambda p: path_text(p, base), known_paths)
                tokenizer = PairTokenizer.train(
                    texts,
                    min_support=cfg.min_merge_support,
                    workers=workers,
                    shards=cfg.shards,
                )
                sequences = self._map(executor, lambda t: tuple(tokenizer.encode(t)), texts)
            with self._timed("features"):
                index = FeatureIndex.build(
                    sequences,
                    windows=cfg.windows,
                    min_support=cfg.min_ngram_support,
                    fp_rate=cfg.fp_rate,
                    workers=workers,
                    shards=cfg.shards,
                )
                features = extract_features(index, sequences, workers=workers)
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

        by_path: Dict[Path, Tuple[str, Tuple[int, ...], FrozenSet[Feature]]] = {
            p: (t, s, f) for p, t, s, f in zip(known_paths, texts, sequences, features)
        }
        for entry in entries:
            entry.normalized, entry.tokens, entry.features = by_path[entry.path]

        self.model = CorpusModel(tokenizer, index, base)
        self.table = FeatureTable(vocab_size=len(index))
        with self._timed("seed"):
            self.table.seed(
                [(by_path[d.path][2], d.label) for d in self.playlist.entries],
                workers=workers,
                shards=cfg.shards,
            )

        self.entries = entries
        self.classifiers = build_classifiers(self.table, cfg)
        self.ranker = Ranker(
            self.classifiers,
            workers=workers,
            batch_size=cfg.batch_size,
            random_top_n=cfg.random_top_n,
            seed=cfg.seed,
        )
        self.stats = PoolStats.from_entries(self.pool)

        report["candidates"] = len(self.pool)
        report["already_classified"] = len(entries) - len(self.pool)
        report["vocabulary"] = len(tokenizer.vocab)
        report["merges"] = len(tokenizer.merges)
        report["features"] = len(index)
        report["filter_bits"] = index.bloom.num_bits
        report["filter_hashes"] = index.bloom.num_hashes
        report["seeded"] = {"positive": self.table.pos_total, "negative": self.table.neg_total}
        report["classifiers"] = [c.name for c in self.classifiers]
        self._emit_log(
            f"Bootstrap: candidates={report['candidates']} decided={report['decisions_loaded']} "
            f"vocab={report['vocabulary']} features={report['features']} failed={report['failed']}"
        )
        self._bootstrap_report = report
        return report

    def _map(self, executor: Optional[Executor], fn: Callable[[Any], Any], items: Sequence[Any]) -> List[Any]:
        chunks = chunked(list(items), self.config.workers)
        results = run_chunks(executor, lambda chunk: [fn(x) for x in chunk], chunks)
        return [r for chunk in results for r in chunk]

    # ------------------------------------------------------------------
    # Ranking
    def rank(self, entries: Optional[Sequence[Entry]] = None) -> List[Entry]:
        """Score and order ``entries`` (default: the active pool)."""
        self.bootstrap()
        assert self.ranker is not None
        pool = self.pool if entries is None else list(entries)
        self.stats.now = time.time()
        with self._timed("rank"):
            return self.ranker.rank(pool, self.stats)

    def explain(self, entry: Entry, limit: Optional[int] = None) -> List[Tuple[str, float]]:
        assert self.model is not None
        feature_classifier = self.classifiers[0]
        assert isinstance(feature_classifier, FeatureClassifier)
        n = self.config.explain_limit if limit is None else limit
        return feature_classifier.explain(entry.features, self.model.vocab_tokens, limit=n)

    def apply_decision(self, entry: Entry, label: Label) -> None:
        """Persist one decision, then learn from it.

        A :class:`~reelrank.playlist.PersistenceError` propagates before any
        in-memory state changes.
        """
        assert self.table is not None
        if not entry.is_unclassified:
            raise ValueError(f"{entry.path} is already {entry.state.value}")
        self.playlist.append(entry.path, label)
        entry.classify(label)
        self.stats.remove_entry(entry)
        self.table.update(entry.features, label)

    # ------------------------------------------------------------------
    # Interactive loop
    def _await(self, channel: FeedbackChannel, poll: float = 0.1) -> Optional[FeedbackResult]:
        while True:
            result = channel.receive(timeout=poll)
            if result is not None:
                return result
            if self.cancelled:
                return None

    def _present(self, entry: Entry) -> None:
        self._emit_log(f"Next: {entry.path} combined={entry.combined:.4f}")
        for name in (self.ranker.names if self.ranker else []):
            self._emit_log(
                f"  {name}: raw={entry.raw_scores.get(name, 0.0):.4f} "
                f"norm={entry.normalized_scores.get(name, 0.0):.4f}"
            )
        if self.table is not None and self.table.decisions:
            for text, weight in self.explain(entry)[:10]:
                self._emit_log(f"  {weight:+.3f} {text!r}")

    def run(self) -> Dict[str, Any]:
        """Bootstrap, then present candidates until the pool is exhausted.

        Stops early on cancellation or when the feedback error policy is
        ``abort``.  Persistence failures propagate.
        """
        report: Dict[str, Any] = {
            "bootstrap": self.bootstrap(),
            "dry_run": self.config.dry_run,
            "presented": 0,
            "positive": 0,
            "negative": 0,
            "feedback_errors": [],
            "skipped": [],
            "cancelled": False,
            "aborted": False,
            "ranking_passes": 0,
        }
        cfg = self.config

        if cfg.dry_run:
            ranked = self.rank()
            report["ranking_passes"] = 1
            report["selected"] = [str(e.path) for e in self.ranker.select(ranked)] if self.ranker else []
            report["remaining"] = len(self.pool)
            report["timings"] = dict(self._timings)
            self._emit_log(f"Dry run: {len(ranked)} candidates ranked")
            return report

        if self.feedback is None:
            raise ValueError("a feedback provider is required unless dry_run is set")

        skipped: Set[Path] = set()
        attempts: Counter = Counter()
        stop = False
        with FeedbackChannel(self.feedback) as channel:
            while not stop and not self.cancelled:
                pool = [e for e in self.pool if e.path not in skipped]
                if not pool:
                    break
                ranked = self.rank(pool)
                report["ranking_passes"] += 1
                assert self.ranker is not None
                for entry in self.ranker.select(ranked):
                    if self.cancelled:
                        break
                    self._present(entry)
                    channel.submit(entry.path)
                    report["presented"] += 1
                    result = self._await(channel)
                    if result is None:
                        break
                    label = result.outcome.label
                    if label is not None:
                        self.apply_decision(entry, label)
                        report[label.value] += 1
                        self._emit_log(f"Decision: {label.value} {entry.path}")
                        continue

                    report["feedback_errors"].append(
                        {"path": str(entry.path), "outcome": result.outcome.value, "message": result.message}
                    )
                    self._emit_log(f"Feedback {result.outcome.value} for {entry.path}: {result.message}")
                    policy = cfg.feedback_error_policy
                    if policy == "abort":
                        report["aborted"] = True
                        stop = True
                        break
                    attempts[entry.path] += 1
                    if policy == "skip" or attempts[entry.path] > cfg.max_retries:
                        skipped.add(entry.path)
                        report["skipped"].append(str(entry.path))

        report["cancelled"] = self.cancelled
        report["remaining"] = len(self.pool)
        report["timings"] = dict(self._timings)
        self._emit_log(
            f"Done. presented={report['presented']} positive={report['positive']} "
            f"negative={report['negative']} errors={len(report['feedback_errors'])} "
            f"remaining={report['remaining']}"
        )
        return report

    # ------------------------------------------------------------------
    # Read-only scoring
    def score(self, include_classified: Optional[bool] = None) -> List[Entry]:
        """Rank without touching the decision log.

        With ``include_classified`` the already decided entries are scored
        alongside the pool (normalization bounds then span both).
        """
        self.bootstrap()
        include = self.config.include_classified if include_classified is None else include_classified
        targets = list(self.entries) if include else self.pool
        return self.rank(targets)

    def report(self) -> Dict[str, Any]:
        return {
            "bootstrap": self._bootstrap_report,
            "remaining": len(self.pool),
            "decisions": self.table.decisions if self.table else 0,
            "timings": dict(self._timings),
        }
