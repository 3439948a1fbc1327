from __future__ import annotations

import argparse
import json
import os
import time
from pathlib import Path

MB = 1024 * 1024
DAY = 86_400

# (relative path, size in bytes, age in days, note)
CASES: list[tuple[str, int, int, str]] = [
    ("action/action.hero.mp4", 2048 * MB, 400, "Shares the 'action' stem with action.sequel."),
    ("action/action.sequel.mp4", 1024 * MB, 30, "Should rise after action.hero is kept."),
    ("comedy/comedy.clip.mp4", 50 * MB, 10, "Unrelated title; should stay below the action files."),
    ("comedy/comedy.special.mkv", 700 * MB, 90, "Shares the 'comedy' stem."),
    ("documentary/nature.ep01.mkv", 1500 * MB, 700, "Series episode."),
    ("documentary/nature.ep02.mkv", 1500 * MB, 699, "Series episode."),
    ("documentary/nature.ep03.mkv", 1500 * MB, 698, "Series episode."),
    ("misc/holiday 2019 (raw).mov", 300 * MB, 1800, "Punctuation and whitespace exercise normalization."),
    ("misc/notes.txt", 1 * MB, 5, "Wrong extension; never a candidate."),
]


def write_sparse(path: Path, size: int, age_days: int, now: float) -> None:
    """Create ``path`` as a sparse file of ``size`` bytes, back-dated by ``age_days``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as f:
        f.truncate(size)
    stamp = now - age_days * DAY
    os.utime(path, (stamp, stamp))


def build_library(root: Path) -> list[dict[str, object]]:
    now = time.time()
    cases: list[dict[str, object]] = []
    for rel, size, age_days, note in CASES:
        write_sparse(root / rel, size, age_days, now)
        cases.append({"path": rel, "size": size, "age_days": age_days, "note": note})
    return cases


def main() -> int:
    parser = argparse.ArgumentParser(description="Generate a small synthetic media library (sparse files) for demos/tests.")
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("examples") / "synthetic_library",
        help="Output folder (default: examples/synthetic_library)",
    )
    args = parser.parse_args()

    output_root = args.output.resolve()
    output_root.mkdir(parents=True, exist_ok=True)
    cases = build_library(output_root)

    manifest = {
        "version": 1,
        "description": "Deterministic synthetic media library for reelrank demos and bug reports.",
        "generator": "scripts/generate_synthetic_corpus.py",
        "cases": cases,
    }
    (output_root / "manifest.json").write_text(json.dumps(manifest, indent=2), encoding="utf-8")
    print(f"Generated {len(cases)} files under {output_root}")
    print(f"Wrote manifest: {output_root / 'manifest.json'}")
    print(f"Try: reelrank score {output_root / 'decisions.m3u'} {output_root}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
