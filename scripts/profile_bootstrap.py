from __future__ import annotations

import argparse
import cProfile
import pstats
import sys
import time
from pathlib import Path


def _build_session(root: Path, playlist: Path, workers: int, shards: int):
    repo_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(repo_root / "src"))

    from reelrank.config_service import SessionConfig
    from reelrank.playlist import M3uPlaylist
    from reelrank.session import Session

    config = SessionConfig(roots=[root], workers=workers, shards=shards, dry_run=True)
    return Session(
        config=config,
        playlist=M3uPlaylist.open(playlist, create=False),
        log_to_console=False,
    )


def main() -> int:
    parser = argparse.ArgumentParser(description="Profile reelrank bootstrap and one ranking pass.")
    parser.add_argument("--root", type=Path, required=True, help="Root folder to scan recursively")
    parser.add_argument(
        "--playlist",
        type=Path,
        default=Path(".tmp_profile") / "decisions.m3u",
        help="Decision log to seed from (read only; missing means cold start)",
    )
    parser.add_argument("--workers", type=int, default=1, help="Worker threads")
    parser.add_argument("--shards", type=int, default=1, help="Counter shards")
    parser.add_argument("--profile", action="store_true", help="Enable cProfile and print top cumulative functions")
    parser.add_argument("--stats", type=int, default=30, help="Number of cProfile rows to print")
    parser.add_argument("--sort", default="cumulative", help="cProfile sort key (default: cumulative)")
    args = parser.parse_args()

    root = args.root.resolve()
    if not root.exists():
        print(f"error: root not found: {root}", file=sys.stderr)
        return 2

    session = _build_session(root, args.playlist.resolve(), args.workers, args.shards)

    prof = cProfile.Profile() if args.profile else None
    start = time.perf_counter()
    if prof is not None:
        prof.enable()

    report = session.bootstrap()
    ranked = session.rank()

    if prof is not None:
        prof.disable()

    elapsed = time.perf_counter() - start
    files = max(1, report["files_discovered"])
    print(f"root={root}")
    print(f"workers={args.workers} shards={args.shards}")
    print(f"files={report['files_discovered']} candidates={len(ranked)}")
    print(f"vocabulary={report['vocabulary']} merges={report['merges']} features={report['features']}")
    for phase, seconds in session.report()["timings"].items():
        print(f"{phase}_seconds={seconds:.3f}")
    print(f"elapsed_seconds={elapsed:.3f}")
    print(f"ms_per_file={(elapsed * 1000.0) / files:.2f}")

    if prof is not None:
        stats = pstats.Stats(prof)
        stats.sort_stats(args.sort).print_stats(args.stats)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
