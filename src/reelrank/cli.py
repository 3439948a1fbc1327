"""Command-line interface for reelrank.

Subcommands:

``build``     interactive review session driven by VLC
``score``     rank candidates and export a report without recording decisions
``positive``  list paths recorded as kept
``negative``  list paths recorded as rejected
``rebase``    move every recorded path from one root to another

Run ``python -m reelrank --help`` for usage.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import tuning
from .config_service import ConfigService, SessionConfig
from .entry import Label
from .export import directory_rows, entry_rows, save_report, write_report
from .playback import VlcFeedback
from .playlist import M3uPlaylist, PersistenceError
from .session import Session


def _add_session_args(sp: argparse.ArgumentParser) -> None:
    sp.add_argument("playlist", help="Decision log (.m3u); created if missing")
    sp.add_argument("roots", nargs="+", help="Directories to scan for candidates")
    sp.add_argument("--portable", "-p", action="store_true", help="Read config next to the playlist")
    sp.add_argument("--quiet", "-q", action="store_true", help="Suppress progress output")
    sp.add_argument("--extensions", help="Comma-separated list of file extensions")
    sp.add_argument("--windows", type=int, help="Largest n-gram length")
    sp.add_argument("--min-ngram-support", type=int, help="Minimum paths an n-gram must appear in")
    sp.add_argument("--min-merge-support", type=int, help="Minimum pair count for a tokenizer merge")
    sp.add_argument("--file-size-bias", type=float, help="Enable the file size classifier (|bias| > 1)")
    sp.add_argument("--file-size-offset", type=float)
    sp.add_argument("--dir-size-bias", type=float, help="Enable the directory size classifier (|bias| > 1)")
    sp.add_argument("--dir-size-offset", type=float)
    sp.add_argument("--file-age-bias", type=float, help="Enable the file age classifier (|bias| > 1)")
    sp.add_argument("--file-age-offset", type=float)
    sp.add_argument("--batch-size", type=int, help="Candidates presented per ranking pass")
    sp.add_argument("--random-top-n", type=int, help="Pick randomly among the top N instead of the best")
    sp.add_argument("--seed", type=int, help="Seed for random selection")
    sp.add_argument("--workers", type=int, help="Worker threads")
    sp.add_argument("--shards", type=int, help="Counter shards")


def _parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="reelrank",
        description="reelrank - learn which files you keep and review the likeliest next",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sp = subparsers.add_parser("build", help="Review candidates in VLC and record decisions")
    _add_session_args(sp)
    sp.add_argument("--dry-run", action="store_true", help="Bootstrap and rank once, ask nothing")
    sp.add_argument("--feedback-error-policy", choices=["skip", "retry", "abort"])
    sp.add_argument("--max-retries", type=int)
    sp.add_argument("--vlc", dest="vlc_executable", help="VLC executable")
    sp.add_argument("--fullscreen", action="store_true", default=None)
    sp.add_argument("--vlc-timeout", type=float, help="Seconds to wait for VLC to start playing")
    sp.add_argument("--vlc-poll-interval", type=float, help="Milliseconds between VLC status polls")
    sp.add_argument("--decision-timeout", type=float, help="Seconds to wait for a decision (0 = forever)")

    sp = subparsers.add_parser("score", help="Rank candidates and print a report")
    _add_session_args(sp)
    sp.add_argument("--include-classified", action="store_true", default=None)
    sp.add_argument("--format", choices=["json", "csv"], default="json")
    sp.add_argument("--output", "-o", help="Write the report here instead of stdout")
    sp.add_argument("--by-directory", action="store_true", help="Aggregate scores per directory")
    sp.add_argument("--absolute", action="store_true", help="Print absolute paths")

    for name, help_text in (("positive", "List kept paths"), ("negative", "List rejected paths")):
        sp = subparsers.add_parser(name, help=help_text)
        sp.add_argument("playlist")
        sp.add_argument("--absolute", action="store_true", help="Print absolute paths")

    sp = subparsers.add_parser("rebase", help="Rewrite recorded paths from OLD_ROOT to NEW_ROOT")
    sp.add_argument("playlist")
    sp.add_argument("old_root")
    sp.add_argument("new_root")

    return parser.parse_args(argv)


def _session_config(args: argparse.Namespace, file_cfg: Dict[str, Any]) -> SessionConfig:
    extensions = None
    if args.extensions:
        extensions = [e.strip() for e in args.extensions.split(",") if e.strip()]
    return SessionConfig.from_dict(
        file_cfg,
        roots=[Path(r).expanduser() for r in args.roots],
        extensions=extensions,
        windows=args.windows,
        min_ngram_support=args.min_ngram_support,
        min_merge_support=args.min_merge_support,
        file_size_bias=args.file_size_bias,
        file_size_offset=args.file_size_offset,
        dir_size_bias=args.dir_size_bias,
        dir_size_offset=args.dir_size_offset,
        file_age_bias=args.file_age_bias,
        file_age_offset=args.file_age_offset,
        batch_size=args.batch_size,
        random_top_n=args.random_top_n,
        seed=args.seed,
        workers=args.workers,
        shards=args.shards,
        dry_run=getattr(args, "dry_run", None) or None,
        feedback_error_policy=getattr(args, "feedback_error_policy", None),
        max_retries=getattr(args, "max_retries", None),
        include_classified=getattr(args, "include_classified", None),
    )


def _vlc_feedback(args: argparse.Namespace, file_cfg: Dict[str, Any]) -> VlcFeedback:
    vlc_cfg = dict(file_cfg.get("vlc") or {})
    params = tuning.FEEDBACK_PARAMS
    startup = args.vlc_timeout if args.vlc_timeout is not None else vlc_cfg.get("startup_timeout_seconds")
    decision = args.decision_timeout if args.decision_timeout is not None else vlc_cfg.get("decision_timeout_seconds")
    poll_ms = args.vlc_poll_interval if args.vlc_poll_interval is not None else vlc_cfg.get("poll_interval_ms")
    fullscreen = args.fullscreen if args.fullscreen is not None else vlc_cfg.get("fullscreen", False)
    return VlcFeedback(
        executable=args.vlc_executable or vlc_cfg.get("executable", "vlc"),
        fullscreen=bool(fullscreen),
        startup_timeout=float(params["startup_timeout_seconds"] if startup is None else startup),
        decision_timeout=float(params["decision_timeout_seconds"] if decision is None else decision),
        poll_interval=float(params["poll_interval_ms"] if poll_ms is None else poll_ms) / 1000.0,
        http_timeout=float(params["http_timeout_seconds"]),
    )


def _construct_session(args: argparse.Namespace, interactive: bool) -> Session:
    playlist = M3uPlaylist.open(Path(args.playlist).expanduser(), create=interactive)
    config_service = ConfigService(app_dir=playlist.root)
    config_service.load_tuning(cli_portable=args.portable)
    file_cfg = config_service.load_config(cli_portable=args.portable)
    config = _session_config(args, file_cfg)
    feedback = _vlc_feedback(args, file_cfg) if interactive and not config.dry_run else None
    return Session(config=config, playlist=playlist, feedback=feedback, log_to_console=not args.quiet)


def _cmd_build(args: argparse.Namespace) -> int:
    session = _construct_session(args, interactive=True)
    try:
        report = session.run()
    except KeyboardInterrupt:
        session.cancel()
        print("Interrupted; recorded decisions are kept.")
        return 130
    print(json.dumps(report, indent=2))
    return 0


def _cmd_score(args: argparse.Namespace) -> int:
    # Report goes to stdout; keep progress off it unless writing to a file.
    if not args.output:
        args.quiet = True
    session = _construct_session(args, interactive=False)
    ranked = session.score()
    relative_to = None if args.absolute else Path.cwd()
    if args.by_directory:
        rows = directory_rows(ranked, relative_to=relative_to)
    else:
        rows = entry_rows(ranked, session.ranker.names if session.ranker else [], relative_to=relative_to)
    if args.output:
        path = save_report(rows, args.format, Path(args.output).expanduser())
        print(json.dumps({"report": str(path), "rows": len(rows)}, indent=2))
    else:
        write_report(rows, args.format, sys.stdout)
    return 0


def _cmd_list(args: argparse.Namespace, label: Label) -> int:
    playlist = M3uPlaylist.open(Path(args.playlist).expanduser(), create=False)
    cwd = Path.cwd()
    for path in playlist.paths(label):
        if args.absolute:
            print(path)
        else:
            try:
                print(os.path.relpath(path, cwd))
            except ValueError:
                print(path)
    return 0


def _cmd_rebase(args: argparse.Namespace) -> int:
    playlist = M3uPlaylist.open(Path(args.playlist).expanduser(), create=False)
    result = playlist.rebase(Path(args.old_root).expanduser(), Path(args.new_root).expanduser())
    print(json.dumps({"playlist": str(playlist.path), **result}, indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_arguments(argv)
    command = args.command
    try:
        if command == "build":
            return _cmd_build(args)
        if command == "score":
            return _cmd_score(args)
        if command == "positive":
            return _cmd_list(args, Label.POSITIVE)
        if command == "negative":
            return _cmd_list(args, Label.NEGATIVE)
        if command == "rebase":
            return _cmd_rebase(args)
    except (PersistenceError, ValueError) as exc:
        print(f"Error: {exc}")
        return 1
    print(f"Error: unrecognized command {command}")
    return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
