"""Machine-readable score reports.

One row per entry with the path, every enabled classifier's raw and
normalized score and the combined score; optionally aggregated per
directory.  Writers emit CSV or JSON to a file or stream.
"""

from __future__ import annotations

import csv
import json
import os
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, TextIO

from .entry import Entry


def display_path(path: Path, relative_to: Optional[Path] = None) -> str:
    if relative_to is None:
        return str(path)
    try:
        return os.path.relpath(path, relative_to)
    except ValueError:
        return str(path)


def entry_rows(
    entries: Sequence[Entry],
    names: Sequence[str],
    relative_to: Optional[Path] = None,
) -> List[Dict[str, Any]]:
    """Flatten ranked entries into report rows, keeping their order."""
    rows: List[Dict[str, Any]] = []
    for rank, entry in enumerate(entries, start=1):
        row: Dict[str, Any] = {
            "rank": rank,
            "path": display_path(entry.path, relative_to),
            "state": entry.state.value,
            "combined": round(entry.combined, 6),
            "size": entry.size,
            "dir_file_count": entry.dir_file_count,
            "age_seconds": round(entry.age_seconds, 3),
        }
        for name in names:
            row[f"{name}_raw"] = round(entry.raw_scores.get(name, 0.0), 6)
            row[f"{name}_norm"] = round(entry.normalized_scores.get(name, 0.0), 6)
        rows.append(row)
    return rows


def directory_rows(
    entries: Sequence[Entry],
    relative_to: Optional[Path] = None,
) -> List[Dict[str, Any]]:
    """Per-directory aggregate: entry count, mean and max combined score."""
    groups: Dict[Path, List[Entry]] = defaultdict(list)
    for entry in entries:
        groups[entry.directory].append(entry)
    rows: List[Dict[str, Any]] = []
    for directory, members in groups.items():
        scores = [e.combined for e in members]
        rows.append(
            {
                "directory": display_path(directory, relative_to),
                "entries": len(members),
                "unclassified": sum(1 for e in members if e.is_unclassified),
                "mean_combined": round(sum(scores) / len(scores), 6),
                "max_combined": round(max(scores), 6),
                "total_size": sum(e.size for e in members),
            }
        )
    rows.sort(key=lambda r: (-r["mean_combined"], r["directory"]))
    return rows


def write_csv(rows: Sequence[Dict[str, Any]], out: TextIO) -> None:
    if not rows:
        return
    writer = csv.DictWriter(out, fieldnames=list(rows[0].keys()), lineterminator="\n")
    writer.writeheader()
    writer.writerows(rows)


def write_json(rows: Sequence[Dict[str, Any]], out: TextIO) -> None:
    json.dump(list(rows), out, indent=2)
    out.write("\n")


WRITERS = {"csv": write_csv, "json": write_json}


def write_report(rows: Sequence[Dict[str, Any]], fmt: str, out: TextIO) -> None:
    try:
        writer = WRITERS[fmt]
    except KeyError:
        raise ValueError(f"Unknown report format: {fmt}") from None
    writer(rows, out)


def save_report(rows: Sequence[Dict[str, Any]], fmt: str, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as f:
        write_report(rows, fmt, f)
    return path
