"""Parallel directory discovery.

Directories are scanned one level at a time, each level's directories in
parallel.  Only regular files whose extension (case-insensitive) is in the
allowed set are kept.  A directory or file that cannot be read is recorded
as an error and skipped; the walk itself never aborts.  Hard links to the
same inode are reported once.  Results are sorted by path so discovery
order, and with it the ranking tie-break, is reproducible.
"""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence, Set, Tuple

from . import tuning


@dataclass(frozen=True)
class FileInfo:
    path: Path
    size: int
    created: float
    inode: Tuple[int, int]


@dataclass
class WalkResult:
    files: List[FileInfo] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    dirs_scanned: int = 0
    skipped_extension: int = 0


def _created(st: os.stat_result) -> float:
    """Creation time where the platform records it, otherwise mtime."""
    birth = getattr(st, "st_birthtime", None)
    return float(birth) if birth is not None else float(st.st_mtime)


def normalize_extensions(extensions: Iterable[str]) -> Set[str]:
    return {"." + e.lower().lstrip(".") for e in extensions if e and e.strip(".")}


def _scan_dir(directory: Path, exts: Set[str]) -> Tuple[List[Path], List[FileInfo], List[Dict[str, Any]], int]:
    subdirs: List[Path] = []
    files: List[FileInfo] = []
    errors: List[Dict[str, Any]] = []
    skipped = 0
    try:
        with os.scandir(directory) as it:
            dir_entries = sorted(it, key=lambda e: e.name)
    except OSError as exc:
        errors.append({"path": str(directory), "error": str(exc)})
        return subdirs, files, errors, skipped

    for item in dir_entries:
        try:
            if item.is_dir(follow_symlinks=False):
                subdirs.append(Path(item.path))
                continue
            if not item.is_file():
                continue
            if os.path.splitext(item.name)[1].lower() not in exts:
                skipped += 1
                continue
            st = item.stat()
            files.append(
                FileInfo(
                    path=Path(item.path),
                    size=int(st.st_size),
                    created=_created(st),
                    inode=(int(st.st_dev), int(st.st_ino)),
                )
            )
        except OSError as exc:
            errors.append({"path": item.path, "error": str(exc)})
    return subdirs, files, errors, skipped


def walk(
    roots: Sequence[Path],
    extensions: Iterable[str] = tuning.VIDEO_EXTENSIONS,
    workers: int = 1,
) -> WalkResult:
    """Discover candidate files under ``roots``."""
    exts = normalize_extensions(extensions)
    result = WalkResult()
    seen_inodes: Set[Tuple[int, int]] = set()
    level: List[Path] = []
    for root in roots:
        root = Path(os.path.abspath(root))
        if root.is_dir():
            level.append(root)
        else:
            result.errors.append({"path": str(root), "error": "not a directory"})

    executor = ThreadPoolExecutor(max_workers=workers) if workers > 1 else None
    try:
        while level:
            if executor is not None and len(level) > 1:
                scans = list(executor.map(lambda d: _scan_dir(d, exts), level))
            else:
                scans = [_scan_dir(d, exts) for d in level]
            result.dirs_scanned += len(level)
            next_level: List[Path] = []
            for subdirs, files, errors, skipped in scans:
                next_level.extend(subdirs)
                result.errors.extend(errors)
                result.skipped_extension += skipped
                for info in files:
                    if info.inode[1]:
                        if info.inode in seen_inodes:
                            continue
                        seen_inodes.add(info.inode)
                    result.files.append(info)
            level = sorted(next_level)
    finally:
        if executor is not None:
            executor.shutdown(wait=True)

    result.files.sort(key=lambda f: f.path)
    return result
