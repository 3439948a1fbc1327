"""Append-only decision log stored as an M3U playlist.

Layout::

    #EXTM3U
    movies/keep-this.mp4
    #NEGATIVE:movies/skip-this.mp4

Positive decisions are ordinary playlist lines, so the log doubles as a
playable playlist of everything kept.  Negative decisions are hidden from
players behind the ``#NEGATIVE:`` comment prefix.  Paths are written
relative to the playlist's directory and read back as absolute, lexically
normalized paths.  Any other ``#`` line is a comment and is left alone.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from .entry import Label
from .normalize import normalize_path

M3U_HEADER = "#EXTM3U"
NEGATIVE_PREFIX = "#NEGATIVE:"


class PersistenceError(RuntimeError):
    """The decision log could not be read or written."""


@dataclass(frozen=True)
class Decision:
    path: Path
    label: Label


def _absolute(path: Union[str, os.PathLike]) -> Path:
    p = Path(path)
    if not p.is_absolute():
        p = Path.cwd() / p
    return normalize_path(p)


def _needs_dot_prefix(rel: str) -> bool:
    """Relative text that would not read back verbatim as a bare line."""
    return rel.startswith("#") or rel != rel.strip()


def is_under(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True


@dataclass
class M3uPlaylist:
    """Decision log bound to one playlist file."""

    path: Path
    root: Path = field(init=False)
    entries: List[Decision] = field(default_factory=list, init=False)

    def __post_init__(self) -> None:
        self.path = _absolute(self.path)
        self.root = self.path.parent

    @classmethod
    def open(cls, path: Union[str, os.PathLike], create: bool = True) -> "M3uPlaylist":
        """Load ``path``.

        A missing file is created with just the header, or with
        ``create=False`` treated as an empty log without touching the disk.
        """
        playlist = cls(Path(path))
        if not playlist.path.exists():
            if not create:
                return playlist
            try:
                playlist.path.parent.mkdir(parents=True, exist_ok=True)
                with playlist.path.open("w", encoding="utf-8", newline="\n") as f:
                    f.write(M3U_HEADER + "\n")
            except OSError as exc:
                raise PersistenceError(f"Cannot create playlist {playlist.path}: {exc}") from exc
            return playlist
        playlist.load()
        return playlist

    # ------------------------------------------------------------------
    # Reading
    def _parse_line(self, line: str) -> Optional[Decision]:
        # Path text is taken verbatim; only the line terminator is removed.
        line = line.rstrip("\r\n")
        if line.startswith(NEGATIVE_PREFIX):
            text = line[len(NEGATIVE_PREFIX):]
            label = Label.NEGATIVE
        elif line.startswith("#"):
            return None
        else:
            text = line
            label = Label.POSITIVE
        if not text.strip():
            return None
        return Decision(normalize_path(self.root / text), label)

    def _read_lines(self) -> List[str]:
        try:
            with self.path.open("r", encoding="utf-8") as f:
                lines = f.readlines()
        except OSError as exc:
            raise PersistenceError(f"Cannot read playlist {self.path}: {exc}") from exc
        if not lines:
            raise PersistenceError(f"Empty playlist file: {self.path}")
        if lines[0].strip().lstrip("\ufeff") != M3U_HEADER:
            raise PersistenceError(f"Existing playlist file missing {M3U_HEADER} header: {self.path}")
        return lines

    def load(self) -> List[Decision]:
        lines = self._read_lines()
        self.entries = [d for d in (self._parse_line(line) for line in lines[1:]) if d is not None]
        return self.entries

    def decided(self) -> Dict[Path, Label]:
        """Latest label per path."""
        return {d.path: d.label for d in self.entries}

    def paths(self, label: Optional[Label] = None) -> List[Path]:
        return [d.path for d in self.entries if label is None or d.label is label]

    # ------------------------------------------------------------------
    # Writing
    def relative(self, path: Union[str, os.PathLike]) -> str:
        """``path`` as written to the log: relative to the playlist directory."""
        abs_path = _absolute(path)
        try:
            rel = Path(os.path.relpath(abs_path, self.root)).as_posix()
        except ValueError:
            # Different drive on Windows
            return str(abs_path)
        if _needs_dot_prefix(rel):
            return "./" + rel
        return rel

    def _format(self, decision: Decision) -> str:
        rel = self.relative(decision.path)
        return (NEGATIVE_PREFIX + rel) if decision.label is Label.NEGATIVE else rel

    def append(self, path: Union[str, os.PathLike], label: Label) -> Decision:
        """Write one record; the in-memory log changes only after the write succeeds."""
        decision = Decision(_absolute(path), label)
        try:
            with self.path.open("a", encoding="utf-8", newline="\n") as f:
                f.write(self._format(decision) + "\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as exc:
            raise PersistenceError(f"Cannot append to playlist {self.path}: {exc}") from exc
        self.entries.append(decision)
        return decision

    def add_positive(self, path: Union[str, os.PathLike]) -> Decision:
        return self.append(path, Label.POSITIVE)

    def add_negative(self, path: Union[str, os.PathLike]) -> Decision:
        return self.append(path, Label.NEGATIVE)

    def rebase(self, old_root: Union[str, os.PathLike], new_root: Union[str, os.PathLike]) -> Dict[str, int]:
        """Rewrite every record under ``old_root`` to sit under ``new_root``.

        Labels, order and comment lines are preserved.  The file is replaced
        atomically, so a failure leaves the previous log intact.
        """
        old = _absolute(old_root)
        new = _absolute(new_root)
        lines = self._read_lines()
        out: List[str] = [lines[0].rstrip("\r\n")]
        rewritten = 0
        unchanged = 0
        for line in lines[1:]:
            decision = self._parse_line(line)
            if decision is None:
                out.append(line.rstrip("\r\n"))
                continue
            if is_under(decision.path, old):
                decision = Decision(new / decision.path.relative_to(old), decision.label)
                rewritten += 1
            else:
                unchanged += 1
            out.append(self._format(decision))

        fd, tmp_name = tempfile.mkstemp(prefix=".rebase-", suffix=".m3u", dir=str(self.root))
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
                f.write("\n".join(out) + "\n")
            os.replace(tmp_name, self.path)
        except OSError as exc:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise PersistenceError(f"Cannot rebase playlist {self.path}: {exc}") from exc
        self.load()
        return {"rewritten": rewritten, "unchanged": unchanged}
