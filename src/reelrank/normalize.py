"""Path text normalization.

``normalize`` turns a path string into the canonical text the tokenizer is
trained on: lowercase, alphanumerics kept, every other run of characters
collapsed to one space, separators kept as single distinguished characters
and apostrophes dropped entirely.  The transform is total and idempotent.

``normalize_path`` is the lexical counterpart for filesystem paths: it
resolves ``.`` and ``..`` components without touching the disk, so paths
read back from a decision log compare equal to freshly discovered ones.
"""

from __future__ import annotations

import os
from pathlib import Path, PurePath
from typing import List, Union

SEPARATOR = os.sep


def normalize(text: str) -> str:
    """Return the normalized form of ``text`` (never fails)."""
    out: List[str] = []
    for ch in text.lower():
        if ch == SEPARATOR:
            if out and out[-1] in (" ", SEPARATOR):
                out.pop()
            out.append(ch)
        elif ch.isalnum():
            out.append(ch)
        elif ch != "'" and out and out[-1] not in (" ", SEPARATOR):
            out.append(" ")
    if out and out[-1] == " ":
        out.pop()
    return "".join(out)


def normalize_path(path: Union[str, PurePath]) -> Path:
    """Lexically resolve ``.`` and ``..`` components of ``path``."""
    pure = PurePath(path)
    stack: List[str] = []
    anchor = pure.anchor
    parts = pure.parts[1:] if anchor else pure.parts
    for part in parts:
        if part == ".":
            continue
        if part == "..":
            if stack and stack[-1] != "..":
                stack.pop()
            elif not anchor:
                stack.append(part)
            continue
        stack.append(part)
    if anchor:
        return Path(anchor, *stack)
    return Path(*stack) if stack else Path(".")
