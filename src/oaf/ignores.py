"""Ignore-file entries for the `ignore` command."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable


@dataclass(frozen=True)
class IgnoreEntry:
    """A line to add to an ignore file.

    Specific entries name one path relative to the top of the working tree
    and are anchored with a leading "/" when they have no slash (a pattern
    containing a slash is already anchored). Recursive entries are written
    as given and match at any depth.
    """

    path: str
    recursive: bool = False

    def make_string(self) -> str:
        if self.recursive or "/" in self.path:
            return self.path
        return f"/{self.path}"


def normpath(path: str) -> Path:
    """Absolute `path`, canonicalizing the part of it that exists."""
    abspath = Path.cwd() / path
    for ancestor in abspath.parents:
        if ancestor.exists():
            return ancestor.resolve() / abspath.relative_to(ancestor)
    return abspath


def specific_entry(top: Path, filename: str) -> IgnoreEntry:
    relative = os.path.relpath(normpath(filename), top.resolve())
    return IgnoreEntry(Path(relative).as_posix())


def append_lines(text: str, lines: Iterable[str]) -> str:
    """`text` with `lines` appended, one per line."""
    if text and not text.endswith("\n"):
        text += "\n"
    return text + "".join(f"{line}\n" for line in lines)


def add_ignores(entries: Iterable[IgnoreEntry], ignore_file: Path) -> None:
    try:
        existing = ignore_file.read_text()
    except FileNotFoundError:
        existing = ""
    ignore_file.parent.mkdir(parents=True, exist_ok=True)
    ignore_file.write_text(append_lines(existing, (e.make_string() for e in entries)))
