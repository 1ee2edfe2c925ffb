"""Working tree status from `git status --porcelain=v2 --branch -z`.

Entries are rendered as two characters (tracking state, disk state) followed
by the path relative to the current directory:

    +A new.txt       added
     M changed.txt   modified
    -D gone.txt      removed and deleted
    -  kept.txt      removed from git, still on disk
    R  a.txt -> b.txt
    ?? stray.txt     untracked
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

from .process import git_output


class LocationStatus(Enum):
    UNMODIFIED = "."
    MODIFIED = "M"
    TYPE_CHANGED = "T"
    ADDED = "A"
    DELETED = "D"
    RENAMED = "R"
    COPIED = "C"
    UNMERGED = "U"


class EntryKind(Enum):
    UNTRACKED = "untracked"
    IGNORED = "ignored"
    CHANGED = "changed"
    RENAMED = "renamed"


@dataclass(frozen=True)
class StatusEntry:
    kind: EntryKind
    filename: str
    staged: LocationStatus = LocationStatus.UNMODIFIED
    tree: LocationStatus = LocationStatus.UNMODIFIED
    old_filename: Optional[str] = None

    def format_entry(self, current_dir: str = "") -> str:
        """Render the entry with paths relative to `current_dir`.

        `current_dir` is the current directory relative to the top of the
        working tree ("" at the top).
        """
        if self.kind in (EntryKind.UNTRACKED, EntryKind.IGNORED):
            track_char = disk_char = "?" if self.kind == EntryKind.UNTRACKED else "!"
        elif self.kind == EntryKind.RENAMED:
            track_char = "R"
            disk_char = {
                LocationStatus.UNMODIFIED: " ",
                LocationStatus.MODIFIED: "M",
            }.get(self.tree, "$")
        else:
            track_char = {
                LocationStatus.ADDED: "+",
                LocationStatus.DELETED: "-",
            }.get(self.staged, " ")
            if self.tree == LocationStatus.DELETED:
                disk_char = "D"
            elif self.staged == LocationStatus.ADDED:
                disk_char = "A"
            elif LocationStatus.MODIFIED in (self.staged, self.tree):
                disk_char = "M"
            elif self.staged == LocationStatus.UNMERGED:
                disk_char = "U"
            else:
                disk_char = " "
        rename = ""
        if self.old_filename is not None:
            rename = f"{_relative(self.old_filename, current_dir)} -> "
        return f"{track_char}{disk_char} {rename}{_relative(self.filename, current_dir)}"


@dataclass
class Upstream:
    name: str
    ahead: int = 0
    behind: int = 0

    def describe(self) -> str:
        if self.ahead == 0 and self.behind == 0:
            return f"Your branch is up to date with '{self.name}'."
        if self.ahead == 0:
            return (
                f"Your branch is behind '{self.name}' by {self.behind} commit(s), "
                "and can be fast-forwarded."
            )
        if self.behind == 0:
            return f"Your branch is ahead of '{self.name}' by {self.ahead} commit(s)."
        return (
            f"Your branch and '{self.name}' have diverged,\n"
            f"and have {self.ahead} and {self.behind} different commits each, respectively.\n"
            f"  (use \"oaf merge -s {self.name}\" to merge the remote branch into yours)"
        )


@dataclass
class GitStatus:
    branch: Optional[str] = None
    upstream: Optional[Upstream] = None
    entries: list[StatusEntry] = field(default_factory=list)

    @classmethod
    def parse(cls, output: str) -> "GitStatus":
        status = cls()
        records = iter(output.split("\0"))
        for record in records:
            if not record:
                continue
            if record.startswith("# "):
                status._parse_header(record[2:])
                continue
            entry = _parse_entry(record, records)
            if entry is not None:
                status.entries.append(entry)
        return status

    @classmethod
    def read(cls, cwd=None) -> "GitStatus":
        output = git_output(
            ["status", "--porcelain=v2", "--branch", "-z", "--untracked-files=all"],
            cwd=cwd,
        )
        return cls.parse(output)

    def _parse_header(self, header: str) -> None:
        key, _, value = header.partition(" ")
        if key == "branch.head" and value != "(detached)":
            self.branch = value
        elif key == "branch.upstream":
            self.upstream = Upstream(value)
        elif key == "branch.ab" and self.upstream is not None:
            ahead, behind = value.split()
            self.upstream.ahead = int(ahead.lstrip("+"))
            self.upstream.behind = int(behind.lstrip("-"))

    def untracked_filenames(self) -> list[str]:
        return [e.filename for e in self.entries if e.kind == EntryKind.UNTRACKED]

    def fix_removals(self) -> list[StatusEntry]:
        """Merge the entries for removed files, sorted by filename.

        A file removed from git but still on disk shows up both as "D." and as
        untracked; only the removal is kept. A removed file that is also gone
        from disk becomes "DD".
        """
        tracked: dict[str, StatusEntry] = {}
        untracked: dict[str, StatusEntry] = {}
        for entry in self.entries:
            if entry.kind in (EntryKind.UNTRACKED, EntryKind.IGNORED):
                untracked[entry.filename] = entry
            else:
                tracked[entry.filename] = entry
        for filename, entry in list(tracked.items()):
            if untracked.pop(filename, None) is not None:
                continue
            if entry.kind == EntryKind.CHANGED and entry.staged == LocationStatus.DELETED:
                tracked[filename] = StatusEntry(
                    EntryKind.CHANGED,
                    filename,
                    staged=LocationStatus.DELETED,
                    tree=LocationStatus.DELETED,
                )
        return sorted([*tracked.values(), *untracked.values()], key=lambda e: e.filename)


def _relative(path: str, current_dir: str) -> str:
    if not current_dir:
        return path
    return os.path.relpath(path, current_dir)


def _parse_xy(xy: str) -> tuple[LocationStatus, LocationStatus]:
    return LocationStatus(xy[0]), LocationStatus(xy[1])


def _parse_entry(record: str, records: Iterator[str]) -> Optional[StatusEntry]:
    marker = record[:2]
    if marker == "? ":
        return StatusEntry(EntryKind.UNTRACKED, record[2:])
    if marker == "! ":
        return StatusEntry(EntryKind.IGNORED, record[2:])
    if marker == "1 ":
        fields = record.split(" ", 8)
        staged, tree = _parse_xy(fields[1])
        return StatusEntry(EntryKind.CHANGED, fields[8], staged, tree)
    if marker == "2 ":
        fields = record.split(" ", 9)
        staged, tree = _parse_xy(fields[1])
        # the original path follows as its own NUL-terminated record
        return StatusEntry(EntryKind.RENAMED, fields[9], staged, tree, next(records))
    if marker == "u ":
        fields = record.split(" ", 10)
        return StatusEntry(EntryKind.CHANGED, fields[10], LocationStatus.UNMERGED, LocationStatus.UNMERGED)
    return None


def current_dir_in_tree(toplevel: Path) -> str:
    """The current directory relative to the top of the working tree."""
    cwd = Path.cwd().resolve()
    try:
        relative = cwd.relative_to(toplevel.resolve())
    except ValueError:
        return ""
    return "" if str(relative) == "." else str(relative)
