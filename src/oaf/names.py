"""Branch and reference names, and helpers for git config keys.

Git is the authority on what a valid branch name is, so validation defers to
`git check-ref-format --branch` after the cheap local checks.
"""

import re
from dataclasses import dataclass
from typing import Optional, Union

from .constants import RESERVED_BRANCH_NAMES
from .errors import InvalidBranchName
from .process import run_git

LOCAL_PREFIX = "refs/heads/"
REMOTE_PREFIX = "refs/remotes/"

_RE_SPECIAL = set("^$.\\|[](){}?*+")


@dataclass(frozen=True)
class LocalBranch:
    """A branch under refs/heads/."""

    name: str

    @property
    def full(self) -> str:
        return f"{LOCAL_PREFIX}{self.name}"

    def setting(self, key: str) -> str:
        return f"branch.{self.name}.{key}"


@dataclass(frozen=True)
class RemoteBranch:
    """A remote-tracking branch under refs/remotes/<remote>/."""

    remote: str
    name: str

    @property
    def short(self) -> str:
        return f"{self.remote}/{self.name}"

    @property
    def full(self) -> str:
        return f"{REMOTE_PREFIX}{self.short}"


def parse_branch_ref(ref: str) -> Optional[Union[LocalBranch, RemoteBranch]]:
    """Parse a full reference name; None if it is not a branch."""
    if ref.startswith(LOCAL_PREFIX):
        return LocalBranch(ref[len(LOCAL_PREFIX):])
    if ref.startswith(REMOTE_PREFIX):
        remote, sep, name = ref[len(REMOTE_PREFIX):].partition("/")
        if sep and remote and name:
            return RemoteBranch(remote, name)
    return None


def validate_branch_name(name: str, cwd=None) -> str:
    """Return `name` if it can name a new branch.

    Raises:
        InvalidBranchName: empty, reserved, option-like, or rejected by git
    """
    if not name:
        raise InvalidBranchName("Branch name must not be empty")
    if name in RESERVED_BRANCH_NAMES:
        raise InvalidBranchName(f"'{name}' is a reserved name")
    if name.startswith("-"):
        raise InvalidBranchName(f"'{name}' is not a valid branch name")
    result = run_git(["check-ref-format", "--branch", name], cwd=cwd, check=False)
    if result.returncode != 0:
        raise InvalidBranchName(f"'{name}' is not a valid branch name")
    return name


def escape_re(text: str) -> str:
    """Escape characters that are special in git's config regexes."""
    return "".join(f"\\{c}" if c in _RE_SPECIAL else c for c in text)


def parse_settings(text: str) -> list[tuple[str, Optional[str]]]:
    """Parse `git config --null --get-regexp` output.

    Entries are NUL-terminated, key and value separated by a newline. An entry
    with no newline is a boolean key without a value.
    """
    entries = []
    for entry in text.split("\0"):
        if not entry:
            continue
        key, sep, value = entry.partition("\n")
        entries.append((key, value if sep else None))
    return entries


def parse_show_ref(output: str) -> list[tuple[str, str]]:
    """Parse `git show-ref` output into (sha, refname) pairs."""
    entries = []
    for line in output.splitlines():
        sha, sep, refname = line.partition(" ")
        if sep:
            entries.append((sha, refname))
    return entries


def select_reference(refname: str, matches: dict[str, str]) -> Optional[tuple[str, str]]:
    """Pick the best (refname, sha) for a short name from show-ref matches.

    Exact names win, then refs/, tags, local branches, then a remote branch of
    that name, then a remote's HEAD.
    """
    for prefix in ("", "refs/", "refs/tags/", "refs/heads/"):
        candidate = f"{prefix}{refname}"
        if candidate in matches:
            return candidate, matches[candidate]
    for key in sorted(matches):
        if key.startswith(REMOTE_PREFIX) and key.endswith(f"/{refname}"):
            return key, matches[key]
    head = f"{REMOTE_PREFIX}{refname}/HEAD"
    if head in matches:
        return head, matches[head]
    return None
