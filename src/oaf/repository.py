"""Repository state accessor.

Thin wrapper over the repository that higher layers query instead of caching
anything: every call re-reads git. Value-returning reads (branches, HEAD,
dirtiness, history) use GitPython; config, refs and paths use the git
executable through the process bridge.
"""

import logging
from pathlib import Path
from typing import Optional

from git import Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from .constants import IN_PROGRESS_MARKERS
from .errors import UnderlyingToolFailure
from .names import LOCAL_PREFIX, parse_settings, parse_show_ref, select_reference
from .process import git_output, run_git

logger = logging.getLogger(__name__)

# `git config` exit status when the key is missing
CONFIG_KEY_MISSING = 1
# `git config --unset` exit status when there was nothing to unset
CONFIG_UNSET_MISSING = 5


class GitRepository:
    """Reads and writes the git state oaf depends on."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else Path.cwd()
        self._repo: Optional[Repo] = None

    @property
    def repo(self) -> Repo:
        """Lazy-load the GitPython repo."""
        if self._repo is None:
            try:
                self._repo = Repo(self.path, search_parent_directories=True)
            except (InvalidGitRepositoryError, NoSuchPathError):
                raise UnderlyingToolFailure(f"Not in a Git repository: {self.path}")
        return self._repo

    def git(self, *args: str) -> str:
        """Stripped stdout of a git command run in this repository."""
        return git_output(args, cwd=self.path)

    # ─────────────────────────────────────────────────────────────────────────
    # HEAD and working tree
    # ─────────────────────────────────────────────────────────────────────────

    def current_branch(self) -> Optional[str]:
        """Name of the checked-out branch, or None when HEAD is detached."""
        head = self.repo.head
        if head.is_detached:
            return None
        return head.reference.name

    def head(self) -> Optional[str]:
        """Sha of HEAD, or None on an unborn branch."""
        head = self.repo.head
        if not head.is_valid():
            return None
        return head.commit.hexsha

    def is_dirty(self) -> bool:
        """True if tracked files differ from HEAD in the index or working tree."""
        try:
            return self.repo.is_dirty(index=True, working_tree=True, untracked_files=False)
        except GitCommandError as e:
            raise UnderlyingToolFailure("Could not read working tree status", detail=str(e))

    def untracked_files(self) -> list[str]:
        return list(self.repo.untracked_files)

    def toplevel(self) -> Path:
        working_tree = self.repo.working_tree_dir
        if working_tree is None:
            raise UnderlyingToolFailure("Not in a Git work tree")
        return Path(working_tree)

    def git_path(self, sub_path: str) -> Path:
        """Location of `sub_path` inside the git directory (worktree aware)."""
        return self.path / self.git("rev-parse", "--git-path", sub_path)

    def in_progress_operation(self) -> Optional[str]:
        """Name of an unfinished merge/rebase/etc., or None."""
        args = ["rev-parse"]
        for marker in IN_PROGRESS_MARKERS:
            args.extend(["--git-path", marker])
        paths = self.git(*args).splitlines()
        for marker, path in zip(IN_PROGRESS_MARKERS, paths):
            if (self.path / path).exists():
                return IN_PROGRESS_MARKERS[marker]
        return None

    # ─────────────────────────────────────────────────────────────────────────
    # Commits and refs
    # ─────────────────────────────────────────────────────────────────────────

    def resolve_commit(self, spec: str) -> Optional[str]:
        """Sha of the commit `spec` names, or None if it names nothing."""
        result = run_git(
            ["rev-parse", "--verify", "--quiet", f"{spec}^{{commit}}"],
            cwd=self.path,
            check=False,
        )
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    def merge_base(self, a: str, b: str) -> str:
        return self.git("merge-base", a, b)

    def first_parent_count(self, rev: str = "HEAD") -> int:
        """Number of commits on the first-parent history of `rev`."""
        try:
            return sum(1 for _ in self.repo.iter_commits(rev, first_parent=True))
        except (GitCommandError, ValueError) as e:
            raise UnderlyingToolFailure(f"Cannot walk history of {rev}", detail=str(e))

    def read_ref(self, ref: str) -> Optional[str]:
        result = run_git(["rev-parse", "--verify", "--quiet", ref], cwd=self.path, check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    def update_ref(self, ref: str, sha: str, reason: str = "oaf") -> None:
        run_git(["update-ref", "-m", reason, ref, sha], cwd=self.path)

    def delete_ref(self, ref: str) -> None:
        run_git(["update-ref", "-d", ref], cwd=self.path)

    def resolve_refname(self, short_name: str) -> Optional[str]:
        """Best full refname for a short name (branch, tag, remote branch)."""
        result = run_git(["show-ref", short_name], cwd=self.path, check=False)
        if result.returncode != 0:
            return None
        matches = {ref: sha for sha, ref in parse_show_ref(result.stdout)}
        selected = select_reference(short_name, matches)
        return selected[0] if selected else None

    # ─────────────────────────────────────────────────────────────────────────
    # Branches
    # ─────────────────────────────────────────────────────────────────────────

    def list_local_branches(self) -> list[str]:
        return [head.name for head in self.repo.heads]

    def branch_exists(self, name: str) -> bool:
        return self.read_ref(f"{LOCAL_PREFIX}{name}") is not None

    # ─────────────────────────────────────────────────────────────────────────
    # Configuration
    # ─────────────────────────────────────────────────────────────────────────

    def read_config(self, key: str) -> Optional[str]:
        """Value of a config key, or None if unset."""
        result = run_git(["config", "--get", key], cwd=self.path, check=False)
        if result.returncode == CONFIG_KEY_MISSING:
            return None
        if result.returncode != 0:
            raise UnderlyingToolFailure(
                f"Cannot read setting {key}",
                detail=result.stderr.strip() or None,
                returncode=result.returncode,
            )
        return result.stdout.rstrip("\n")

    def write_config(self, key: str, value: str) -> None:
        """Set a repository-local config key, replacing any previous values."""
        logger.debug(f"config {key} = {value}")
        run_git(["config", "--local", "--replace-all", key, value], cwd=self.path)

    def unset_config(self, key: str) -> None:
        """Remove a repository-local config key; missing keys are fine."""
        result = run_git(["config", "--local", "--unset-all", key], cwd=self.path, check=False)
        if result.returncode not in (0, CONFIG_UNSET_MISSING):
            raise UnderlyingToolFailure(
                f"Cannot unset setting {key}",
                detail=result.stderr.strip() or None,
                returncode=result.returncode,
            )

    def config_entries(self, pattern: str) -> list[tuple[str, Optional[str]]]:
        """All (key, value) pairs whose key matches the regex `pattern`."""
        result = run_git(
            ["config", "--null", "--get-regexp", pattern],
            cwd=self.path,
            check=False,
        )
        if result.returncode == CONFIG_KEY_MISSING:
            return []
        if result.returncode != 0:
            raise UnderlyingToolFailure(
                f"Cannot read settings matching {pattern}",
                detail=result.stderr.strip() or None,
                returncode=result.returncode,
            )
        return parse_settings(result.stdout)
