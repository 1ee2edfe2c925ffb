"""Pipelines: linear chains of branches.

Each branch may name its previous branch in `branch.<name>.oaf-previous-branch`.
Following those links back from a branch gives its pipeline. Nothing is
cached; every call re-reads the repository configuration.
"""

import logging
import re
from typing import Optional

from .constants import MAX_PIPELINE_LENGTH, PREVIOUS_BRANCH_SETTING
from .errors import (
    BranchExists,
    CyclicPipeline,
    DetachedHead,
    LinkConflict,
    MissingTarget,
    NoSuchBranch,
    NoSuchPipelineNeighbor,
    OafError,
)
from .names import LocalBranch, escape_re, validate_branch_name
from .process import run_git
from .repository import GitRepository
from .trial import TrialEngine

logger = logging.getLogger(__name__)

_NUMBERED = re.compile(r"^(.*?)-?(\d+)$")


def next_numbered_name(name: str) -> str:
    """Name for the branch after `name`: "feature-1" -> "feature-2".

    A name without a trailing number gets "-2", since it is the first branch.
    """
    match = _NUMBERED.match(name)
    if match is None or not match.group(1):
        return f"{name}-2"
    number = match.group(2)
    base = name[: -len(number)]
    return f"{base}{int(number) + 1}"


class Pipeline:
    """Navigation and editing of the branch chain around the current branch."""

    def __init__(self, repo: GitRepository, engine: Optional[TrialEngine] = None):
        self.repo = repo
        self.engine = engine or TrialEngine(repo)

    # ─────────────────────────────────────────────────────────────────────────
    # Links
    # ─────────────────────────────────────────────────────────────────────────

    def parent_of(self, branch: str) -> Optional[str]:
        return self.repo.read_config(LocalBranch(branch).setting(PREVIOUS_BRANCH_SETTING))

    def children_of(self, branch: str) -> list[str]:
        pattern = f"^branch\\..*\\.{escape_re(PREVIOUS_BRANCH_SETTING)}$"
        suffix = f".{PREVIOUS_BRANCH_SETTING}"
        children = []
        for key, value in self.repo.config_entries(pattern):
            if value != branch:
                continue
            children.append(key[len("branch."):-len(suffix)])
        return sorted(children)

    def child_of(self, branch: str) -> Optional[str]:
        """The next branch after `branch`, if any."""
        children = self.children_of(branch)
        if len(children) > 1:
            raise LinkConflict(
                f"{branch} has more than one next branch: {', '.join(children)}"
            )
        return children[0] if children else None

    def set_parent(self, branch: str, parent: str) -> None:
        logger.debug(f"link {parent} -> {branch}")
        self.repo.write_config(LocalBranch(branch).setting(PREVIOUS_BRANCH_SETTING), parent)

    def clear_parent(self, branch: str) -> None:
        self.repo.unset_config(LocalBranch(branch).setting(PREVIOUS_BRANCH_SETTING))

    def _current(self) -> str:
        current = self.repo.current_branch()
        if current is None:
            raise DetachedHead("HEAD is detached; not on a pipeline branch.")
        return current

    # ─────────────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────────────

    def ancestry(self, branch: str) -> list[str]:
        """`branch` and its previous branches, root first.

        Raises:
            CyclicPipeline: the links loop back on themselves
        """
        chain = [branch]
        visited = {branch}
        parent = self.parent_of(branch)
        while parent is not None:
            if parent in visited or len(chain) >= MAX_PIPELINE_LENGTH:
                raise CyclicPipeline(
                    f"Pipeline links form a cycle through {parent}",
                    detail=" -> ".join(reversed([*chain, parent])),
                )
            visited.add(parent)
            chain.append(parent)
            parent = self.parent_of(parent)
        chain.reverse()
        return chain

    def current_pipeline(self) -> list[str]:
        """Branches from the pipeline root up to the current branch."""
        return self.ancestry(self._current())

    def descendants(self, branch: str) -> list[str]:
        chain: list[str] = []
        visited = {branch}
        child = self.child_of(branch)
        while child is not None:
            if child in visited or len(chain) >= MAX_PIPELINE_LENGTH:
                raise CyclicPipeline(f"Pipeline links form a cycle through {child}")
            visited.add(child)
            chain.append(child)
            child = self.child_of(child)
        return chain

    def full_pipeline(self) -> list[str]:
        """The whole chain the current branch belongs to, root first."""
        current = self._current()
        return [*self.ancestry(current), *self.descendants(current)]

    # ─────────────────────────────────────────────────────────────────────────
    # Editing
    # ─────────────────────────────────────────────────────────────────────────

    def append_branch(
        self,
        new_name: str,
        from_current: bool = True,
        parent: Optional[str] = None,
    ) -> str:
        """Create `new_name` after `parent` (the current branch by default) and switch to it.

        Raises:
            InvalidBranchName: `new_name` cannot name a branch
            BranchExists: `new_name` is taken
            LinkConflict: the parent already has a next branch
        """
        if parent is None:
            if not from_current:
                raise MissingTarget("No branch given to append to.")
            parent = self._current()
        validate_branch_name(new_name, cwd=self.repo.path)
        if self.repo.branch_exists(new_name):
            raise BranchExists(f"Branch {new_name} already exists.")
        if not self.repo.branch_exists(parent):
            raise NoSuchBranch(f"Branch {parent} not found")
        existing = self.child_of(parent)
        if existing is not None:
            raise LinkConflict(f"{parent} already has a next branch: {existing}")
        run_git(["branch", "--no-track", new_name, LocalBranch(parent).full], cwd=self.repo.path)
        self.set_parent(new_name, parent)
        try:
            self.engine.preserving_checkout(new_name)
        except OafError:
            self.clear_parent(new_name)
            run_git(["branch", "-D", new_name], cwd=self.repo.path)
            raise
        logger.info(f"created {new_name} after {parent}")
        return new_name

    def adopt(self, existing: str, parent: Optional[str] = None) -> None:
        """Link an existing branch after `parent` (the current branch by default).

        Any previous link of `existing` is replaced.
        """
        if parent is None:
            parent = self._current()
        for name in (existing, parent):
            if not self.repo.branch_exists(name):
                raise NoSuchBranch(f"Branch {name} not found")
        if existing == parent or existing in self.ancestry(parent):
            raise CyclicPipeline(f"Linking {existing} after {parent} would form a cycle")
        current_child = self.child_of(parent)
        if current_child is not None and current_child != existing:
            raise LinkConflict(f"{parent} already has a next branch: {current_child}")
        self.set_parent(existing, parent)

    def disconnect(self, branch: str) -> None:
        """Remove `branch` from its pipeline, joining its neighbours."""
        if not self.repo.branch_exists(branch):
            raise NoSuchBranch(f"Branch {branch} not found")
        parent = self.parent_of(branch)
        child = self.child_of(branch)
        if child is not None:
            if parent is not None:
                self.set_parent(child, parent)
            else:
                self.clear_parent(child)
        self.clear_parent(branch)

    # ─────────────────────────────────────────────────────────────────────────
    # Navigation
    # ─────────────────────────────────────────────────────────────────────────

    def _switch(self, target: str, keep: bool) -> None:
        if keep:
            run_git(["checkout", "--quiet", target, "--"], cwd=self.repo.path)
        else:
            self.engine.preserving_checkout(target)

    def switch_next(self, keep: bool = False) -> str:
        current = self._current()
        child = self.child_of(current)
        if child is None:
            raise NoSuchPipelineNeighbor(f"{current} has no next branch.")
        self._switch(child, keep)
        return child

    def switch_prev(self, keep: bool = False) -> str:
        current = self._current()
        parent = self.parent_of(current)
        if parent is None:
            raise NoSuchPipelineNeighbor(f"{current} has no previous branch.")
        self._switch(parent, keep)
        return parent
