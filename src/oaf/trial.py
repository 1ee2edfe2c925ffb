"""Trial operations: mutate the repository, observe, then put it back.

A trial runs inside an envelope. Entering the envelope records HEAD and the
current branch and, if tracked files have uncommitted changes, saves them with
`git stash create` under TRIAL_SNAPSHOT_REF before cleaning the tree.
Leaving the envelope, on every exit path, either restores the recorded state
exactly or, if the body marked the state as kept, only reapplies the saved
changes on top of the new HEAD. Untracked files are never touched.

If the process is killed inside the envelope nothing is restored; the
snapshot ref survives and the next trial refuses to start until it has been
dealt with by hand.
"""

import logging
import subprocess
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Union

from pydantic import BaseModel, Field

from .constants import BRANCH_WIP_PREFIX, DEFAULT_FAKE_MERGE_MESSAGE, TRIAL_SNAPSHOT_REF
from .errors import (
    DetachedHead,
    NoCommits,
    NoSuchBranch,
    OperationInProgress,
    SnapshotFailure,
    UnderlyingToolFailure,
    UnsafeSwitch,
)
from .process import run_git
from .repository import GitRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergeOperation:
    """Merge `source` into the current branch (no fast-forward).

    With `include_uncommitted`, saved changes are laid over a clean merge
    result before it is observed.
    """

    source: str
    strategy: Optional[str] = None
    message: Optional[str] = None
    include_uncommitted: bool = False


@dataclass(frozen=True)
class CheckoutOperation:
    """Check out `target`, carrying uncommitted changes across."""

    target: str


Operation = Union[MergeOperation, CheckoutOperation]
Observer = Callable[[GitRepository], str]


@dataclass
class TrialState:
    head: str
    branch: Optional[str]
    snapshot: Optional[str] = None
    snapshot_ref: Optional[str] = None
    snapshot_applied: bool = False
    keep: bool = False


class TrialResult(BaseModel):
    """What a trial observed."""

    clean: bool
    conflicts: list[str] = Field(default_factory=list)
    observation: str = ""
    committed: Optional[str] = None
    head: str


def _recovery_hint(sha: str, ref: str) -> str:
    return (
        f"Your uncommitted changes are saved as {sha} (ref {ref}). "
        f"Recover them with 'git stash apply {sha}', then run 'git update-ref -d {ref}'."
    )


class TrialEngine:
    """Runs merges and checkouts that are undone unless explicitly kept."""

    def __init__(self, repo: GitRepository):
        self.repo = repo

    def _git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        return run_git(args, cwd=self.repo.path, check=check)

    # ─────────────────────────────────────────────────────────────────────────
    # Snapshots
    # ─────────────────────────────────────────────────────────────────────────

    def require_idle(self) -> None:
        """Fail unless the repository is free for a trial."""
        operation = self.repo.in_progress_operation()
        if operation is not None:
            raise OperationInProgress(
                f"A {operation} is in progress; finish or abort it first."
            )
        leftover = self.repo.read_ref(TRIAL_SNAPSHOT_REF)
        if leftover is not None:
            raise OperationInProgress(
                "An earlier oaf operation was interrupted before it could clean up.",
                detail=_recovery_hint(leftover, TRIAL_SNAPSHOT_REF),
            )

    def take_snapshot(self, ref: str) -> Optional[str]:
        """Save uncommitted tracked changes under `ref`; None if there are none.

        Nothing is modified if this fails.
        """
        if not self.repo.is_dirty():
            return None
        try:
            sha = self.repo.git("stash", "create", "oaf snapshot")
            if not sha:
                return None
            self.repo.update_ref(ref, sha, "oaf: save uncommitted changes")
        except UnderlyingToolFailure as e:
            raise SnapshotFailure(
                "Could not save uncommitted changes; nothing was changed.",
                detail=e.detail,
            )
        logger.debug(f"snapshot {sha} stored in {ref}")
        return sha

    def apply_snapshot(self, sha: str) -> bool:
        """Reapply saved changes, index included. False on conflict."""
        result = self._git("stash", "apply", "--index", sha, check=False)
        if result.returncode != 0:
            logger.debug(f"stash apply {sha} failed: {result.stderr.strip()}")
        return result.returncode == 0

    def restore_snapshot(self, sha: str, ref: str) -> None:
        """Reapply saved changes and drop their ref."""
        if not self.apply_snapshot(sha):
            raise SnapshotFailure(
                "Could not restore uncommitted changes.",
                detail=_recovery_hint(sha, ref),
            )
        self.repo.delete_ref(ref)

    def conflicted_paths(self) -> list[str]:
        output = self._git("diff", "--name-only", "--diff-filter=U", "-z").stdout
        return sorted(path for path in output.split("\0") if path)

    def untracked_in_the_way(self, source: str) -> list[str]:
        """Untracked files that merging `source` would overwrite."""
        untracked = set(self.repo.untracked_files())
        if not untracked:
            return []
        output = self._git("diff", "--name-only", "-z", "HEAD", source).stdout
        return sorted(path for path in output.split("\0") if path in untracked)

    def layer_snapshot(self, sha: str) -> list[str]:
        """Apply saved changes unstaged over the tree; returns conflicted paths."""
        result = self._git("stash", "apply", sha, check=False)
        if result.returncode == 0:
            return []
        conflicts = self.conflicted_paths()
        if not conflicts:
            raise UnderlyingToolFailure(
                "Could not apply uncommitted changes to the merge result",
                detail=result.stderr.strip() or None,
                returncode=result.returncode,
            )
        return conflicts

    # ─────────────────────────────────────────────────────────────────────────
    # Envelope
    # ─────────────────────────────────────────────────────────────────────────

    @contextmanager
    def envelope(self) -> Iterator[TrialState]:
        """Record the repository state and guarantee it on the way out."""
        self.require_idle()
        head = self.repo.head()
        if head is None:
            raise NoCommits("No commits in HEAD.")
        state = TrialState(head=head, branch=self.repo.current_branch())
        state.snapshot = self.take_snapshot(TRIAL_SNAPSHOT_REF)
        if state.snapshot is not None:
            state.snapshot_ref = TRIAL_SNAPSHOT_REF
        try:
            if state.snapshot is not None:
                self._git("reset", "--hard", "--quiet")
            yield state
        finally:
            if state.keep:
                self._finish(state)
            else:
                self._restore(state)

    def _finish(self, state: TrialState) -> None:
        if state.snapshot is None:
            return
        if state.snapshot_applied:
            self.repo.delete_ref(state.snapshot_ref)
        else:
            self.restore_snapshot(state.snapshot, state.snapshot_ref)

    def _restore(self, state: TrialState) -> None:
        logger.debug(f"restoring {state.branch or 'detached HEAD'} at {state.head}")
        try:
            if self.repo.in_progress_operation() == "merge":
                self._git("merge", "--abort", check=False)
            self._git("reset", "--hard", "--quiet")
            if state.branch is None:
                self._git("checkout", "--quiet", "--detach", state.head)
            elif self.repo.current_branch() != state.branch:
                self._git("checkout", "--quiet", state.branch, "--")
            self._git("reset", "--hard", "--quiet", state.head)
        except UnderlyingToolFailure as e:
            detail = e.detail or ""
            if state.snapshot is not None:
                detail = f"{detail}\n{_recovery_hint(state.snapshot, state.snapshot_ref)}".strip()
            raise SnapshotFailure("Could not restore the repository after a trial.", detail=detail)
        if state.snapshot is not None:
            self.restore_snapshot(state.snapshot, state.snapshot_ref)

    # ─────────────────────────────────────────────────────────────────────────
    # Trials
    # ─────────────────────────────────────────────────────────────────────────

    def run_trial(
        self,
        operation: Operation,
        commit_on_success: bool = False,
        observe: Optional[Observer] = None,
    ) -> TrialResult:
        """Perform `operation` and report its effect.

        Merges are undone unless `commit_on_success` is set and the merge was
        clean, in which case the merge is committed. A checkout is kept when it
        succeeds and undone (raising UnsafeSwitch) when it does not.
        """
        if isinstance(operation, CheckoutOperation):
            return self._checkout(operation)
        return self._merge(operation, commit_on_success, observe)

    def _merge(
        self,
        operation: MergeOperation,
        commit_on_success: bool,
        observe: Optional[Observer],
    ) -> TrialResult:
        if self.repo.resolve_commit(operation.source) is None:
            raise NoSuchBranch(f"{operation.source} does not name a commit")
        committed = None
        with self.envelope() as state:
            args = ["merge", "--no-commit", "--no-ff"]
            if operation.strategy:
                args.extend(["-s", operation.strategy])
            args.append(operation.source)
            merge = self._git(*args, check=False)
            conflicts = self.conflicted_paths()
            if merge.returncode != 0 and not conflicts:
                conflicts = self.untracked_in_the_way(operation.source)
            if merge.returncode != 0 and not conflicts:
                raise UnderlyingToolFailure(
                    f"Could not merge {operation.source}",
                    detail=merge.stderr.strip() or merge.stdout.strip() or None,
                    returncode=merge.returncode,
                )
            clean = not conflicts
            if clean and operation.include_uncommitted and state.snapshot is not None:
                conflicts = self.layer_snapshot(state.snapshot)
                clean = not conflicts
            observation = ""
            if clean and observe is not None:
                observation = observe(self.repo)
            merging = self.repo.in_progress_operation() == "merge"
            if clean and commit_on_success and merging:
                message = operation.message or DEFAULT_FAKE_MERGE_MESSAGE
                self._git("commit", "--quiet", "-m", message)
                committed = self.repo.head()
                state.keep = True
        if conflicts:
            logger.info(f"trial merge of {operation.source} conflicts in {len(conflicts)} file(s)")
        return TrialResult(
            clean=clean,
            conflicts=conflicts,
            observation=observation,
            committed=committed,
            head=committed or state.head,
        )

    def _checkout(self, operation: CheckoutOperation) -> TrialResult:
        if self.repo.resolve_commit(operation.target) is None:
            raise NoSuchBranch(f"Branch {operation.target} not found")
        with self.envelope() as state:
            checkout = self._git("checkout", "--quiet", operation.target, "--", check=False)
            if checkout.returncode != 0:
                raise UnsafeSwitch(
                    f"Cannot switch to {operation.target}; nothing was changed.",
                    detail=checkout.stderr.strip() or None,
                )
            if state.snapshot is not None:
                if not self.apply_snapshot(state.snapshot):
                    raise UnsafeSwitch(
                        f"Uncommitted changes conflict with {operation.target}; nothing was changed."
                    )
                state.snapshot_applied = True
            state.keep = True
        return TrialResult(clean=True, head=self.repo.head() or state.head)

    def preserving_checkout(self, target: str) -> TrialResult:
        return self.run_trial(CheckoutOperation(target))

    def park_switch(self, target: str) -> Optional[str]:
        """Switch to `target`, leaving uncommitted changes with their branch.

        The current branch's changes are saved under refs/branch-wip/<branch>;
        changes previously parked for `target` are restored. Returns the sha of
        the restored changes, if any.
        """
        self.require_idle()
        current = self.repo.current_branch()
        if current is None:
            raise DetachedHead("Cannot park changes: HEAD is detached.")
        if self.repo.resolve_commit(target) is None:
            raise NoSuchBranch(f"Branch {target} not found")
        own_ref = f"{BRANCH_WIP_PREFIX}{current}"
        if self.repo.read_ref(own_ref) is not None and self.repo.is_dirty():
            raise UnsafeSwitch(
                f"Changes are already parked for {current}; "
                f"apply or delete {own_ref} before parking more."
            )
        snapshot = self.take_snapshot(own_ref)
        switched = False
        try:
            if snapshot is not None:
                self._git("reset", "--hard", "--quiet")
            checkout = self._git("checkout", "--quiet", target, "--", check=False)
            if checkout.returncode != 0:
                raise UnsafeSwitch(
                    f"Cannot switch to {target}; nothing was changed.",
                    detail=checkout.stderr.strip() or None,
                )
            switched = True
        finally:
            if not switched and snapshot is not None:
                self.restore_snapshot(snapshot, own_ref)
        parked_ref = f"{BRANCH_WIP_PREFIX}{target}"
        parked = self.repo.read_ref(parked_ref)
        if parked is not None:
            self.restore_snapshot(parked, parked_ref)
        return parked
