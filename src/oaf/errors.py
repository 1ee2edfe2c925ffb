"""Error taxonomy.

Every fatal condition raised by oaf carries an ErrorKind. The kind's value is
the process exit code, so the numbers must never be reused or renumbered.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Fatal error kinds and their exit codes."""

    OperationInProgress = 10
    UnsafeSwitch = 11
    BranchExists = 12
    NoSuchPipelineNeighbor = 13
    CyclicPipeline = 14
    SnapshotFailure = 15
    UnderlyingToolFailure = 16
    AmbiguousOrUnknownCommand = 17
    InvalidBranchName = 18
    LinkConflict = 19
    NoCommits = 20
    MissingTarget = 21
    DetachedHead = 22
    NoSuchBranch = 23

    @property
    def exit_code(self) -> int:
        return self.value


class OafError(Exception):
    """Base exception for oaf operations."""

    kind = ErrorKind.UnderlyingToolFailure

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    @property
    def exit_code(self) -> int:
        return self.kind.exit_code

    def __str__(self) -> str:
        return self.message


class OperationInProgress(OafError):
    kind = ErrorKind.OperationInProgress


class UnsafeSwitch(OafError):
    kind = ErrorKind.UnsafeSwitch


class BranchExists(OafError):
    kind = ErrorKind.BranchExists


class NoSuchPipelineNeighbor(OafError):
    kind = ErrorKind.NoSuchPipelineNeighbor


class CyclicPipeline(OafError):
    kind = ErrorKind.CyclicPipeline


class SnapshotFailure(OafError):
    """Temporary state could not be created or restored.

    Repository integrity is no longer guaranteed, so the message must tell the
    user where their changes are.
    """

    kind = ErrorKind.SnapshotFailure


class UnderlyingToolFailure(OafError):
    """Git exited non-zero (or GitPython raised)."""

    kind = ErrorKind.UnderlyingToolFailure

    def __init__(
        self,
        message: str,
        detail: Optional[str] = None,
        returncode: Optional[int] = None,
    ):
        super().__init__(message, detail)
        self.returncode = returncode


class AmbiguousOrUnknownCommand(OafError):
    kind = ErrorKind.AmbiguousOrUnknownCommand


class InvalidBranchName(OafError):
    kind = ErrorKind.InvalidBranchName


class LinkConflict(OafError):
    kind = ErrorKind.LinkConflict


class NoCommits(OafError):
    kind = ErrorKind.NoCommits


class MissingTarget(OafError):
    kind = ErrorKind.MissingTarget


class DetachedHead(OafError):
    kind = ErrorKind.DetachedHead


class NoSuchBranch(OafError):
    kind = ErrorKind.NoSuchBranch
