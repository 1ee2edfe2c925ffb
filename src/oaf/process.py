"""Process bridge: every invocation of the git executable goes through here."""

import logging
import os
import subprocess
from pathlib import Path
from typing import NoReturn, Optional, Sequence, Union

from .constants import git_executable
from .errors import UnderlyingToolFailure

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def make_git_command(args: Sequence[str]) -> list[str]:
    """Full argument vector for running git with `args`."""
    return [git_executable(), *args]


def run_git(
    args: Sequence[str],
    cwd: Optional[PathLike] = None,
    check: bool = True,
) -> subprocess.CompletedProcess:
    """Run git with captured output.

    Raises UnderlyingToolFailure on a non-zero exit when `check` is set; the
    exception carries git's stderr and return code unchanged.
    """
    cmd = make_git_command(args)
    logger.debug(f"run: {' '.join(cmd)} (cwd={cwd or '.'})")
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError:
        raise UnderlyingToolFailure(f"Git not found: {cmd[0]}")
    if check and result.returncode != 0:
        stderr = result.stderr.strip()
        raise UnderlyingToolFailure(
            f"git {args[0] if args else ''} failed with exit code {result.returncode}",
            detail=stderr or result.stdout.strip() or None,
            returncode=result.returncode,
        )
    return result


def git_output(args: Sequence[str], cwd: Optional[PathLike] = None) -> str:
    """Stripped stdout of a git command that must succeed."""
    return run_git(args, cwd=cwd).stdout.strip()


def call_git(args: Sequence[str], cwd: Optional[PathLike] = None) -> int:
    """Run git with inherited standard streams and return its exit code."""
    cmd = make_git_command(args)
    logger.debug(f"call: {' '.join(cmd)}")
    try:
        return subprocess.call(cmd, cwd=cwd)
    except FileNotFoundError:
        raise UnderlyingToolFailure(f"Git not found: {cmd[0]}")


def exec_command(argv: Sequence[str]) -> NoReturn:
    """Replace the current process with `argv`, searching PATH for argv[0]."""
    logger.debug(f"exec: {' '.join(argv)}")
    try:
        os.execvp(argv[0], list(argv))
    except OSError as e:
        raise UnderlyingToolFailure(f"Could not run {argv[0]}: {e.strerror}")


def exec_git(args: Sequence[str]) -> NoReturn:
    """Replace the current process with git, forwarding `args` unchanged."""
    exec_command(make_git_command(args))
