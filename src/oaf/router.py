"""Command routing.

Decides, from the program name and arguments, whether an invocation runs a
built-in command, an `oaf-<name>` executable on PATH, or git itself.
Built-in names are matched exactly. Anything else is passed to git with the
original arguments unchanged.
"""

import logging
import os
import shutil
import sys
from typing import Literal, NoReturn, Optional, Sequence, Union

from pydantic import BaseModel

from .commands import NEW_COMMANDS, OVERRIDE_COMMANDS, cli, err_console, report_error
from .constants import ALIAS_PREFIX
from .errors import ErrorKind, OafError
from .process import exec_command, exec_git

logger = logging.getLogger(__name__)

USAGE = f"usage: {ALIAS_PREFIX} <command> [<args>]\n       {ALIAS_PREFIX} --help"
INFO_OPTIONS = ("-h", "--help", "--version")


class BuiltinOverride(BaseModel):
    kind: Literal["builtin-override"] = "builtin-override"
    name: str
    args: list[str] = []


class KnownNewCommand(BaseModel):
    kind: Literal["known-new-command"] = "known-new-command"
    name: str
    args: list[str] = []


class PassthroughKnownGitCommand(BaseModel):
    """Run git with `argv` (everything after the program name)."""

    kind: Literal["passthrough-git"] = "passthrough-git"
    argv: list[str]


class PassthroughExternalCommand(BaseModel):
    kind: Literal["passthrough-external"] = "passthrough-external"
    binary: str
    argv: list[str]


class Unknown(BaseModel):
    kind: Literal["unknown"] = "unknown"
    name: str
    reason: str


CommandClassification = Union[
    BuiltinOverride,
    KnownNewCommand,
    PassthroughKnownGitCommand,
    PassthroughExternalCommand,
    Unknown,
]


def find_external(name: str, running: Optional[str] = None) -> Optional[str]:
    """Path of an `oaf-<name>` executable on PATH, other than the running program."""
    binary = shutil.which(f"{ALIAS_PREFIX}-{name}")
    if binary is None:
        return None
    if running is not None and os.path.realpath(binary) == os.path.realpath(running):
        logger.debug(f"ignoring {binary}: it is this program")
        return None
    return binary


def classify_name(
    name: str,
    args: Sequence[str],
    git_argv: Sequence[str],
    running: Optional[str] = None,
) -> CommandClassification:
    if not name:
        return Unknown(name=name, reason="No command name given")
    if name in OVERRIDE_COMMANDS:
        return BuiltinOverride(name=name, args=list(args))
    if name in NEW_COMMANDS:
        return KnownNewCommand(name=name, args=list(args))
    binary = find_external(name, running)
    if binary is not None:
        return PassthroughExternalCommand(binary=binary, argv=[binary, *args])
    return PassthroughKnownGitCommand(argv=list(git_argv))


def classify(argv: Sequence[str]) -> CommandClassification:
    """Classify a full argument vector, program name included.

    Invoked as `oaf`, the first argument is the command. Invoked through an
    alias such as `oaf-merge-diff` (any `<prefix>-<command>` name), the
    command is taken from the program name.
    """
    running = argv[0]
    progname = os.path.basename(running)
    args = list(argv[1:])
    if progname == ALIAS_PREFIX:
        if args and args[0].startswith("-"):
            return PassthroughKnownGitCommand(argv=args)
        name = args[0] if args else ""
        return classify_name(name, args[1:], args, running)
    prefix, sep, name = progname.partition("-")
    if not sep or prefix == "git":
        return Unknown(name=progname, reason=f"Unsupported command name {progname}")
    return classify_name(name, args, [name, *args], running)


def dispatch(classification: CommandClassification) -> NoReturn:
    """Carry out a classification; never returns."""
    logger.debug(f"dispatch: {classification!r}")
    if isinstance(classification, (BuiltinOverride, KnownNewCommand)):
        cli.main([classification.name, *classification.args], prog_name=ALIAS_PREFIX)
        sys.exit(0)
    if isinstance(classification, PassthroughExternalCommand):
        exec_command(classification.argv)
    if isinstance(classification, PassthroughKnownGitCommand):
        exec_git(classification.argv)
    err_console.print(classification.reason, markup=False)
    sys.exit(ErrorKind.AmbiguousOrUnknownCommand.exit_code)


def route(argv: Sequence[str]) -> NoReturn:
    args = list(argv[1:])
    progname = os.path.basename(argv[0])
    if progname == ALIAS_PREFIX:
        if not args:
            err_console.print(USAGE, markup=False)
            sys.exit(2)
        if args[0] in INFO_OPTIONS:
            cli.main(args[:1], prog_name=ALIAS_PREFIX)
            sys.exit(0)
    try:
        dispatch(classify(argv))
    except OafError as e:
        report_error(e)
        sys.exit(e.exit_code)
