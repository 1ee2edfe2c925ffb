"""Shared constants and environment-driven configuration."""

import os

# Name the tool is installed under; symlinks named "<prefix>-<command>" run <command>.
ALIAS_PREFIX = "oaf"

# Per-branch config keys, stored as branch.<name>.<key>
TARGET_BRANCH_SETTING = "oaf-target-branch"
PREVIOUS_BRANCH_SETTING = "oaf-previous-branch"

# Refs owned by oaf
TRIAL_SNAPSHOT_REF = "refs/oaf/trial-snapshot"
BRANCH_WIP_PREFIX = "refs/branch-wip/"

# `git hash-object -t tree /dev/null`
EMPTY_TREE = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"

RESERVED_BRANCH_NAMES = frozenset({
    "HEAD",
    "ORIG_HEAD",
    "FETCH_HEAD",
    "MERGE_HEAD",
    "CHERRY_PICK_HEAD",
    "REVERT_HEAD",
})

# Files under the git dir whose presence means an operation is unfinished
IN_PROGRESS_MARKERS = {
    "MERGE_HEAD": "merge",
    "rebase-merge": "rebase",
    "rebase-apply": "rebase",
    "CHERRY_PICK_HEAD": "cherry-pick",
    "REVERT_HEAD": "revert",
    "BISECT_LOG": "bisect",
}

DEFAULT_FAKE_MERGE_MESSAGE = "Fake merge."
DEFAULT_SQUASH_MESSAGE = "Squash commit"

# Longest pipeline walked before giving up (guards against corrupt config)
MAX_PIPELINE_LENGTH = 1000


def git_executable() -> str:
    """Git binary to run, overridable with OAF_GIT."""
    return os.environ.get("OAF_GIT", "git")


def log_level() -> str:
    """Logging level name from OAF_LOG_LEVEL (default WARNING)."""
    return os.environ.get("OAF_LOG_LEVEL", "WARNING").upper()
