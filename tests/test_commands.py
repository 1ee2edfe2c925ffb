"""Tests for the built-in commands."""

import pytest
from click.testing import CliRunner

from oaf import commands
from oaf.commands import cli
from oaf.constants import EMPTY_TREE
from oaf.errors import ErrorKind
from oaf.repository import GitRepository

from conftest import commit_file, current_branch, git, head_sha, write_file


runner = CliRunner()


@pytest.fixture
def git_calls(monkeypatch):
    """Record commands that would run git with inherited streams."""
    calls = []

    def call_git(args, cwd=None):
        calls.append(list(args))
        return 0

    monkeypatch.setattr(commands, "call_git", call_git)
    return calls


def invoke(repo_dir, *args):
    return runner.invoke(cli, list(args), obj=GitRepository(repo_dir))


# ─────────────────────────────────────────────────────────────────────────────
# Overrides that rewrite git arguments
# ─────────────────────────────────────────────────────────────────────────────


class TestRewrites:
    def test_log_defaults_to_first_parent(self, repo_dir, git_calls):
        result = invoke(repo_dir, "log")
        assert result.exit_code == 0
        assert git_calls == [["log", "--first-parent"]]

    def test_log_options(self, repo_dir, git_calls):
        invoke(repo_dir, "log", "-i", "-p", "-r", "main~1..main", "a.txt")
        assert git_calls == [["log", "-m", "--patch", "main~1..main", "--", "a.txt"]]

    def test_pull_is_fast_forward_only(self, repo_dir, git_calls):
        invoke(repo_dir, "pull", "origin", "main")
        assert git_calls == [["pull", "--ff-only", "origin", "main"]]

    def test_diff_defaults(self, repo_dir, git_calls):
        invoke(repo_dir, "diff")
        assert git_calls == [["diff", "--histogram", "HEAD^{tree}"]]

    def test_diff_options(self, repo_dir, git_calls):
        invoke(repo_dir, "diff", "--myers", "--name-only", "-s", "a", "-t", "b", "x.txt")
        assert git_calls == [["diff", "--name-only", "a", "b", "--", "x.txt"]]

    def test_diff_unborn_uses_empty_tree(self, empty_repo, git_calls):
        invoke(empty_repo, "diff")
        assert git_calls == [["diff", "--histogram", EMPTY_TREE]]

    def test_restore(self, repo_dir, git_calls):
        invoke(repo_dir, "restore", "a.txt")
        assert git_calls == [["checkout", "HEAD", "--", "a.txt"]]

    def test_restore_from_source(self, repo_dir, git_calls):
        invoke(repo_dir, "restore", "-s", "feature", "a.txt", "b.txt")
        assert git_calls == [["checkout", "feature", "--", "a.txt", "b.txt"]]

    def test_restore_unborn(self, empty_repo, git_calls):
        result = invoke(empty_repo, "restore", "a.txt")
        assert result.exit_code == ErrorKind.NoCommits.value
        assert git_calls == []

    def test_show(self, repo_dir, git_calls):
        invoke(repo_dir, "show", "--no-log", "--name-only", "HEAD~0")
        assert git_calls == [["show", "-m", "--first-parent", "--name-only", "--pretty=", "HEAD~0"]]

    def test_revert(self, repo_dir, git_calls):
        invoke(repo_dir, "revert", "abc123")
        assert git_calls == [["revert", "-m1", "abc123"]]

    def test_cat_defaults_to_index(self, repo_dir, git_calls):
        invoke(repo_dir, "cat", "a.txt")
        assert git_calls == [["show", ":0:./a.txt"]]

    def test_cat_tree(self, repo_dir, git_calls):
        invoke(repo_dir, "cat", "-t", "HEAD", "a.txt")
        assert git_calls == [["show", "HEAD:./a.txt"]]

    def test_push_sets_upstream_first_time(self, repo_dir, git_calls):
        invoke(repo_dir, "push")
        assert git_calls == [["push", "-u", "origin", "HEAD"]]

    def test_push_with_upstream(self, repo_dir, git_calls):
        git(repo_dir, "config", "branch.main.remote", "origin")
        git(repo_dir, "config", "branch.main.merge", "refs/heads/main")
        invoke(repo_dir, "push", "-f", "backup")
        assert git_calls == [["push", "backup", "--force"]]

    def test_push_tags(self, repo_dir, git_calls):
        invoke(repo_dir, "push-tags", "origin")
        assert git_calls == [["push", "--tags", "origin"]]

    def test_exit_code_is_gits(self, repo_dir, monkeypatch):
        monkeypatch.setattr(commands, "call_git", lambda args, cwd=None: 3)
        assert invoke(repo_dir, "log").exit_code == 3


def test_checkout_is_disabled(repo_dir, git_calls):
    result = invoke(repo_dir, "checkout", "-b", "x")
    assert result.exit_code == 1
    assert 'Please use "switch" to change branches' in result.output
    assert git_calls == []


class TestCommit:
    def test_refuses_untracked(self, repo_dir, git_calls):
        write_file(repo_dir, "stray.txt", "x\n")
        result = invoke(repo_dir, "commit", "-m", "msg")
        assert result.exit_code == 1
        assert "Untracked files are present:" in result.output
        assert "stray.txt" in result.output
        assert git_calls == []

    def test_commits_all(self, repo_dir, git_calls):
        invoke(repo_dir, "commit", "-m", "msg")
        assert git_calls == [["commit", "--all", "--message", "msg"]]

    def test_no_strict_no_all(self, repo_dir, git_calls):
        write_file(repo_dir, "stray.txt", "x\n")
        invoke(repo_dir, "commit", "--no-strict", "--no-all", "--amend", "-n")
        assert git_calls == [["commit", "--amend", "--no-verify"]]


# ─────────────────────────────────────────────────────────────────────────────
# Merging and remembered targets
# ─────────────────────────────────────────────────────────────────────────────


class TestMerge:
    def test_merge_source(self, diverged_repo, git_calls):
        invoke(diverged_repo, "merge", "-s", "feature")
        assert git_calls == [["merge", "--no-commit", "--no-ff", "feature"]]

    def test_remember(self, diverged_repo, git_calls):
        invoke(diverged_repo, "merge", "-s", "feature", "--remember")
        repo = GitRepository(diverged_repo)
        assert repo.read_config("branch.main.oaf-target-branch") == "refs/heads/feature"

    def test_remembered_source(self, diverged_repo, git_calls):
        git(diverged_repo, "config", "branch.main.oaf-target-branch", "refs/heads/feature")
        result = invoke(diverged_repo, "merge")
        assert 'Using remembered value "feature"' in result.output
        assert git_calls == [["merge", "--no-commit", "--no-ff", "refs/heads/feature"]]

    def test_no_source(self, diverged_repo, git_calls):
        result = invoke(diverged_repo, "merge")
        assert result.exit_code == ErrorKind.MissingTarget.value
        assert "error: MissingTarget:" in result.output
        assert git_calls == []


class TestMergeDiff:
    def test_shows_merge_result_and_leaves_repo_alone(self, diverged_repo):
        head = head_sha(diverged_repo)
        result = invoke(diverged_repo, "merge-diff", "-t", "feature", "--name-only")
        assert result.exit_code == 0
        assert result.output.split() == ["c.txt"]
        assert head_sha(diverged_repo) == head
        assert not (diverged_repo / "b.txt").exists()
        assert git(diverged_repo, "status", "--porcelain") == ""

    def test_full_diff(self, diverged_repo):
        result = invoke(diverged_repo, "merge-diff", "-t", "feature")
        assert result.exit_code == 0
        assert "+main" in result.output

    def test_includes_uncommitted_changes(self, diverged_repo):
        write_file(diverged_repo, "c.txt", "main\nuncommitted line\n")
        head = head_sha(diverged_repo)
        status = git(diverged_repo, "status", "--porcelain")
        result = invoke(diverged_repo, "merge-diff", "-t", "feature")
        assert result.exit_code == 0
        assert "+uncommitted line" in result.output
        assert head_sha(diverged_repo) == head
        assert git(diverged_repo, "status", "--porcelain") == status
        assert (diverged_repo / "c.txt").read_text() == "main\nuncommitted line\n"
        assert not (diverged_repo / "b.txt").exists()

    def test_untracked_file_in_the_way(self, diverged_repo):
        write_file(diverged_repo, "b.txt", "mine\n")
        result = invoke(diverged_repo, "merge-diff", "-t", "feature")
        assert result.exit_code == 0
        assert "would conflict" in result.output
        assert "b.txt" in result.output
        assert (diverged_repo / "b.txt").read_text() == "mine\n"

    def test_conflicts(self, conflicting_repo):
        result = invoke(conflicting_repo, "merge-diff", "-t", "feature")
        assert result.exit_code == 0
        assert "would conflict" in result.output
        assert "a.txt" in result.output
        assert (conflicting_repo / "a.txt").read_text() == "main\n"

    def test_remembered_target(self, diverged_repo):
        invoke(diverged_repo, "merge-diff", "-t", "feature", "--remember", "--name-only")
        result = invoke(diverged_repo, "merge-diff", "--name-only")
        assert 'Using remembered value "feature"' in result.output
        assert "c.txt" in result.output

    def test_no_commits(self, empty_repo):
        result = invoke(empty_repo, "merge-diff", "-t", "x")
        assert result.exit_code == ErrorKind.NoCommits.value


def test_fake_merge(diverged_repo):
    tree = git(diverged_repo, "rev-parse", "HEAD^{tree}")
    result = invoke(diverged_repo, "fake-merge", "feature")
    assert result.exit_code == 0
    repo = GitRepository(diverged_repo)
    commit = repo.repo.head.commit
    assert len(commit.parents) == 2
    assert commit.message.strip() == "Fake merge."
    assert git(diverged_repo, "rev-parse", "HEAD^{tree}") == tree
    assert invoke(diverged_repo, "fake-merge", "feature").output.strip() == "Already up to date."


def test_help_describes_merge_edge_cases(repo_dir):
    assert "already merged" in " ".join(invoke(repo_dir, "fake-merge", "--help").output.split())
    merge_diff_help = " ".join(invoke(repo_dir, "merge-diff", "--help").output.split())
    assert "Uncommitted changes" in merge_diff_help
    assert "Untracked files" in merge_diff_help


def test_squash_commit(repo_dir):
    base = head_sha(repo_dir)
    git(repo_dir, "checkout", "-q", "-b", "feature")
    commit_file(repo_dir, "b.txt", "1\n")
    old_head = commit_file(repo_dir, "b.txt", "2\n")
    tree = git(repo_dir, "rev-parse", "HEAD^{tree}")
    result = invoke(repo_dir, "squash-commit", "-b", "main", "-m", "All of it")
    assert result.exit_code == 0
    assert f"Commit squashed.  To undo: oaf reset {old_head}" in result.output
    commit = GitRepository(repo_dir).repo.head.commit
    assert [p.hexsha for p in commit.parents] == [base]
    assert commit.message.strip() == "All of it"
    assert git(repo_dir, "rev-parse", "HEAD^{tree}") == tree
    assert current_branch(repo_dir) == "feature"


def test_revno(repo_dir):
    assert invoke(repo_dir, "revno").output.strip() == "1"
    commit_file(repo_dir, "b.txt", "b\n")
    assert invoke(repo_dir, "revno").output.strip() == "2"
    assert invoke(repo_dir, "revno", "HEAD~1").output.strip() == "1"


# ─────────────────────────────────────────────────────────────────────────────
# Switching and pipelines
# ─────────────────────────────────────────────────────────────────────────────


class TestSwitch:
    def test_switch_carries_changes(self, diverged_repo):
        write_file(diverged_repo, "a.txt", "edited\n")
        result = invoke(diverged_repo, "switch", "feature")
        assert result.exit_code == 0
        assert current_branch(diverged_repo) == "feature"
        assert (diverged_repo / "a.txt").read_text() == "edited\n"

    def test_unsafe_switch(self, conflicting_repo):
        write_file(conflicting_repo, "a.txt", "local\n")
        result = invoke(conflicting_repo, "switch", "feature")
        assert result.exit_code == ErrorKind.UnsafeSwitch.value
        assert current_branch(conflicting_repo) == "main"
        assert (conflicting_repo / "a.txt").read_text() == "local\n"

    def test_create(self, repo_dir):
        assert invoke(repo_dir, "switch", "-c", "topic").exit_code == 0
        assert current_branch(repo_dir) == "topic"
        result = invoke(repo_dir, "switch", "-c", "topic")
        assert result.exit_code == ErrorKind.BranchExists.value

    def test_park(self, diverged_repo):
        write_file(diverged_repo, "a.txt", "parked\n")
        assert invoke(diverged_repo, "switch", "--park", "feature").exit_code == 0
        assert (diverged_repo / "a.txt").read_text() == "base\n"
        result = invoke(diverged_repo, "switch", "--park", "main")
        assert "Restored parked changes for main" in result.output
        assert (diverged_repo / "a.txt").read_text() == "parked\n"


class TestPipelineCommands:
    def test_switch_next_create_and_pipeline(self, repo_dir):
        assert invoke(repo_dir, "switch-next", "-c", "feature-1").exit_code == 0
        assert invoke(repo_dir, "switch-next", "-n").exit_code == 0
        assert current_branch(repo_dir) == "feature-2"
        git(repo_dir, "checkout", "-q", "feature-1")
        result = invoke(repo_dir, "pipeline")
        assert result.output == "  main\n* feature-1\n  feature-2\n"

    def test_navigation(self, repo_dir):
        invoke(repo_dir, "switch-next", "-c", "feature-1")
        assert invoke(repo_dir, "switch-prev").exit_code == 0
        assert current_branch(repo_dir) == "main"
        assert invoke(repo_dir, "switch-next", "-k").exit_code == 0
        assert current_branch(repo_dir) == "feature-1"

    def test_no_neighbour(self, repo_dir):
        result = invoke(repo_dir, "switch-prev")
        assert result.exit_code == ErrorKind.NoSuchPipelineNeighbor.value
        assert "error: NoSuchPipelineNeighbor:" in result.output

    def test_create_and_next_num_conflict(self, repo_dir):
        assert invoke(repo_dir, "switch-next", "-c", "x", "-n").exit_code == 2

    def test_next_branch(self, repo_dir):
        assert "No next branch" in invoke(repo_dir, "next-branch").output
        git(repo_dir, "branch", "topic")
        assert invoke(repo_dir, "next-branch", "topic").exit_code == 0
        assert invoke(repo_dir, "next-branch").output.strip() == "topic"

    def test_disconnect_branch(self, repo_dir):
        invoke(repo_dir, "switch-next", "-c", "feature-1")
        invoke(repo_dir, "switch-next", "-c", "feature-2")
        assert invoke(repo_dir, "disconnect-branch", "feature-1").exit_code == 0
        assert invoke(repo_dir, "pipeline").output == "  main\n* feature-2\n"

    def test_cycle_reported(self, repo_dir):
        git(repo_dir, "config", "branch.main.oaf-previous-branch", "main")
        result = invoke(repo_dir, "pipeline")
        assert result.exit_code == ErrorKind.CyclicPipeline.value


# ─────────────────────────────────────────────────────────────────────────────
# Status and ignores
# ─────────────────────────────────────────────────────────────────────────────


def test_status(repo_dir):
    write_file(repo_dir, "a.txt", "changed\n")
    write_file(repo_dir, "sub/new.txt", "new\n")
    result = invoke(repo_dir, "status")
    assert result.exit_code == 0
    assert result.output == "On branch main\n M a.txt\n?? sub/new.txt\n"


def test_status_in_subdirectory(repo_dir, monkeypatch):
    write_file(repo_dir, "sub/new.txt", "new\n")
    monkeypatch.chdir(repo_dir / "sub")
    result = invoke(repo_dir, "status")
    assert "?? new.txt" in result.output


class TestIgnore:
    def test_specific_entry(self, repo_dir, git_calls):
        result = invoke(repo_dir, "ignore", "build.log", "sub/tmp")
        assert result.exit_code == 0
        assert (repo_dir / ".gitignore").read_text() == "/build.log\nsub/tmp\n"
        assert git_calls == [["add", str(repo_dir / ".gitignore")]]

    def test_relative_to_current_dir(self, repo_dir, git_calls, monkeypatch):
        (repo_dir / "sub").mkdir()
        monkeypatch.chdir(repo_dir / "sub")
        invoke(repo_dir, "ignore", "x.o")
        assert (repo_dir / ".gitignore").read_text() == "sub/x.o\n"

    def test_appends(self, repo_dir, git_calls):
        write_file(repo_dir, ".gitignore", "*.pyc")
        invoke(repo_dir, "ignore", "-r", "__pycache__")
        assert (repo_dir / ".gitignore").read_text() == "*.pyc\n__pycache__\n"

    def test_recursive_with_slash_warns(self, repo_dir, git_calls):
        result = invoke(repo_dir, "ignore", "-r", "a/b")
        assert 'Warning: "a/b" will not be recursive because it contains a slash.' in result.output

    def test_local(self, repo_dir, git_calls):
        invoke(repo_dir, "ignore", "--local", "secret.txt")
        exclude = (repo_dir / ".git" / "info" / "exclude").read_text()
        assert exclude.endswith("/secret.txt\n")
        assert git_calls == []
        assert not (repo_dir / ".gitignore").exists()


class TestIgnoreChanges:
    def test_none_set(self, repo_dir):
        result = invoke(repo_dir, "ignore-changes")
        assert "No files have ignore-changes set." in result.output

    def test_set_and_list(self, repo_dir, git_calls):
        invoke(repo_dir, "ignore-changes", "a.txt")
        assert git_calls == [["update-index", "--assume-unchanged", "a.txt"]]
        git(repo_dir, "update-index", "--assume-unchanged", "a.txt")
        assert invoke(repo_dir, "ignore-changes").output.strip() == "a.txt"

    def test_unset(self, repo_dir, git_calls):
        invoke(repo_dir, "ignore-changes", "--unset", "a.txt")
        assert git_calls == [["update-index", "--no-assume-unchanged", "a.txt"]]
