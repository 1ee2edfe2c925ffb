"""Shared test fixtures and helpers for oaf tests."""

import os
import tempfile
from pathlib import Path

import pytest
from git import Repo


# --- Fixtures ---


@pytest.fixture
def empty_repo(monkeypatch):
    """Provide a fresh repository with no commits, on branch main.

    Global and system git configuration are ignored so the user's settings
    cannot change test outcomes. The current directory is the work tree.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir).resolve()
        monkeypatch.setenv("HOME", str(path))
        monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
        monkeypatch.setenv("GIT_CONFIG_GLOBAL", os.devnull)
        for role in ("AUTHOR", "COMMITTER"):
            monkeypatch.setenv(f"GIT_{role}_NAME", "Test User")
            monkeypatch.setenv(f"GIT_{role}_EMAIL", "test@example.com")
        work_tree = path / "work"
        work_tree.mkdir()
        repo = Repo.init(work_tree)
        repo.git.symbolic_ref("HEAD", "refs/heads/main")
        with repo.config_writer() as config:
            config.set_value("commit", "gpgsign", "false")
        monkeypatch.chdir(work_tree)
        yield work_tree


@pytest.fixture
def repo_dir(empty_repo):
    """Provide a repository on main with one commit adding a.txt."""
    commit_file(empty_repo, "a.txt", "base\n", "Initial commit")
    return empty_repo


@pytest.fixture
def diverged_repo(repo_dir):
    """Provide main and feature branches that change different files.

    feature adds b.txt; main adds c.txt. HEAD is main.
    """
    git(repo_dir, "checkout", "-q", "-b", "feature")
    commit_file(repo_dir, "b.txt", "feature\n", "Add b")
    git(repo_dir, "checkout", "-q", "main")
    commit_file(repo_dir, "c.txt", "main\n", "Add c")
    return repo_dir


@pytest.fixture
def conflicting_repo(repo_dir):
    """Provide main and feature branches that both change a.txt. HEAD is main."""
    git(repo_dir, "checkout", "-q", "-b", "feature")
    commit_file(repo_dir, "a.txt", "feature\n", "Change a on feature")
    git(repo_dir, "checkout", "-q", "main")
    commit_file(repo_dir, "a.txt", "main\n", "Change a on main")
    return repo_dir


# --- Helper Functions (not fixtures) ---


def git(repo_dir: Path, *args: str) -> str:
    """Run git in `repo_dir` and return its stripped stdout."""
    return Repo(repo_dir).git.execute(["git", *args])


def write_file(repo_dir: Path, name: str, content: str) -> Path:
    path = repo_dir / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


def commit_file(repo_dir: Path, name: str, content: str, message: str = "") -> str:
    """Write, add and commit one file.

    Returns:
        The sha of the new commit.
    """
    write_file(repo_dir, name, content)
    repo = Repo(repo_dir)
    repo.git.add(name)
    repo.git.commit("-q", "-m", message or f"Update {name}")
    return repo.head.commit.hexsha


def head_sha(repo_dir: Path) -> str:
    return Repo(repo_dir).head.commit.hexsha


def current_branch(repo_dir: Path) -> str:
    return Repo(repo_dir).active_branch.name
