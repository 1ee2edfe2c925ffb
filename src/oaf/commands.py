"""Built-in commands.

Overrides change the defaults of a git command of the same name; the others
are new. Handlers that end by running git with inherited streams exit with
git's exit code.
"""

import logging
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape

from . import __version__
from .constants import (
    DEFAULT_FAKE_MERGE_MESSAGE,
    DEFAULT_SQUASH_MESSAGE,
    EMPTY_TREE,
    TARGET_BRANCH_SETTING,
)
from .errors import BranchExists, DetachedHead, MissingTarget, NoCommits, NoSuchBranch, OafError
from .ignores import IgnoreEntry, add_ignores, specific_entry
from .names import LocalBranch, RemoteBranch, parse_branch_ref, validate_branch_name
from .pipeline import Pipeline, next_numbered_name
from .process import call_git, run_git
from .repository import GitRepository
from .status import GitStatus, current_dir_in_tree
from .trial import MergeOperation, TrialEngine

logger = logging.getLogger(__name__)

console = Console(highlight=False, emoji=False, soft_wrap=True)
err_console = Console(stderr=True, highlight=False, emoji=False, soft_wrap=True)


def report_error(error: OafError) -> None:
    err_console.print(f"[red]error:[/red] {error.kind.name}: {escape(error.message)}")
    if error.detail:
        err_console.print(error.detail, markup=False)


class OafGroup(click.Group):
    """Group that turns OafError into its exit code."""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except OafError as e:
            logger.debug(f"{e.kind.name}: {e.message}")
            report_error(e)
            ctx.exit(e.exit_code)


@click.group(cls=OafGroup)
@click.version_option(__version__, prog_name="oaf")
@click.pass_context
def cli(ctx):
    """oaf - a friendlier git.

    Commands not listed here are passed to git unchanged.
    """
    if ctx.obj is None:
        ctx.obj = GitRepository()


def run(ctx, args: list[str]) -> None:
    """Run git with inherited streams and exit with its exit code."""
    ctx.exit(call_git(args))


# ─────────────────────────────────────────────────────────────────────────────
# Remembered targets
# ─────────────────────────────────────────────────────────────────────────────


def _current_branch(repo: GitRepository) -> str:
    current = repo.current_branch()
    if current is None:
        raise DetachedHead("No current branch.")
    return current


def short_name(refname: str) -> str:
    branch = parse_branch_ref(refname)
    if isinstance(branch, LocalBranch):
        return branch.name
    if isinstance(branch, RemoteBranch):
        return branch.short
    return refname


def remembered_target(repo: GitRepository) -> Optional[str]:
    current = _current_branch(repo)
    return repo.read_config(LocalBranch(current).setting(TARGET_BRANCH_SETTING))


def ensure_target(repo: GitRepository, given: Optional[str], what: str = "Target") -> str:
    """`given`, or the current branch's remembered target."""
    if given:
        return given
    target = remembered_target(repo)
    if target is None:
        raise MissingTarget(f"{what} not supplied and no remembered {what.lower()}.")
    err_console.print(f'Using remembered value "{escape(short_name(target))}"')
    return target


def remember_target(repo: GitRepository, target: str) -> None:
    """Store `target` for the current branch, if it names a branch."""
    current = _current_branch(repo)
    refname = repo.resolve_refname(target)
    if refname is None or parse_branch_ref(refname) is None:
        logger.debug(f"not remembering {target}: not a branch")
        return
    repo.write_config(LocalBranch(current).setting(TARGET_BRANCH_SETTING), refname)


# ─────────────────────────────────────────────────────────────────────────────
# Overrides
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.option("-s", "--source", help="Branch or commit to merge from")
@click.option("--remember", is_flag=True, help="Default to this source next time")
@click.pass_context
def merge(ctx, source, remember):
    """Apply the changes from another branch to the working tree, without committing."""
    repo = ctx.obj
    source = ensure_target(repo, source, "Source")
    code = call_git(["merge", "--no-commit", "--no-ff", source])
    if code == 0 and remember:
        remember_target(repo, source)
    ctx.exit(code)


@cli.command()
@click.argument("remote", required=False)
@click.argument("source", required=False)
@click.pass_context
def pull(ctx, remote, source):
    """Fast-forward to remote changes."""
    args = ["pull", "--ff-only"]
    args.extend(a for a in (remote, source) if a)
    run(ctx, args)


@cli.command()
@click.option("-r", "--range", "revision_range", help="Commits to show (default: all of HEAD)")
@click.option("-p", "--patch", is_flag=True, help="Show patches")
@click.option("-i", "--include-merged", is_flag=True, help="Show merged commits too")
@click.argument("paths", nargs=-1)
@click.pass_context
def log(ctx, revision_range, patch, include_merged, paths):
    """Show history; merged commits are hidden by default."""
    args = ["log"]
    if not include_merged:
        args.append("--first-parent")
    if patch:
        args.extend(["-m", "--patch"])
    if revision_range:
        args.append(revision_range)
    if paths:
        args.extend(["--", *paths])
    run(ctx, args)


@cli.command()
@click.argument("branch")
@click.option("-c", "--create", is_flag=True, help="Create the branch and switch to it")
@click.option("-k", "--keep", is_flag=True, help="Plain git checkout")
@click.option("--park", is_flag=True, help="Leave uncommitted changes with the current branch")
@click.pass_obj
def switch(repo, branch, create, keep, park):
    """Switch branches, carrying uncommitted changes across.

    With --park, changes are stored under refs/branch-wip/<branch> and
    restored when switching back.
    """
    if create:
        validate_branch_name(branch, cwd=repo.path)
        if repo.branch_exists(branch):
            raise BranchExists(f"Branch {branch} already exists")
        run_git(["checkout", "--quiet", "-b", branch], cwd=repo.path)
    elif keep:
        run_git(["checkout", "--quiet", branch, "--"], cwd=repo.path)
    elif park:
        restored = TrialEngine(repo).park_switch(branch)
        if restored is not None:
            err_console.print(f"Restored parked changes for {escape(branch)}")
    else:
        TrialEngine(repo).preserving_checkout(branch)
    err_console.print(f"Switched to branch '{escape(branch)}'")


@cli.command()
@click.option("-m", "--message", help="Commit message")
@click.option("--amend", is_flag=True, help="Amend the HEAD commit")
@click.option("-n", "--no-verify", is_flag=True, help="Skip commit hooks")
@click.option("--no-all", is_flag=True, help="Commit only changes in the index")
@click.option("--no-strict", is_flag=True, help="Commit even if untracked files are present")
@click.pass_context
def commit(ctx, message, amend, no_verify, no_all, no_strict):
    """Record the current contents of the working tree."""
    if not no_strict:
        untracked = GitStatus.read(cwd=ctx.obj.path).untracked_filenames()
        if untracked:
            err_console.print("Untracked files are present:")
            for filename in untracked:
                err_console.print(filename, markup=False)
            err_console.print(
                'You can add them with "oaf add", ignore them with "oaf ignore", or use --no-strict.'
            )
            ctx.exit(1)
    args = ["commit"]
    if not no_all:
        args.append("--all")
    if message is not None:
        args.extend(["--message", message])
    if amend:
        args.append("--amend")
    if no_verify:
        args.append("--no-verify")
    run(ctx, args)


def base_tree(repo: GitRepository) -> str:
    """HEAD's tree, or the empty tree on an unborn branch."""
    if repo.head() is None:
        return EMPTY_TREE
    return "HEAD^{tree}"


def diff_args(source: str, target: Optional[str], myers: bool, name_only: bool, paths) -> list[str]:
    args = ["diff"]
    if not myers:
        args.append("--histogram")
    if name_only:
        args.append("--name-only")
    args.append(source)
    if target:
        args.append(target)
    if paths:
        args.extend(["--", *paths])
    return args


@cli.command()
@click.option("-s", "--source", help="Commit to compare from (default: HEAD)")
@click.option("-t", "--target", help="Commit to compare to (default: working tree)")
@click.option("--myers", is_flag=True, help="Use the myers diff algorithm")
@click.option("--name-only", is_flag=True, help="Show changed filenames only")
@click.argument("paths", nargs=-1)
@click.pass_context
def diff(ctx, source, target, myers, name_only, paths):
    """Compare one tree to another."""
    source = source or base_tree(ctx.obj)
    run(ctx, diff_args(source, target, myers, name_only, paths))


@cli.command()
@click.option("-s", "--source", help="Tree, commit or branch to restore from (default: HEAD)")
@click.argument("paths", nargs=-1, required=True)
@click.pass_context
def restore(ctx, source, paths):
    """Restore files to their contents in another tree."""
    if source is None:
        if ctx.obj.head() is None:
            raise NoCommits("Cannot restore: no commits in HEAD.")
        source = "HEAD"
    run(ctx, ["checkout", source, "--", *paths])


@cli.command()
@click.pass_obj
def status(repo):
    """Show changed and unknown files in the working tree."""
    st = GitStatus.read(cwd=repo.path)
    if st.branch is not None:
        console.print(f"On branch {escape(st.branch)}")
        if st.upstream is not None:
            console.print(st.upstream.describe(), markup=False)
    current_dir = current_dir_in_tree(repo.toplevel())
    for entry in st.fix_removals():
        console.print(entry.format_entry(current_dir), markup=False)


@cli.command()
@click.argument("commit", required=False)
@click.option("--name-only", is_flag=True, help="Show changed filenames only")
@click.option("--no-log", is_flag=True, help="Omit the commit message")
@click.pass_context
def show(ctx, commit, name_only, no_log):
    """Summarize a commit, diffing merges against their first parent."""
    args = ["show", "-m", "--first-parent"]
    if name_only:
        args.append("--name-only")
    if no_log:
        args.append("--pretty=")
    if commit:
        args.append(commit)
    run(ctx, args)


@cli.command()
@click.option("-f", "--force", is_flag=True, help="Allow rewriting remote history")
@click.argument("repository", required=False)
@click.pass_context
def push(ctx, force, repository):
    """Push the current branch, setting its upstream on the first push."""
    repo = ctx.obj
    branch = LocalBranch(_current_branch(repo))
    args = ["push"]
    if repo.read_config(branch.setting("remote")) is not None:
        if repository:
            args.append(repository)
    else:
        if repo.head() is None:
            raise NoCommits("Cannot push: no commits in HEAD.")
        args.extend(["-u", repository or "origin", "HEAD"])
    if force:
        args.append("--force")
    run(ctx, args)


@cli.command(
    context_settings={"ignore_unknown_options": True, "allow_extra_args": True},
    add_help_option=False,
)
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def checkout(ctx, args):
    """Disabled; use switch or restore."""
    err_console.print(
        'Please use "switch" to change branches or "restore" to restore files to a known state'
    )
    ctx.exit(1)


# ─────────────────────────────────────────────────────────────────────────────
# New commands
# ─────────────────────────────────────────────────────────────────────────────


@cli.command("merge-diff")
@click.option("-t", "--target", help="Branch you would merge (default: remembered target)")
@click.option("--myers", is_flag=True, help="Use the myers diff algorithm")
@click.option("--name-only", is_flag=True, help="Show changed filenames only")
@click.option("--remember", is_flag=True, help="Default to this target next time")
@click.argument("paths", nargs=-1)
@click.pass_obj
def merge_diff(repo, target, myers, name_only, remember, paths):
    """Show what merging a branch would change, without merging it.

    The merge is performed and undone. Uncommitted changes are laid over the
    merge result, so the diff includes them, unlike `git diff TARGET...`.
    Prints the diff from the target to that result, or the files that would
    conflict. Untracked files the merge would overwrite count as conflicts.
    """
    if repo.head() is None:
        raise NoCommits("Cannot merge-diff: no commits in HEAD.")
    if remember and target:
        remember_target(repo, target)
    target = ensure_target(repo, target)
    target_sha = repo.resolve_commit(target)
    if target_sha is None:
        raise NoSuchBranch(f"{target} does not name a commit")

    def observe(trial_repo: GitRepository) -> str:
        args = diff_args(target_sha, None, myers, name_only, paths)
        return run_git(args, cwd=trial_repo.path).stdout

    result = TrialEngine(repo).run_trial(
        MergeOperation(target, include_uncommitted=True), observe=observe
    )
    if result.clean:
        if result.observation:
            click.echo(result.observation, nl=False)
        return
    err_console.print(f"Merging {escape(short_name(target))} would conflict in:")
    for path in result.conflicts:
        console.print(path, markup=False)


@cli.command()
@click.option("-t", "--tree", default="", help="Tree to read from (default: the index)")
@click.argument("filename")
@click.pass_context
def cat(ctx, tree, filename):
    """Output the contents of a file in a given tree."""
    if tree in ("", "index"):
        spec = f":0:./{filename}"
    else:
        spec = f"{tree}:./{filename}"
    run(ctx, ["show", spec])


@cli.command("fake-merge")
@click.argument("source")
@click.option("-m", "--message", default=DEFAULT_FAKE_MERGE_MESSAGE, show_default=True)
@click.pass_obj
def fake_merge(repo, source, message):
    """Record SOURCE as merged while keeping the current tree.

    Nothing is committed when SOURCE is already merged.
    """
    operation = MergeOperation(source, strategy="ours", message=message)
    result = TrialEngine(repo).run_trial(operation, commit_on_success=True)
    if result.committed is None:
        err_console.print("Already up to date.")
    else:
        err_console.print(f"Fake-merged {escape(source)} as {result.committed[:12]}")


@cli.command()
@click.pass_obj
def pipeline(repo):
    """List the branches in the current pipeline."""
    current = _current_branch(repo)
    for branch in Pipeline(repo).full_pipeline():
        marker = "*" if branch == current else " "
        console.print(f"{marker} {branch}", markup=False)


@cli.command("switch-next")
@click.option("-k", "--keep", is_flag=True, help="Plain git checkout")
@click.option("-c", "--create", help="Create a named next branch and switch to it")
@click.option("-n", "--next-num", is_flag=True, help="Create a next branch named with an incremented number")
@click.pass_obj
def switch_next(repo, keep, create, next_num):
    """Switch to the next branch in the pipeline, or create it."""
    if create and next_num:
        raise click.UsageError("--create and --next-num are mutually exclusive")
    chain = Pipeline(repo)
    if next_num:
        create = next_numbered_name(_current_branch(repo))
    if create:
        target = chain.append_branch(create)
    else:
        target = chain.switch_next(keep=keep)
    err_console.print(f"Switched to branch '{escape(target)}'")


@cli.command("switch-prev")
@click.option("-k", "--keep", is_flag=True, help="Plain git checkout")
@click.pass_obj
def switch_prev(repo, keep):
    """Switch to the previous branch in the pipeline."""
    target = Pipeline(repo).switch_prev(keep=keep)
    err_console.print(f"Switched to branch '{escape(target)}'")


@cli.command("next-branch")
@click.argument("name", required=False)
@click.pass_obj
def next_branch(repo, name):
    """Show the next branch, or make NAME the next branch."""
    chain = Pipeline(repo)
    current = _current_branch(repo)
    if name is None:
        child = chain.child_of(current)
        if child is None:
            err_console.print("No next branch")
        else:
            console.print(child, markup=False)
        return
    chain.adopt(name, parent=current)


@cli.command("disconnect-branch")
@click.argument("name")
@click.pass_obj
def disconnect_branch(repo, name):
    """Remove a branch from its pipeline, joining its neighbours."""
    Pipeline(repo).disconnect(name)


@cli.command("squash-commit")
@click.option("-b", "--branch-point", help="Squash relative to this (default: remembered target)")
@click.option("-m", "--message", default=DEFAULT_SQUASH_MESSAGE, show_default=True)
@click.pass_obj
def squash_commit(repo, branch_point, message):
    """Replace the commits since the branch point with one commit."""
    head = repo.head()
    if head is None:
        raise NoCommits("Cannot squash commit: no commits in HEAD.")
    branch_point = ensure_target(repo, branch_point, "Source")
    parent = repo.merge_base(head, branch_point)
    squashed = repo.git("commit-tree", f"{head}^{{tree}}", "-p", parent, "-m", message)
    repo.update_ref("HEAD", squashed, "oaf: squash-commit")
    err_console.print(f"Commit squashed.  To undo: oaf reset {head}")


@cli.command("push-tags")
@click.argument("repository", required=False)
@click.pass_context
def push_tags(ctx, repository):
    """Push all tags."""
    args = ["push", "--tags"]
    if repository:
        args.append(repository)
    run(ctx, args)


@cli.command()
@click.argument("commit")
@click.pass_context
def revert(ctx, commit):
    """Revert a commit (merges relative to their first parent)."""
    run(ctx, ["revert", "-m1", commit])


@cli.command()
@click.argument("commit", default="HEAD")
@click.pass_obj
def revno(repo, commit):
    """Print the revision number: first-parent commits up to COMMIT."""
    if repo.resolve_commit(commit) is None:
        if commit == "HEAD":
            raise NoCommits("No commits in HEAD.")
        raise NoSuchBranch(f"{commit} does not name a commit")
    console.print(str(repo.first_parent_count(commit)))


@cli.command()
@click.option("--local", is_flag=True, help="Ignore in info/exclude instead of .gitignore")
@click.option("-r", "--recurse", is_flag=True, help="Match at any depth")
@click.argument("files", nargs=-1, required=True)
@click.pass_context
def ignore(ctx, local, recurse, files):
    """Tell git to ignore files that have not been added.

    Entries go in the top-level .gitignore, which is then staged.
    """
    repo = ctx.obj
    top = repo.toplevel()
    entries = []
    for filename in files:
        if recurse:
            if "/" in filename:
                err_console.print(
                    f'Warning: "{escape(filename)}" will not be recursive because it contains a slash.'
                )
            entries.append(IgnoreEntry(filename, recursive=True))
        else:
            entries.append(specific_entry(top, filename))
    ignore_file = repo.git_path("info/exclude") if local else top / ".gitignore"
    add_ignores(entries, ignore_file)
    if not local:
        run(ctx, ["add", str(ignore_file)])


@cli.command("ignore-changes")
@click.option("--unset", is_flag=True, help="Stop ignoring changes")
@click.argument("files", nargs=-1)
@click.pass_context
def ignore_changes(ctx, unset, files):
    """Ignore changes to tracked files; with no files, list them."""
    if files:
        action = "--no-assume-unchanged" if unset else "--assume-unchanged"
        run(ctx, ["update-index", action, *files])
    matched = False
    for line in ctx.obj.git("ls-files", "-v").splitlines():
        if line.startswith("h "):
            matched = True
            console.print(line[2:], markup=False)
    if not matched:
        err_console.print("No files have ignore-changes set.")


OVERRIDE_COMMANDS = frozenset({
    "merge", "pull", "log", "switch", "commit", "diff", "restore", "status",
    "show", "push", "checkout",
})
NEW_COMMANDS = frozenset({
    "merge-diff", "cat", "fake-merge", "pipeline", "switch-next", "switch-prev",
    "next-branch", "squash-commit", "ignore", "ignore-changes",
    "disconnect-branch", "push-tags", "revert", "revno",
})
