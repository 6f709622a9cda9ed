"""Git commit operations and the per-iteration commit step."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ralph.git.branch import get_commit_sha, get_current_branch
from ralph.git.runner import GitResult, run_git
from ralph.git.status import get_conflicted_files, is_git_repo
from ralph.lib.errors import CommitError

logger = logging.getLogger(__name__)

COMMIT_COMMITTED = "committed"
COMMIT_SKIPPED = "skipped"

NOTHING_TO_COMMIT_MARKERS = ("nothing to commit", "nothing added to commit", "no changes added to commit")


@dataclass
class CommitResult:
    status: str                                # committed, skipped
    sha: Optional[str] = None
    reason: str = ""

    @property
    def committed(self) -> bool:
        return self.status == COMMIT_COMMITTED


def stage_all(workdir: Path) -> GitResult:
    """Stage all changes (new, modified, deleted)."""
    return run_git(["add", "-A"], workdir)


def has_staged_changes(workdir: Path) -> bool:
    """True if the index differs from HEAD (exit 1 from diff --quiet)."""
    result = run_git(["diff", "--cached", "--quiet"], workdir)
    return result.returncode == 1


def commit(workdir: Path, message: str) -> GitResult:
    """Create a commit with the given message."""
    return run_git(["commit", "-m", message], workdir)


def format_commit_message(task_id: str, story_id: str, title: str, agent: str, iteration: int) -> str:
    subject = f"feat({story_id}): {title}"
    body = [f"Task: {task_id}", f"Story: {story_id}", f"Agent: {agent}", f"Iteration: {iteration}"]
    return subject + "\n\n" + "\n".join(body) + "\n"


def commit_iteration(
    workdir: Path,
    message: str,
    no_commit: bool = False,
    dry_run: bool = False,
) -> CommitResult:
    """Stage and commit everything in the working tree.

    Returns a skipped result for --no-commit, dry-run, or an empty change
    set.

    Raises:
        CommitError: not a repository, detached HEAD, unmerged paths, or
            git add/commit failing for any reason other than "nothing to
            commit"
    """
    if no_commit:
        return CommitResult(COMMIT_SKIPPED, reason="no-commit")
    if dry_run:
        return CommitResult(COMMIT_SKIPPED, reason="dry-run")

    if not is_git_repo(workdir):
        raise CommitError(f"{workdir} is not a git repository")

    if get_current_branch(workdir) is None:
        raise CommitError("HEAD is detached; refusing to commit outside a branch")

    conflicts = get_conflicted_files(workdir)
    if conflicts:
        raise CommitError(f"unmerged paths present: {', '.join(conflicts)}")

    added = stage_all(workdir)
    if not added.success:
        raise CommitError("git add failed", added.stderr)

    if not has_staged_changes(workdir):
        logger.info("Nothing to commit")
        return CommitResult(COMMIT_SKIPPED, reason="nothing to commit")

    result = commit(workdir, message)
    if not result.success:
        output = f"{result.stdout}\n{result.stderr}".lower()
        if any(marker in output for marker in NOTHING_TO_COMMIT_MARKERS):
            return CommitResult(COMMIT_SKIPPED, reason="nothing to commit")
        raise CommitError("git commit failed", result.stderr or result.stdout)

    sha = get_commit_sha(workdir)
    logger.info(f"Committed {sha[:12] if sha else '?'}: {message.splitlines()[0]}")
    return CommitResult(COMMIT_COMMITTED, sha=sha)
