"""Git ref queries."""

from pathlib import Path

from ralph.git.runner import run_git


def get_current_branch(workdir: Path) -> str | None:
    """Current branch name, or None on detached HEAD."""
    result = run_git(["symbolic-ref", "--quiet", "--short", "HEAD"], workdir)
    if result.success:
        return result.stdout.strip() or None
    return None


def get_commit_sha(workdir: Path, ref: str = "HEAD") -> str | None:
    result = run_git(["rev-parse", "--verify", "--quiet", ref], workdir)
    if result.success:
        return result.stdout.strip()
    return None


def get_commit_count(workdir: Path, ref: str = "HEAD") -> int:
    """Number of commits reachable from ref; 0 for an unborn branch or on error."""
    result = run_git(["rev-list", "--count", ref], workdir)
    if result.success:
        try:
            return int(result.stdout.strip())
        except ValueError:
            pass
    return 0
