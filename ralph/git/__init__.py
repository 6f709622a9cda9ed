"""Git operations for ralph.

Return type conventions:
- Functions returning GitResult: caller must check .success.
- Functions returning bool: True on success/condition met.
- Functions returning parsed values: empty/zero on failure.
- commit_iteration() raises CommitError; "nothing to commit" is a skipped
  CommitResult, not an error.
"""

from ralph.git.status import (
    is_git_repo,
    get_changed_files,
    get_conflicted_files,
)
from ralph.git.branch import (
    get_current_branch,
    get_commit_sha,
    get_commit_count,
)
from ralph.git.commit import (
    CommitResult,
    stage_all,
    has_staged_changes,
    commit,
    commit_iteration,
    format_commit_message,
)

__all__ = [
    "is_git_repo",
    "get_changed_files",
    "get_conflicted_files",
    "get_current_branch",
    "get_commit_sha",
    "get_commit_count",
    "CommitResult",
    "stage_all",
    "has_staged_changes",
    "commit",
    "commit_iteration",
    "format_commit_message",
]
