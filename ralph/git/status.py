"""Git status queries."""

from pathlib import Path

from ralph.git.runner import run_git


def is_git_repo(workdir: Path) -> bool:
    result = run_git(["rev-parse", "--is-inside-work-tree"], workdir)
    return result.success and result.stdout.strip() == "true"


def get_changed_files(workdir: Path) -> list[str]:
    """List changed paths (staged + unstaged + untracked).

    Uses -z so filenames with spaces survive. Returns [] on git failure.
    """
    result = run_git(["status", "--porcelain", "-z"], workdir)
    if not result.success or not result.stdout:
        return []

    files = []
    entries = result.stdout.split('\0')
    i = 0
    while i < len(entries):
        entry = entries[i]
        if len(entry) < 3:
            i += 1
            continue

        status = entry[:2]
        # Renames and copies carry the source path as a second entry
        if status[0] in ('R', 'C') and i + 1 < len(entries):
            files.append(entry[3:])
            i += 2
        else:
            files.append(entry[3:])
            i += 1

    return files


def get_conflicted_files(workdir: Path) -> list[str]:
    """Paths with unresolved merge conflicts."""
    result = run_git(["diff", "--name-only", "--diff-filter=U"], workdir)
    if not result.success:
        return []
    return [f.strip() for f in result.stdout.splitlines() if f.strip()]
