"""
Progress log (.ralph/progress.md).

Append-only: the loop opens the file in append mode, writes one line per
iteration, and never rewrites or truncates it.
"""

import logging
import re
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from ralph.lib.validate import validate_before_write

logger = logging.getLogger(__name__)

OUTCOME_SUCCEEDED = "succeeded"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED = "skipped"

HEADER = "# Progress Log\n\n"

ENTRY_RE = re.compile(
    r'^\[(?P<timestamp>[^\]]+)\] iteration=(?P<iteration>\d+) task=(?P<task>\S+) '
    r'story=(?P<story>\S+) agent=(?P<agent>\S+) outcome=(?P<outcome>\w+) '
    r'commit=(?P<commit>\S+) detail="(?P<detail>.*)"$'
)


@dataclass
class ProgressEntry:
    timestamp: str
    iteration: int
    task: str
    story: str
    agent: str
    outcome: str
    commit: Optional[str] = None
    detail: str = ""

    def format(self) -> str:
        detail = " ".join(self.detail.split()).replace('"', "'")
        return (
            f"[{self.timestamp}] iteration={self.iteration} task={self.task} "
            f"story={self.story} agent={self.agent} outcome={self.outcome} "
            f"commit={self.commit or '-'} detail=\"{detail}\""
        )


def append(path: Path, entry: ProgressEntry) -> None:
    """Append one entry, creating the log (with header) on first use."""
    validate_before_write(asdict(entry), "progress_entry", path)

    path.parent.mkdir(parents=True, exist_ok=True)
    is_new = not path.exists()
    with open(path, "a", encoding="utf-8") as f:
        if is_new:
            f.write(HEADER)
        f.write(entry.format() + "\n")
    logger.debug(f"Progress: {entry.format()}")


def read_entries(path: Path) -> list[ProgressEntry]:
    """Parse entries back out of the log; unrecognised lines are skipped."""
    if not path.exists():
        return []

    entries = []
    for line in path.read_text(encoding="utf-8").splitlines():
        match = ENTRY_RE.match(line)
        if not match:
            continue
        commit = match.group("commit")
        entries.append(ProgressEntry(
            timestamp=match.group("timestamp"),
            iteration=int(match.group("iteration")),
            task=match.group("task"),
            story=match.group("story"),
            agent=match.group("agent"),
            outcome=match.group("outcome"),
            commit=None if commit == "-" else commit,
            detail=match.group("detail"),
        ))
    return entries
