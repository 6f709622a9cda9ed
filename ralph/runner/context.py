"""
Per-run and per-iteration records.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ralph.runner.progress import OUTCOME_FAILED, OUTCOME_SUCCEEDED, ProgressEntry

STATUS_DONE = "done"
STATUS_ABORTED = "aborted"

EXIT_OK = 0
EXIT_PENDING = 1
EXIT_ABORTED = 2


def now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


@dataclass
class Iteration:
    """One select -> invoke -> verify -> record pass. Lives only in memory."""
    number: int
    task_id: str
    story_id: str
    agent: str
    started_at: str = field(default_factory=now_iso)
    ended_at: Optional[str] = None
    outcome: Optional[str] = None
    detail: str = ""
    commit_sha: Optional[str] = None

    def finish(self, outcome: str, detail: str = "") -> None:
        self.outcome = outcome
        if detail:
            self.detail = detail
        self.ended_at = now_iso()

    @property
    def succeeded(self) -> bool:
        return self.outcome == OUTCOME_SUCCEEDED

    def to_progress_entry(self) -> ProgressEntry:
        return ProgressEntry(
            timestamp=self.ended_at or now_iso(),
            iteration=self.number,
            task=self.task_id,
            story=self.story_id,
            agent=self.agent,
            outcome=self.outcome or OUTCOME_FAILED,
            commit=self.commit_sha,
            detail=self.detail,
        )


@dataclass
class RunResult:
    """Outcome of a whole build run."""
    status: str = STATUS_DONE
    iterations: list[Iteration] = field(default_factory=list)
    remaining_tasks: int = 0
    error: Optional[str] = None

    @property
    def exit_code(self) -> int:
        if self.status == STATUS_ABORTED:
            return EXIT_ABORTED
        if self.remaining_tasks > 0:
            return EXIT_PENDING
        return EXIT_OK

    @property
    def succeeded(self) -> list[Iteration]:
        return [i for i in self.iterations if i.succeeded]
