"""
Data models for the PRD backlog.
"""

from dataclasses import dataclass, field

STATUS_PENDING = "pending"
STATUS_COMPLETE = "complete"


@dataclass
class Criterion:
    """One acceptance-criterion checkbox under a story."""
    text: str
    checked: bool
    line_number: int                           # 0-based index into the document lines


@dataclass
class Story:
    """A user story from the PRD.

    The id (US-001) is stable once written; status only ever moves
    pending -> complete.
    """
    id: str
    title: str
    status: str                                # pending, complete
    line_number: int
    description: str = ""
    criteria: list[Criterion] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.status == STATUS_COMPLETE

    @property
    def all_criteria_checked(self) -> bool:
        return all(c.checked for c in self.criteria)

    def unchecked_criteria(self) -> list[Criterion]:
        return [c for c in self.criteria if not c.checked]
