"""
PRD backlog store.

Parses the story checklist in .agents/tasks/prd.md and applies checkbox
updates without disturbing the rest of the document.
"""

from ralph.pm.models import Story, Criterion, STATUS_PENDING, STATUS_COMPLETE
from ralph.pm.backlog import Backlog, load_backlog

__all__ = [
    "Story",
    "Criterion",
    "STATUS_PENDING",
    "STATUS_COMPLETE",
    "Backlog",
    "load_backlog",
]
