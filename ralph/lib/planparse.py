"""
IMPLEMENTATION_PLAN.md parser for ralph.

Grammar:

    # Implementation Plan

    ## Tasks
    ### US-001: Story title
    - [ ] Task title
      - Scope: ...
      - Acceptance: ...
      - Verification: ...

Each ### section belongs to one story. The "- [ ]" bullet is the task-level
completion marker. The first task of a section carries the story id as its
task id; later tasks are numbered US-001.2, US-001.3, ...

Fields may appear in any order and may be separated by blank or free-form
lines; both are kept as written when the plan is rendered back.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ralph.lib.conditions import is_checkable
from ralph.lib.errors import ParseError
from ralph.lib.fileio import atomic_write_text

logger = logging.getLogger(__name__)

HEADING_RE = re.compile(r'^###\s+([A-Za-z][A-Za-z0-9_.-]*):\s*(.+?)\s*$')
SECTION_START_RE = re.compile(r'^###(\s|$)')
TASK_RE = re.compile(r'^-\s+\[([ xX])\]\s+(.+?)\s*$')
FIELD_RE = re.compile(r'^\s+-\s+(Scope|Acceptance|Verification):\s*(.*?)\s*$')

FIELD_NAMES = ("Scope", "Acceptance", "Verification")
FIELD, TEXT = "field", "text"

DEFAULT_PREAMBLE = ["# Implementation Plan", "", "## Tasks"]


@dataclass
class Task:
    id: str
    story_id: str
    title: str
    done: bool
    scope: Optional[str] = None
    acceptance: Optional[str] = None
    verification: Optional[str] = None
    line_number: int = 0
    # Lines up to the last field, in file order: (FIELD, name) or (TEXT, line).
    body: list[tuple[str, str]] = field(default_factory=list)
    extra_lines: list[str] = field(default_factory=list)

    def _field_line(self, name: str) -> Optional[str]:
        value = getattr(self, name.lower())
        return None if value is None else f"  - {name}: {value}".rstrip()

    def render(self) -> list[str]:
        lines = [f"- [{'x' if self.done else ' '}] {self.title}"]
        placed = set()
        for kind, value in self.body:
            if kind == TEXT:
                lines.append(value)
                continue
            placed.add(value)
            line = self._field_line(value)
            if line is not None:
                lines.append(line)
        for name in FIELD_NAMES:
            if name not in placed:
                line = self._field_line(name)
                if line is not None:
                    lines.append(line)
        lines.extend(self.extra_lines)
        return lines


@dataclass
class PlanSection:
    story_id: str
    title: str
    tasks: list[Task] = field(default_factory=list)
    extra_lines: list[str] = field(default_factory=list)

    def render(self) -> list[str]:
        lines = [f"### {self.story_id}: {self.title}"]
        lines.extend(self.extra_lines)
        for task in self.tasks:
            lines.extend(task.render())
        return lines


def task_id_for(story_id: str, position: int) -> str:
    """Task id for the 1-based position of a task inside its story section."""
    return story_id if position == 1 else f"{story_id}.{position}"


def derive_verification(criteria: list[str]) -> str:
    """First mechanically checkable criterion, or 'none'."""
    for text in criteria:
        if is_checkable(text):
            return text
    return "none"


class Plan:
    """Ordered task list derived from the backlog."""

    def __init__(self, path: Path, preamble: list[str], sections: list[PlanSection]):
        self.path = Path(path)
        self.preamble = preamble
        self.sections = sections

    @classmethod
    def empty(cls, path: Path) -> "Plan":
        return cls(path, list(DEFAULT_PREAMBLE), [])

    @classmethod
    def load(cls, path: Path) -> "Plan":
        """Read and parse a plan file.

        Raises:
            ParseError: If the file is missing, unreadable, or malformed
        """
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise ParseError(path, "plan file not found (run 'ralph plan' first)") from None
        except (OSError, UnicodeDecodeError) as e:
            raise ParseError(path, f"cannot read plan: {e}") from None
        return cls.parse(text, path)

    @classmethod
    def load_or_empty(cls, path: Path) -> "Plan":
        """Like load(), but a missing file yields an empty plan."""
        if not Path(path).exists():
            return cls.empty(path)
        return cls.load(path)

    @classmethod
    def parse(cls, text: str, path: Path = Path("<plan>")) -> "Plan":
        lines = text.splitlines()
        preamble: list[str] = []
        sections: list[PlanSection] = []
        seen: set[str] = set()
        section: PlanSection | None = None
        task: Task | None = None
        in_comment = False

        for idx, line in enumerate(lines):
            lineno = idx + 1

            if in_comment or ('<!--' in line and '-->' not in line):
                in_comment = '-->' not in line
                if section is None:
                    preamble.append(line)
                elif task is None:
                    section.extra_lines.append(line)
                else:
                    task.extra_lines.append(line)
                continue

            if SECTION_START_RE.match(line):
                match = HEADING_RE.match(line)
                if not match:
                    raise ParseError(path, f"malformed task section heading: {line.strip()!r}", lineno)
                story_id = match.group(1)
                if story_id in seen:
                    raise ParseError(path, f"duplicate section for {story_id}", lineno)
                seen.add(story_id)
                section = PlanSection(story_id=story_id, title=match.group(2))
                sections.append(section)
                task = None
                continue

            if section is None:
                preamble.append(line)
                continue

            task_match = TASK_RE.match(line)
            if task_match:
                task = Task(
                    id=task_id_for(section.story_id, len(section.tasks) + 1),
                    story_id=section.story_id,
                    title=task_match.group(2),
                    done=task_match.group(1).lower() == 'x',
                    line_number=lineno,
                )
                section.tasks.append(task)
                continue

            field_match = FIELD_RE.match(line)
            if field_match:
                name = field_match.group(1).lower()
                if task is None:
                    raise ParseError(path, f"'{field_match.group(1)}:' field outside of a task", lineno)
                if getattr(task, name) is not None:
                    raise ParseError(path, f"duplicate '{field_match.group(1)}:' field in task {task.id}", lineno)
                setattr(task, name, field_match.group(2))
                task.body.extend((TEXT, extra) for extra in task.extra_lines)
                task.body.append((FIELD, field_match.group(1)))
                task.extra_lines = []
                continue

            if task is None:
                section.extra_lines.append(line)
            else:
                task.extra_lines.append(line)

        return cls(path, preamble, sections)

    # -- queries -----------------------------------------------------------

    def all_tasks(self) -> list[Task]:
        return [t for s in self.sections for t in s.tasks]

    def remaining_tasks(self) -> list[Task]:
        return [t for t in self.all_tasks() if not t.done]

    def next_pending(self) -> Task | None:
        """First task (in execution order) that is not done."""
        for task in self.all_tasks():
            if not task.done:
                return task
        return None

    def get_task(self, task_id: str) -> Task | None:
        for task in self.all_tasks():
            if task.id == task_id:
                return task
        return None

    def get_section(self, story_id: str) -> PlanSection | None:
        for section in self.sections:
            if section.story_id == story_id:
                return section
        return None

    def tasks_for_story(self, story_id: str) -> list[Task]:
        section = self.get_section(story_id)
        return list(section.tasks) if section else []

    def story_tasks_done(self, story_id: str) -> bool:
        tasks = self.tasks_for_story(story_id)
        return bool(tasks) and all(t.done for t in tasks)

    def unknown_story_refs(self, backlog) -> list[str]:
        """Section story ids that do not resolve in the backlog."""
        return [s.story_id for s in self.sections if not backlog.has_story(s.story_id)]

    # -- mutations ---------------------------------------------------------

    def mark_complete(self, task_id: str) -> bool:
        """Mark a task done. Returns False if it does not exist."""
        task = self.get_task(task_id)
        if task is None:
            return False
        task.done = True
        return True

    def regenerate(self, backlog) -> "Plan":
        """Rebuild sections from the backlog, in backlog order.

        Keeps completion state of existing task ids and any extra tasks
        already present in a story's section. Sections for stories that no
        longer exist are dropped.
        """
        existing = {s.story_id: s for s in self.sections}
        sections: list[PlanSection] = []

        for story in backlog.all_stories():
            criteria = [c.text for c in story.criteria]
            old = existing.pop(story.id, None)

            if old is not None and old.tasks:
                primary = old.tasks[0]
                extra_tasks = old.tasks[1:]
                section_extra = old.extra_lines
            else:
                primary = Task(id=story.id, story_id=story.id, title=story.title, done=story.complete)
                extra_tasks = []
                section_extra = list(old.extra_lines) if old else []

            primary.title = story.title
            primary.scope = story.description or story.title
            primary.acceptance = "; ".join(criteria) if criteria else "none"
            primary.verification = derive_verification(criteria)

            section = PlanSection(
                story_id=story.id,
                title=story.title,
                tasks=[primary] + extra_tasks,
                extra_lines=section_extra,
            )
            last = section.tasks[-1]
            if not last.extra_lines or last.extra_lines[-1].strip():
                last.extra_lines.append("")
            sections.append(section)

        for story_id, dropped in existing.items():
            logger.warning(
                f"Dropping plan section {story_id} ({len(dropped.tasks)} task(s)): story no longer in backlog"
            )

        if not any(line.strip() for line in self.preamble):
            self.preamble = list(DEFAULT_PREAMBLE)
        self.sections = sections
        return self

    # -- persistence -------------------------------------------------------

    def render(self) -> str:
        lines = list(self.preamble)
        for section in self.sections:
            lines.extend(section.render())
        return "\n".join(lines).rstrip("\n") + "\n"

    def save(self) -> None:
        atomic_write_text(self.path, self.render())
