"""
PRD parser and writer.

Recognised story grammar:

    ### [ ] US-001: Title
    **Description:** As a user, I want ...

    **Acceptance Criteria:**
    - [ ] First criterion
    - [x] Second criterion

The document is kept as a list of lines. Mutations only flip checkbox
characters in place, so rendering an unmodified backlog reproduces the
file byte for byte.
"""

import logging
import re
from pathlib import Path

from ralph.lib.errors import ParseError
from ralph.lib.fileio import atomic_write_text
from ralph.pm.models import Criterion, Story, STATUS_COMPLETE, STATUS_PENDING

logger = logging.getLogger(__name__)

STORY_HEADING_RE = re.compile(r'^###\s+\[([ xX])\]\s+([A-Za-z][A-Za-z0-9_.-]*):\s*(.+?)\s*$')
STORY_HEADING_START_RE = re.compile(r'^###\s+\[')
BLOCK_END_RE = re.compile(r'^#{1,3}(\s|$)')
DESCRIPTION_RE = re.compile(r'^\*\*Description:\*\*\s*(.*?)\s*$')
CRITERIA_LABEL_RE = re.compile(r'^\*\*Acceptance Criteria:\*\*\s*$')
CHECKBOX_RE = re.compile(r'^\s*[-*]\s+\[([ xX])\]\s+(.+?)\s*$')
FENCE_RE = re.compile(r'^\s*(```|~~~)')


def _checked(mark: str) -> bool:
    return mark.lower() == 'x'


def _set_mark(line: str, pattern: re.Pattern, checked: bool) -> str:
    """Replace the checkbox character captured by group 1 of pattern."""
    match = pattern.match(line)
    start, end = match.span(1)
    return line[:start] + ('x' if checked else ' ') + line[end:]


class Backlog:
    """In-memory view of a PRD document."""

    def __init__(self, path: Path, lines: list[str], stories: list[Story]):
        self.path = Path(path)
        self.lines = lines
        self._stories = stories

    @classmethod
    def load(cls, path: Path) -> "Backlog":
        """Read and parse a PRD file.

        Raises:
            ParseError: If the file is missing, unreadable, or malformed
        """
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise ParseError(path, "backlog file not found") from None
        except (OSError, UnicodeDecodeError) as e:
            raise ParseError(path, f"cannot read backlog: {e}") from None
        return cls.parse(text, path)

    @classmethod
    def parse(cls, text: str, path: Path = Path("<prd>")) -> "Backlog":
        lines = text.split("\n")
        stories: list[Story] = []
        seen: dict[str, int] = {}
        current: Story | None = None
        in_criteria = False
        in_fence = False
        in_comment = False

        for idx, line in enumerate(lines):
            lineno = idx + 1

            if FENCE_RE.match(line):
                in_fence = not in_fence
                continue
            if in_fence:
                continue
            if '<!--' in line and '-->' not in line:
                in_comment = True
                continue
            if in_comment:
                if '-->' in line:
                    in_comment = False
                continue

            if BLOCK_END_RE.match(line):
                current = None
                in_criteria = False

                if STORY_HEADING_START_RE.match(line):
                    match = STORY_HEADING_RE.match(line)
                    if not match:
                        raise ParseError(path, f"malformed story heading: {line.strip()!r}", lineno)
                    story_id = match.group(2)
                    if story_id in seen:
                        raise ParseError(
                            path, f"duplicate story id {story_id} (first seen on line {seen[story_id]})", lineno
                        )
                    seen[story_id] = lineno
                    current = Story(
                        id=story_id,
                        title=match.group(3),
                        status=STATUS_COMPLETE if _checked(match.group(1)) else STATUS_PENDING,
                        line_number=idx,
                    )
                    stories.append(current)
                continue

            if current is None:
                continue

            desc_match = DESCRIPTION_RE.match(line)
            if desc_match:
                current.description = desc_match.group(1)
                continue

            if CRITERIA_LABEL_RE.match(line):
                in_criteria = True
                continue

            if in_criteria:
                box = CHECKBOX_RE.match(line)
                if box:
                    current.criteria.append(Criterion(
                        text=box.group(2),
                        checked=_checked(box.group(1)),
                        line_number=idx,
                    ))

        if not stories:
            raise ParseError(path, "no user stories found (expected '### [ ] <ID>: <title>' headings)")

        for story in stories:
            if not story.criteria:
                logger.warning(f"Story {story.id} in {path} has no acceptance criteria")

        return cls(path, lines, stories)

    # -- queries -----------------------------------------------------------

    def all_stories(self) -> list[Story]:
        """All stories in document order."""
        return list(self._stories)

    def remaining_stories(self) -> list[Story]:
        """Stories whose heading is still unchecked."""
        return [s for s in self._stories if not s.complete]

    def get_story(self, story_id: str) -> Story | None:
        for story in self._stories:
            if story.id == story_id:
                return story
        return None

    def has_story(self, story_id: str) -> bool:
        return self.get_story(story_id) is not None

    # -- mutations ---------------------------------------------------------

    def check_criterion(self, story_id: str, index: int) -> bool:
        """Check off one acceptance criterion. Returns True if it changed."""
        story = self.get_story(story_id)
        if story is None:
            raise KeyError(f"Unknown story: {story_id}")
        criterion = story.criteria[index]
        if criterion.checked:
            return False
        self.lines[criterion.line_number] = _set_mark(
            self.lines[criterion.line_number], CHECKBOX_RE, True
        )
        criterion.checked = True
        return True

    def mark_story_complete(self, story_id: str) -> bool:
        """Check the story heading.

        Refuses (returns False) while any acceptance criterion is unchecked;
        criteria are never ticked as a side effect.
        """
        story = self.get_story(story_id)
        if story is None:
            raise KeyError(f"Unknown story: {story_id}")
        if story.complete:
            return True
        if not story.all_criteria_checked:
            pending = ", ".join(repr(c.text) for c in story.unchecked_criteria())
            logger.warning(f"Not marking {story_id} complete; unchecked criteria: {pending}")
            return False

        self.lines[story.line_number] = _set_mark(
            self.lines[story.line_number], STORY_HEADING_RE, True
        )
        story.status = STATUS_COMPLETE
        logger.info(f"Story {story_id} marked complete")
        return True

    # -- persistence -------------------------------------------------------

    def render(self) -> str:
        return "\n".join(self.lines)

    def save(self) -> None:
        atomic_write_text(self.path, self.render())


def load_backlog(path: Path) -> Backlog:
    """Convenience wrapper for Backlog.load."""
    return Backlog.load(path)
