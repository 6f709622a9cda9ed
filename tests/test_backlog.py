"""Tests for ralph.pm.backlog module."""

import pytest

from ralph.lib.errors import ParseError
from ralph.pm.backlog import Backlog, load_backlog
from ralph.pm.models import STATUS_COMPLETE, STATUS_PENDING


PRD = """# PRD: Completion notes

## Overview
Small demo project.

## User Stories

### [ ] US-001: Write completion doc
**Description:** As a maintainer, I want a completion note so that progress is visible.

**Acceptance Criteria:**
- [ ] File docs/US-001.txt exists with exact text "US-001 complete"
- [ ] Note mentions the story id
- [x] Typecheck passes

### [x] US-002: Already shipped
**Description:** Done earlier.

**Acceptance Criteria:**
- [x] Shipped

## Non-Goals
- [ ] Not a criterion, outside any story
"""


@pytest.fixture
def prd_file(tmp_path):
    path = tmp_path / ".agents" / "tasks" / "prd.md"
    path.parent.mkdir(parents=True)
    path.write_text(PRD)
    return path


class TestParse:
    """Test Backlog.parse."""

    def test_parses_stories_in_order(self):
        backlog = Backlog.parse(PRD)
        assert [s.id for s in backlog.all_stories()] == ["US-001", "US-002"]

    def test_heading_checkbox_sets_status(self):
        backlog = Backlog.parse(PRD)
        assert backlog.get_story("US-001").status == STATUS_PENDING
        assert backlog.get_story("US-002").status == STATUS_COMPLETE

    def test_parses_description_and_title(self):
        story = Backlog.parse(PRD).get_story("US-001")
        assert story.title == "Write completion doc"
        assert story.description.startswith("As a maintainer")

    def test_parses_criteria_with_checkbox_state(self):
        story = Backlog.parse(PRD).get_story("US-001")
        assert [c.text for c in story.criteria] == [
            'File docs/US-001.txt exists with exact text "US-001 complete"',
            "Note mentions the story id",
            "Typecheck passes",
        ]
        assert [c.checked for c in story.criteria] == [False, False, True]

    def test_checkboxes_outside_stories_are_ignored(self):
        backlog = Backlog.parse(PRD)
        texts = [c.text for s in backlog.all_stories() for c in s.criteria]
        assert "Not a criterion, outside any story" not in texts

    def test_checkboxes_in_code_fence_are_ignored(self):
        text = PRD.replace(
            "- [x] Shipped",
            "- [x] Shipped\n```\n- [ ] example only\n### [ ] US-999: not a story\n```",
        )
        backlog = Backlog.parse(text)
        assert not backlog.has_story("US-999")
        assert [c.text for c in backlog.get_story("US-002").criteria] == ["Shipped"]

    def test_remaining_stories(self):
        backlog = Backlog.parse(PRD)
        assert [s.id for s in backlog.remaining_stories()] == ["US-001"]

    def test_malformed_story_heading_raises(self):
        with pytest.raises(ParseError) as exc:
            Backlog.parse(PRD.replace("### [ ] US-001: Write completion doc", "### [ ] Write completion doc"))
        assert exc.value.line == 8
        assert "malformed story heading" in str(exc.value)

    def test_duplicate_story_id_raises(self):
        with pytest.raises(ParseError, match="duplicate story id US-001"):
            Backlog.parse(PRD.replace("US-002: Already shipped", "US-001: Already shipped"))

    def test_no_stories_raises(self):
        with pytest.raises(ParseError, match="no user stories"):
            Backlog.parse("# PRD\n\nNothing here yet.\n")

    def test_story_without_criteria_warns(self, caplog):
        text = "### [ ] US-001: Bare\n**Description:** nothing to check\n"
        backlog = Backlog.parse(text)
        assert backlog.get_story("US-001").criteria == []
        assert "no acceptance criteria" in caplog.text


class TestRoundTrip:
    """Rendering an untouched backlog reproduces the input."""

    def test_render_is_identity(self):
        assert Backlog.parse(PRD).render() == PRD

    def test_render_is_identity_without_trailing_newline(self):
        text = PRD.rstrip("\n")
        assert Backlog.parse(text).render() == text

    def test_save_then_load_preserves_bytes(self, prd_file):
        backlog = load_backlog(prd_file)
        backlog.save()
        assert prd_file.read_text() == PRD


class TestMutations:
    """Test criterion and story checkbox updates."""

    def test_check_criterion_flips_only_that_line(self):
        backlog = Backlog.parse(PRD)
        assert backlog.check_criterion("US-001", 1) is True
        expected = PRD.replace("- [ ] Note mentions the story id", "- [x] Note mentions the story id")
        assert backlog.render() == expected

    def test_check_criterion_already_checked_is_noop(self):
        backlog = Backlog.parse(PRD)
        assert backlog.check_criterion("US-001", 2) is False
        assert backlog.render() == PRD

    def test_check_criterion_unknown_story_raises(self):
        with pytest.raises(KeyError):
            Backlog.parse(PRD).check_criterion("US-404", 0)

    def test_mark_story_complete_refuses_with_unchecked_criteria(self, caplog):
        backlog = Backlog.parse(PRD)
        assert backlog.mark_story_complete("US-001") is False
        assert backlog.get_story("US-001").status == STATUS_PENDING
        assert backlog.render() == PRD
        assert "unchecked criteria" in caplog.text

    def test_mark_story_complete_does_not_tick_criteria(self):
        backlog = Backlog.parse(PRD)
        backlog.mark_story_complete("US-001")
        assert not backlog.get_story("US-001").all_criteria_checked

    def test_mark_story_complete_after_all_criteria(self):
        backlog = Backlog.parse(PRD)
        backlog.check_criterion("US-001", 0)
        backlog.check_criterion("US-001", 1)
        assert backlog.mark_story_complete("US-001") is True
        assert "### [x] US-001: Write completion doc" in backlog.render()
        assert backlog.remaining_stories() == []

    def test_mark_already_complete_story(self):
        backlog = Backlog.parse(PRD)
        assert backlog.mark_story_complete("US-002") is True
        assert backlog.render() == PRD

    def test_saved_changes_survive_reload(self, prd_file):
        backlog = load_backlog(prd_file)
        backlog.check_criterion("US-001", 0)
        backlog.check_criterion("US-001", 1)
        backlog.mark_story_complete("US-001")
        backlog.save()

        reloaded = load_backlog(prd_file)
        assert reloaded.get_story("US-001").complete
        assert reloaded.get_story("US-001").all_criteria_checked


class TestLoad:
    """Test Backlog.load."""

    def test_missing_file_raises_parse_error(self, tmp_path):
        with pytest.raises(ParseError, match="not found") as exc:
            Backlog.load(tmp_path / "missing.md")
        assert exc.value.path == tmp_path / "missing.md"

    def test_error_message_names_file(self, tmp_path):
        path = tmp_path / "prd.md"
        path.write_text("### [?] broken\n")
        with pytest.raises(ParseError) as exc:
            Backlog.load(path)
        assert str(path) in str(exc.value)

    def test_save_leaves_no_temp_file(self, prd_file):
        load_backlog(prd_file).save()
        assert sorted(p.name for p in prd_file.parent.iterdir()) == ["prd.md"]
