"""Tests for ralph.workflow.engine (the build loop) against real git repos."""

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from ralph.agents.invoker import AgentInvoker, InvocationResult
from ralph.agents.registry import resolve_agent
from ralph.git.branch import get_commit_count
from ralph.lib.config import load_config
from ralph.lib.errors import CommitError, InvocationFailure
from ralph.lib.planparse import Plan
from ralph.pm.backlog import Backlog
from ralph.runner import progress
from ralph.runner.context import EXIT_ABORTED, EXIT_OK, EXIT_PENDING, STATUS_ABORTED, STATUS_DONE
from ralph.workflow.engine import LoopController, run_build


STORY = """### [ ] {sid}: Write {sid} doc
**Description:** As a maintainer, I want a completion note for {sid}.

**Acceptance Criteria:**
- [ ] File docs/{sid}.txt exists with exact text "{sid} complete"
- [ ] Note mentions the story id
- [ ] Typecheck passes
"""


def make_prd(*story_ids: str) -> str:
    return "# PRD: Demo\n\n## User Stories\n\n" + "\n".join(STORY.format(sid=s) for s in story_ids)


def git(repo: Path, *args: str) -> str:
    result = subprocess.run(["git", "-C", str(repo), *args], capture_output=True, text=True, check=True)
    return result.stdout.strip()


class FakeInvoker:
    """Stands in for AgentInvoker; behaviour picks what the 'agent' does."""

    def __init__(self, workdir: Path, prd_path: Path, behaviour: str = "work"):
        self.workdir = workdir
        self.prd_path = prd_path
        self.behaviour = behaviour
        self.calls = []

    def resolve(self, agent_name):
        return resolve_agent(agent_name)

    def invoke(self, agent_name, task, workdir, story=None, iteration=1):
        self.calls.append(task.id)
        if self.behaviour == "crash":
            raise InvocationFailure(agent_name, "could not start 'claude'")
        if self.behaviour == "exit1":
            return InvocationResult(agent=agent_name, exit_code=1)
        if self.behaviour == "corrupt":
            self.prd_path.write_text("### [?] mangled heading\n")
            return InvocationResult(agent=agent_name, exit_code=0)
        if self.behaviour in ("work", "tick_only"):
            backlog = Backlog.load(self.prd_path)
            for index, criterion in enumerate(backlog.get_story(task.story_id).criteria):
                if not criterion.text.startswith("File "):
                    backlog.check_criterion(task.story_id, index)
            backlog.save()
        if self.behaviour == "work":
            (workdir / "docs").mkdir(exist_ok=True)
            (workdir / "docs" / f"{task.story_id}.txt").write_text(f"{task.story_id} complete\n")
        return InvocationResult(agent=agent_name, exit_code=0)


@pytest.fixture
def project(tmp_path):
    """Git repo with a PRD for US-001 and a generated plan."""
    return setup_project(tmp_path, "US-001")


def setup_project(root: Path, *story_ids: str, environ=None):
    git(root, "init", "-q")
    git(root, "config", "user.email", "loop@example.com")
    git(root, "config", "user.name", "Loop Test")
    git(root, "config", "commit.gpgsign", "false")

    config = load_config(root, agent="claude", environ=environ or {})
    config.prd_path.parent.mkdir(parents=True)
    config.prd_path.write_text(make_prd(*story_ids))
    Plan.empty(config.plan_path).regenerate(Backlog.load(config.prd_path)).save()

    git(root, "add", "-A")
    git(root, "commit", "-q", "-m", "init")
    return config


def controller(config, behaviour="work", **kwargs):
    invoker = FakeInvoker(config.workdir, config.prd_path, behaviour)
    return LoopController(config, invoker=invoker, **kwargs), invoker


def snapshot(root: Path) -> dict[str, str]:
    return {
        str(p.relative_to(root)): p.read_text()
        for p in root.rglob("*")
        if p.is_file() and ".git" not in p.relative_to(root).parts
    }


class TestSuccessfulIteration:
    """An agent that does the work: task, story, commit, progress."""

    def test_one_iteration_completes_story(self, project):
        loop, invoker = controller(project)
        result = loop.run(1)

        assert result.status == STATUS_DONE
        assert result.exit_code == EXIT_OK
        assert invoker.calls == ["US-001"]

        plan = Plan.load(project.plan_path)
        assert plan.get_task("US-001").done
        backlog = Backlog.load(project.prd_path)
        story = backlog.get_story("US-001")
        assert story.complete
        assert story.all_criteria_checked

        assert get_commit_count(project.workdir) == 2
        assert "feat(US-001): Write US-001 doc" in git(project.workdir, "log", "-1", "--format=%B")

        entries = progress.read_entries(project.progress_path)
        assert [e.outcome for e in entries] == ["succeeded"]
        assert entries[0].commit == result.iterations[0].commit_sha
        assert entries[0].agent == "claude"

    def test_commit_includes_agent_changes_and_documents(self, project):
        loop, _ = controller(project)
        loop.run(1)
        changed = git(project.workdir, "show", "--name-only", "--format=", "HEAD").splitlines()
        assert "docs/US-001.txt" in changed
        assert ".agents/tasks/prd.md" in changed
        assert ".ralph/IMPLEMENTATION_PLAN.md" in changed

    def test_all_stories_complete_with_enough_budget(self, tmp_path):
        config = setup_project(tmp_path, "US-001", "US-002", "US-003")
        loop, invoker = controller(config)
        result = loop.run(5)

        assert result.exit_code == EXIT_OK
        assert invoker.calls == ["US-001", "US-002", "US-003"]
        assert Backlog.load(config.prd_path).remaining_stories() == []
        assert Plan.load(config.plan_path).remaining_tasks() == []
        assert get_commit_count(config.workdir) == 4

    def test_stops_early_when_backlog_exhausted(self, project):
        loop, invoker = controller(project)
        result = loop.run(10)
        assert len(result.iterations) == 1
        assert loop.fsm.history[-1][2] == "backlog_exhausted"

    def test_transitions_reported(self, project):
        seen = []
        loop, _ = controller(project, on_transition=lambda a, b, t: seen.append(t))
        loop.run(1)
        assert seen == [
            "select_task", "start_invoke", "start_verify", "record", "next_iteration", "budget_exhausted",
        ]


class TestFailedIteration:
    """Recoverable failures consume budget and leave the task pending."""

    def test_agent_produces_no_file(self, project):
        loop, _ = controller(project, behaviour="tick_only")
        result = loop.run(1)

        assert result.exit_code == EXIT_PENDING
        assert result.remaining_tasks == 1
        assert not Backlog.load(project.prd_path).get_story("US-001").complete
        assert not Plan.load(project.plan_path).get_task("US-001").done
        assert get_commit_count(project.workdir) == 1

        entries = progress.read_entries(project.progress_path)
        assert [e.outcome for e in entries] == ["failed"]
        assert "docs/US-001.txt" in entries[0].detail

    def test_nonzero_exit_skips_verification(self, project):
        verifier_calls = []
        loop, _ = controller(project, behaviour="exit1", verifier=lambda *a, **k: verifier_calls.append(a))
        result = loop.run(1)
        assert verifier_calls == []
        assert result.iterations[0].detail == "agent claude exited 1"
        assert progress.read_entries(project.progress_path)[0].outcome == "failed"

    def test_invocation_failure_is_recorded(self, project):
        loop, _ = controller(project, behaviour="crash")
        result = loop.run(1)
        assert result.status == STATUS_DONE
        assert result.exit_code == EXIT_PENDING
        assert "could not start" in progress.read_entries(project.progress_path)[0].detail

    def test_same_task_retried_until_budget_spent(self, project):
        loop, invoker = controller(project, behaviour="tick_only")
        result = loop.run(3)
        assert invoker.calls == ["US-001", "US-001", "US-001"]
        assert [e.iteration for e in progress.read_entries(project.progress_path)] == [1, 2, 3]
        assert result.exit_code == EXIT_PENDING

    def test_budget_exhausted_with_pending_tasks(self, tmp_path):
        config = setup_project(tmp_path, "US-001", "US-002")
        loop, invoker = controller(config)
        result = loop.run(1)
        assert invoker.calls == ["US-001"]
        assert result.status == STATUS_DONE
        assert result.remaining_tasks == 1
        assert result.exit_code == EXIT_PENDING


class TestNoCommit:
    """--no-commit keeps state updates but makes no commits."""

    def test_successful_iteration_without_commit(self, tmp_path):
        config = setup_project(tmp_path, "US-001").with_overrides(no_commit=True)
        loop, _ = controller(config)
        result = loop.run(1)

        assert result.exit_code == EXIT_OK
        assert get_commit_count(config.workdir) == 1
        assert Plan.load(config.plan_path).get_task("US-001").done
        assert Backlog.load(config.prd_path).get_story("US-001").complete
        entry = progress.read_entries(config.progress_path)[0]
        assert entry.outcome == "succeeded"
        assert entry.commit is None
        assert "no-commit" in entry.detail


class TestAbort:
    """Fatal errors abort the run."""

    def test_unknown_agent_aborts_before_any_write(self, project):
        before = snapshot(project.workdir)
        config = project.with_overrides(agent="gpt-9000")
        result = LoopController(config).run(3)

        assert result.status == STATUS_ABORTED
        assert result.exit_code == EXIT_ABORTED
        assert "gpt-9000" in result.error
        assert result.iterations == []
        assert snapshot(project.workdir) == before
        assert not project.progress_path.exists()

    def test_missing_plan_aborts(self, project):
        project.plan_path.unlink()
        loop, invoker = controller(project)
        result = loop.run(1)
        assert result.exit_code == EXIT_ABORTED
        assert "ralph plan" in result.error
        assert invoker.calls == []

    def test_malformed_prd_aborts(self, project):
        project.prd_path.write_text("### [?] broken heading\n")
        loop, invoker = controller(project)
        result = loop.run(1)
        assert result.exit_code == EXIT_ABORTED
        assert str(project.prd_path) in result.error
        assert invoker.calls == []

    def test_plan_referencing_unknown_story_aborts(self, project):
        project.prd_path.write_text(make_prd("US-002"))
        loop, _ = controller(project)
        result = loop.run(1)
        assert result.exit_code == EXIT_ABORTED
        assert "US-001" in result.error

    def test_agent_corrupting_prd_is_logged_then_aborts(self, project):
        loop, invoker = controller(project, behaviour="corrupt")
        result = loop.run(2)

        assert result.exit_code == EXIT_ABORTED
        assert invoker.calls == ["US-001"]
        assert len(result.iterations) == 1
        entries = progress.read_entries(project.progress_path)
        assert [e.outcome for e in entries] == ["failed"]
        assert "unparseable" in entries[0].detail

    def test_commit_error_restores_documents(self, project):
        def failing_commit(*args, **kwargs):
            raise CommitError("HEAD is detached; refusing to commit outside a branch")

        loop, _ = controller(project, committer=failing_commit)
        result = loop.run(2)

        assert result.status == STATUS_ABORTED
        assert result.exit_code == EXIT_ABORTED
        assert len(result.iterations) == 1
        assert not Plan.load(project.plan_path).get_task("US-001").done
        assert not Backlog.load(project.prd_path).get_story("US-001").complete
        entries = progress.read_entries(project.progress_path)
        assert [e.outcome for e in entries] == ["failed"]
        assert "commit failed" in entries[0].detail

    def test_real_detached_head_aborts(self, project):
        git(project.workdir, "checkout", "-q", "--detach")
        loop, _ = controller(project)
        result = loop.run(1)
        assert result.exit_code == EXIT_ABORTED
        assert "detached" in result.error
        assert not Plan.load(project.plan_path).get_task("US-001").done


class TestDryRun:
    """RALPH_DRY_RUN=1 with the real invoker."""

    def test_no_process_no_commit(self, tmp_path):
        config = setup_project(tmp_path, "US-001", "US-002", environ={"RALPH_DRY_RUN": "1"})
        assert config.dry_run

        with patch("ralph.agents.invoker.subprocess.run") as mock_run:
            result = run_build(config, 2)

        mock_run.assert_not_called()
        assert get_commit_count(config.workdir) == 1
        assert len(result.iterations) == 2
        assert result.exit_code == EXIT_OK
        entries = progress.read_entries(config.progress_path)
        assert [e.outcome for e in entries] == ["succeeded", "succeeded"]
        assert all(e.commit is None for e in entries)
        assert "commit skipped (dry-run)" in entries[0].detail

    def test_records_completion_in_documents(self, tmp_path):
        config = setup_project(tmp_path, "US-001", environ={"RALPH_DRY_RUN": "1"})
        result = run_build(config, 1)

        assert result.exit_code == EXIT_OK
        assert Plan.load(config.plan_path).get_task("US-001").done
        story = Backlog.load(config.prd_path).get_story("US-001")
        assert story.complete
        assert story.all_criteria_checked
        assert "would fail" in result.iterations[0].detail

    def test_dry_run_uses_real_invoker_by_default(self, tmp_path):
        config = setup_project(tmp_path, "US-001", environ={"RALPH_DRY_RUN": "1"})
        loop = LoopController(config)
        assert isinstance(loop.invoker, AgentInvoker)
