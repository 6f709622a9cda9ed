"""Loop controller: turns the plan into a sequence of verified commits.

Each iteration:
1. SELECT   - reload backlog + plan from disk, take the next pending task
2. INVOKE   - run the agent (blocking)
3. VERIFY   - re-read state and check the task's acceptance conditions
4. RECORD   - on success mark task/story complete, commit, log progress;
              on failure only log progress

Recoverable failures (agent exit, verification) consume budget and leave
the task pending. Fatal errors (unknown agent, unparseable documents,
commit failure) abort the run.
"""

import logging
from pathlib import Path
from typing import Callable, Optional

from ralph.agents.invoker import AgentInvoker, InvocationResult
from ralph.git.commit import CommitResult, commit_iteration, format_commit_message
from ralph.lib.config import RalphConfig
from ralph.lib.errors import CommitError, InvocationFailure, ParseError, RalphError, VerificationFailure
from ralph.lib.fileio import atomic_write_text
from ralph.lib.planparse import Plan, Task
from ralph.lib.validate import ValidationError
from ralph.pm.backlog import Backlog
from ralph.runner import progress
from ralph.runner.context import Iteration, RunResult, STATUS_ABORTED, STATUS_DONE
from ralph.runner.progress import OUTCOME_FAILED, OUTCOME_SUCCEEDED
from ralph.runner.verify import VerificationResult, verify
from ralph.workflow import fsm as states
from ralph.workflow.fsm import LoopFSM

logger = logging.getLogger(__name__)

Verifier = Callable[..., VerificationResult]
Committer = Callable[..., CommitResult]


def load_state(config: RalphConfig) -> tuple[Backlog, Plan]:
    """Load backlog and plan, checking every plan section resolves to a story.

    Raises:
        ParseError: On unreadable/malformed documents or dangling story refs
    """
    backlog = Backlog.load(config.prd_path)
    plan = Plan.load(config.plan_path)
    dangling = plan.unknown_story_refs(backlog)
    if dangling:
        raise ParseError(
            config.plan_path,
            f"tasks reference stories missing from the backlog: {', '.join(dangling)} (re-run 'ralph plan')",
        )
    return backlog, plan


class LoopController:
    """Runs up to N iterations of the task loop."""

    def __init__(
        self,
        config: RalphConfig,
        invoker: Optional[AgentInvoker] = None,
        verifier: Verifier = verify,
        committer: Committer = commit_iteration,
        on_transition: Callable[[str, str, str], None] | None = None,
    ):
        self.config = config
        self.invoker = invoker or AgentInvoker(config)
        self.verifier = verifier
        self.committer = committer
        self.fsm = LoopFSM(on_transition=on_transition)

        self.result = RunResult()
        self.remaining_budget = 0
        self._task: Task | None = None
        self._story = None
        self._iteration: Iteration | None = None
        self._invocation: InvocationResult | None = None
        self._verification: VerificationResult | None = None
        self._plan: Plan | None = None

    # -- driver ------------------------------------------------------------

    def run(self, max_iterations: int) -> RunResult:
        """Drive the state machine until done or aborted."""
        self.remaining_budget = max_iterations

        try:
            self.invoker.resolve(self.config.agent)
            _, self._plan = load_state(self.config)
        except (RalphError, ValidationError) as e:
            return self._abort(e)

        handlers = {
            states.IDLE: self._on_idle,
            states.SELECTING_TASK: self._on_select,
            states.INVOKING: self._on_invoke,
            states.VERIFYING: self._on_verify,
            states.RECORDING: self._on_record,
        }

        while not self.fsm.is_terminal:
            try:
                handlers[self.fsm.state]()
            except (ParseError, CommitError, ValidationError) as e:
                return self._abort(e)

        self.result.status = STATUS_DONE
        self.result.remaining_tasks = len(self._plan.remaining_tasks()) if self._plan else 0
        logger.info(
            f"Run finished: {len(self.result.succeeded)}/{len(self.result.iterations)} iteration(s) succeeded, "
            f"{self.result.remaining_tasks} task(s) pending"
        )
        return self.result

    def _abort(self, error: Exception) -> RunResult:
        logger.error(f"Aborting run: {error}")
        if not self.fsm.is_terminal:
            self.fsm.abort()
        self.result.status = STATUS_ABORTED
        self.result.error = str(error)
        if self._plan is not None:
            self.result.remaining_tasks = len(self._plan.remaining_tasks())
        return self.result

    # -- states ------------------------------------------------------------

    def _on_idle(self) -> None:
        if self.remaining_budget <= 0:
            self.fsm.budget_exhausted()
            return
        self.fsm.select_task()

    def _on_select(self) -> None:
        backlog, self._plan = load_state(self.config)
        task = self._plan.next_pending()
        if task is None:
            logger.info("No pending tasks remain")
            self.fsm.backlog_exhausted()
            return

        self._task = task
        self._invocation = None
        self._verification = None
        self._iteration = Iteration(
            number=len(self.result.iterations) + 1,
            task_id=task.id,
            story_id=task.story_id,
            agent=self.config.agent,
        )
        self._story = backlog.get_story(task.story_id)
        logger.info(f"Iteration {self._iteration.number}: {task.id} ({task.title})")
        self.fsm.start_invoke()

    def _on_invoke(self) -> None:
        try:
            self._invocation = self.invoker.invoke(
                self.config.agent,
                self._task,
                self.config.workdir,
                story=self._story,
                iteration=self._iteration.number,
            )
        except InvocationFailure as e:
            self._iteration.finish(OUTCOME_FAILED, str(e))
            self.fsm.record()
            return

        if not self._invocation.success:
            self._iteration.finish(
                OUTCOME_FAILED, f"agent {self._invocation.agent} exited {self._invocation.exit_code}"
            )
            self.fsm.record()
            return

        self.fsm.start_verify()

    def _on_verify(self) -> None:
        try:
            self._verification = self.verifier(
                self._task,
                self.config.prd_path,
                self.config.plan_path,
                self.config.workdir,
                dry_run=self.config.dry_run,
            )
        except ParseError as e:
            self._iteration.finish(OUTCOME_FAILED, f"documents unparseable after agent run: {e}")
            self.result.iterations.append(self._iteration)
            progress.append(self.config.progress_path, self._iteration.to_progress_entry())
            raise
        try:
            self._verification.raise_for_failure(self._task.id)
        except VerificationFailure as e:
            logger.warning(f"Iteration {self._iteration.number} failed verification: {e}")
            self._iteration.finish(OUTCOME_FAILED, e.detail)
        self.fsm.record()

    def _on_record(self) -> None:
        iteration = self._iteration
        self.result.iterations.append(iteration)
        self.remaining_budget -= 1

        if iteration.outcome is None:
            try:
                self._record_success()
            except CommitError as e:
                iteration.finish(OUTCOME_FAILED, f"commit failed: {e}")
                progress.append(self.config.progress_path, iteration.to_progress_entry())
                raise

        progress.append(self.config.progress_path, iteration.to_progress_entry())
        self.fsm.next_iteration()

    # -- recording ---------------------------------------------------------

    def _record_success(self) -> None:
        """Mark completion, persist, and commit; roll documents back if the commit fails."""
        task = self._task
        backlog = self._verification.backlog
        plan = self._verification.plan
        snapshot = {path: path.read_text(encoding="utf-8") for path in (backlog.path, plan.path)}

        for index in self._verification.verified_criteria:
            backlog.check_criterion(task.story_id, index)
        plan.mark_complete(task.id)
        story_done = plan.story_tasks_done(task.story_id) and backlog.mark_story_complete(task.story_id)

        plan.save()
        backlog.save()
        self._plan = plan

        message = format_commit_message(
            task.id, task.story_id, task.title, self.config.agent, self._iteration.number
        )
        try:
            commit = self.committer(
                self.config.workdir,
                message,
                no_commit=self.config.no_commit,
                dry_run=self.config.dry_run,
            )
        except CommitError:
            self._restore(snapshot)
            raise

        detail = "task complete"
        if story_done:
            detail += f"; story {task.story_id} complete"
        if self.config.dry_run:
            detail += f"; {self._verification.detail}"
        if not commit.committed:
            detail += f"; commit skipped ({commit.reason})"

        self._iteration.commit_sha = commit.sha
        self._iteration.finish(OUTCOME_SUCCEEDED, detail)

    def _restore(self, snapshot: dict[Path, str]) -> None:
        for path, content in snapshot.items():
            atomic_write_text(path, content)
        self._plan = Plan.load(self.config.plan_path)
        logger.warning("Restored backlog and plan after failed commit")


def run_build(config: RalphConfig, max_iterations: int, **kwargs) -> RunResult:
    """Convenience wrapper: build a controller and run it."""
    return LoopController(config, **kwargs).run(max_iterations)
