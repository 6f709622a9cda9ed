"""
Verification of an iteration's work.

After the agent exits, the backlog and plan are re-read from disk and the
task's acceptance conditions are checked against the working tree:

- each story criterion that is mechanically checkable must pass;
- each criterion that is not checkable must have been ticked in the PRD;
- the task's Verification field must be checkable and pass, unless it is
  "none".

Anything that cannot be resolved fails the iteration. In dry-run no agent
has touched the tree, so every condition is taken as holding and failures
are only reported.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from ralph.lib.conditions import check_text, is_none
from ralph.lib.errors import VerificationFailure
from ralph.lib.planparse import Plan, Task
from ralph.pm.backlog import Backlog

logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    ok: bool
    detail: str = ""
    checks: list[str] = field(default_factory=list)
    verified_criteria: list[int] = field(default_factory=list)
    backlog: Backlog | None = None
    plan: Plan | None = None

    def raise_for_failure(self, task_id: str) -> None:
        if not self.ok:
            raise VerificationFailure(task_id, self.detail)


def verify(task: Task, prd_path: Path, plan_path: Path, workdir: Path, dry_run: bool = False) -> VerificationResult:
    """Check that a task's acceptance conditions hold on disk.

    Returns the freshly loaded backlog and plan alongside the verdict so the
    caller records completion against what the agent left behind.

    Raises:
        ParseError: If the agent left the backlog or plan unparseable
    """
    backlog = Backlog.load(prd_path)
    plan = Plan.load(plan_path)

    def fail(detail: str, checks: list[str] | None = None) -> VerificationResult:
        logger.info(f"Verification failed for {task.id}: {detail}")
        return VerificationResult(False, detail, checks or [], backlog=backlog, plan=plan)

    if plan.get_task(task.id) is None:
        return fail(f"task {task.id} is no longer in {plan_path.name}")

    story = backlog.get_story(task.story_id)
    if story is None:
        return fail(f"story {task.story_id} is no longer in {prd_path.name}")

    checks: list[str] = []
    verified: list[int] = []
    problems: list[str] = []

    for index, criterion in enumerate(story.criteria):
        result = check_text(criterion.text, workdir, dry_run=dry_run)
        if result.resolved:
            checks.append(result.detail)
            if result.ok:
                verified.append(index)
            else:
                problems.append(f"criterion {criterion.text!r}: {result.detail}")
        elif not criterion.checked:
            problems.append(f"criterion not checked off: {criterion.text!r}")

    current = plan.get_task(task.id)
    if not is_none(current.verification):
        result = check_text(current.verification, workdir, dry_run=dry_run)
        if result.resolved:
            checks.append(result.detail)
        if not result.ok:
            problems.append(f"verification: {result.detail}")

    if dry_run:
        detail = "dry-run: conditions assumed to hold"
        if problems:
            logger.info(f"Dry-run for {task.id} would have failed: {'; '.join(problems)}")
            detail += f" ({len(problems)} would fail)"
        return VerificationResult(
            True,
            detail,
            checks,
            verified_criteria=list(range(len(story.criteria))),
            backlog=backlog,
            plan=plan,
        )

    if problems:
        return fail("; ".join(problems), checks)

    logger.info(f"Verification passed for {task.id} ({len(checks)} mechanical check(s))")
    return VerificationResult(
        True,
        "all acceptance conditions hold",
        checks,
        verified_criteria=verified,
        backlog=backlog,
        plan=plan,
    )
