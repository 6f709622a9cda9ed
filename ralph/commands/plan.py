"""
ralph plan - Regenerate IMPLEMENTATION_PLAN.md from the PRD backlog.
"""

import logging

from ralph.agents.registry import resolve_agent
from ralph.lib.config import RalphConfig
from ralph.lib.errors import ParseError, UnknownAgentError
from ralph.lib.planparse import Plan
from ralph.lib.validate import ValidationError
from ralph.pm.backlog import Backlog

logger = logging.getLogger(__name__)


def cmd_plan(args, config: RalphConfig) -> int:
    """Refresh the plan; existing task completion is preserved."""
    try:
        resolve_agent(config.agent, config.agents_yaml)
    except (UnknownAgentError, ValidationError) as e:
        print(f"ERROR: {e}")
        return 2

    if args.iterations < 1:
        print("ERROR: iteration count must be at least 1")
        return 2
    if args.iterations > 1:
        logger.info(f"Plan regeneration is deterministic; running 1 pass instead of {args.iterations}")

    try:
        backlog = Backlog.load(config.prd_path)
        plan = Plan.load_or_empty(config.plan_path)
    except ParseError as e:
        print(f"ERROR: {e}")
        return 2

    before = config.plan_path.read_text(encoding="utf-8") if config.plan_path.exists() else None
    plan.regenerate(backlog)
    after = plan.render()

    if after == before:
        print(f"Plan unchanged: {config.plan_path}")
    else:
        plan.save()
        print(f"Plan written: {config.plan_path}")

    tasks = plan.all_tasks()
    pending = plan.remaining_tasks()
    print(f"  Stories: {len(backlog.all_stories())} ({len(backlog.remaining_stories())} remaining)")
    print(f"  Tasks:   {len(tasks)} ({len(pending)} pending)")
    if pending:
        print(f"  Next:    {pending[0].id}: {pending[0].title}")
    return 0
