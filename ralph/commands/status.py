"""
ralph status - Show backlog, plan, and recent progress. Read-only.
"""

from ralph.agents.registry import check_binary_available, resolve_agent
from ralph.git.branch import get_commit_count, get_current_branch
from ralph.git.status import get_changed_files, is_git_repo
from ralph.lib.config import RalphConfig
from ralph.lib.errors import ParseError, UnknownAgentError
from ralph.lib.planparse import Plan
from ralph.pm.backlog import Backlog
from ralph.runner import progress

RECENT_ENTRIES = 5


def cmd_status(args, config: RalphConfig) -> int:
    """Show where the loop stands."""
    try:
        backlog = Backlog.load(config.prd_path)
    except ParseError as e:
        print(f"ERROR: {e}")
        return 2

    stories = backlog.all_stories()
    print(f"Backlog: {config.prd_path}")
    print("=" * 60)
    for story in stories:
        checked = sum(1 for c in story.criteria if c.checked)
        mark = "x" if story.complete else " "
        print(f"  [{mark}] {story.id}: {story.title} ({checked}/{len(story.criteria)} criteria)")
    print()

    if config.plan_path.exists():
        try:
            plan = Plan.load(config.plan_path)
        except ParseError as e:
            print(f"ERROR: {e}")
            return 2
        tasks = plan.all_tasks()
        done = len(tasks) - len(plan.remaining_tasks())
        print(f"Plan Progress:  {done}/{len(tasks)} tasks")
        next_task = plan.next_pending()
        if next_task:
            print(f"Next:           {next_task.id}: {next_task.title}")
        dangling = plan.unknown_story_refs(backlog)
        if dangling:
            print(f"WARNING: plan references unknown stories: {', '.join(dangling)}")
    else:
        print("Plan: (none - run 'ralph plan')")
    print()

    if is_git_repo(config.workdir):
        branch = get_current_branch(config.workdir) or "(detached)"
        changed = get_changed_files(config.workdir)
        dirty = f" ({len(changed)} uncommitted change(s))" if changed else ""
        print(f"Git:            {branch}, {get_commit_count(config.workdir)} commits{dirty}")

    try:
        agent = resolve_agent(config.agent, config.agents_yaml)
        found = "on PATH" if check_binary_available(agent) else "NOT on PATH"
        print(f"Agent:          {agent.name} ({agent.binary} {found})")
    except UnknownAgentError as e:
        print(f"WARNING: {e}")

    entries = progress.read_entries(config.progress_path)
    if entries:
        print()
        print("Recent iterations:")
        for entry in entries[-RECENT_ENTRIES:]:
            print(f"  {entry.timestamp} #{entry.iteration} {entry.task} {entry.outcome} {entry.detail}")
    return 0
