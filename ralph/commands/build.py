"""
ralph build - Run up to N loop iterations against the plan.
"""

from ralph.lib.config import RalphConfig
from ralph.runner.context import EXIT_ABORTED
from ralph.workflow.engine import LoopController


def cmd_build(args, config: RalphConfig) -> int:
    """Run the loop and report; the exit code reflects what is left to do."""
    if args.iterations < 1:
        print("ERROR: iteration count must be at least 1")
        return EXIT_ABORTED

    mode = []
    if config.dry_run:
        mode.append("dry-run")
    if config.no_commit:
        mode.append("no-commit")
    suffix = f" [{', '.join(mode)}]" if mode else ""
    print(f"Building with {config.agent}, up to {args.iterations} iteration(s){suffix}")

    result = LoopController(config).run(args.iterations)

    print()
    for iteration in result.iterations:
        marker = "ok  " if iteration.succeeded else "FAIL"
        sha = f" {iteration.commit_sha[:7]}" if iteration.commit_sha else ""
        print(f"  [{marker}] #{iteration.number} {iteration.task_id}{sha} {iteration.detail}")

    if result.error:
        print(f"ERROR: {result.error}")
    elif result.remaining_tasks:
        print(f"Iteration budget spent; {result.remaining_tasks} task(s) still pending")
    else:
        print("All tasks complete")
    return result.exit_code
