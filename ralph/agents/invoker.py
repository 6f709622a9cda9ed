"""
Agent invocation.

Runs one agent backend as a child process in the project directory with
stdout/stderr inherited, so whoever is watching the run sees the agent
work live. Blocks until the agent exits; no timeout is applied here.
"""

import logging
import os
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ralph.agents.registry import AgentConfig, build_command, resolve_agent
from ralph.lib.config import RalphConfig
from ralph.lib.errors import InvocationFailure
from ralph.lib.planparse import Task
from ralph.lib.prompts import render_prompt
from ralph.pm.models import Story

logger = logging.getLogger(__name__)


@dataclass
class InvocationResult:
    agent: str
    exit_code: int
    command: list[str] = field(default_factory=list)
    duration: float = 0.0
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0


def _relative(path: Path, workdir: Path) -> str:
    try:
        return str(path.relative_to(workdir))
    except ValueError:
        return str(path)


def build_prompt(config: RalphConfig, task: Task, story: Optional[Story], iteration: int) -> str:
    """Render the build prompt for one task."""
    if story is not None:
        criteria = "\n".join(
            f"- [{'x' if c.checked else ' '}] {c.text}" for c in story.criteria
        ) or "(none listed)"
        story_title = story.title
        description = story.description or "(no description)"
    else:
        criteria = "(none listed)"
        story_title = task.title
        description = "(story not found in backlog)"

    return render_prompt(
        "build",
        iteration=iteration,
        story_id=task.story_id,
        story_title=story_title,
        story_description=description,
        criteria=criteria,
        task_id=task.id,
        task_title=task.title,
        scope=task.scope or "none",
        acceptance=task.acceptance or "none",
        verification=task.verification or "none",
        prd_path=_relative(config.prd_path, config.workdir),
        plan_path=_relative(config.plan_path, config.workdir),
        progress_path=_relative(config.progress_path, config.workdir),
    )


class AgentInvoker:
    """Launches the configured agent for a task."""

    def __init__(self, config: RalphConfig):
        self.config = config

    def resolve(self, agent_name: str) -> AgentConfig:
        return resolve_agent(agent_name, self.config.agents_yaml)

    def invoke(
        self,
        agent_name: str,
        task: Task,
        workdir: Path,
        story: Optional[Story] = None,
        iteration: int = 1,
    ) -> InvocationResult:
        """Run the agent for a task.

        Returns an InvocationResult carrying the exit status; a non-zero exit
        is not an exception.

        Raises:
            UnknownAgentError: agent_name is not registered
            InvocationFailure: the process could not be started
        """
        agent = self.resolve(agent_name)
        prompt = build_prompt(self.config, task, story, iteration)
        cmd = build_command(agent, prompt, workdir)

        if self.config.dry_run:
            logger.info(f"[DRY RUN] would run {agent.name} for {task.id}: {agent.binary} ...")
            return InvocationResult(agent=agent.name, exit_code=0, command=cmd, dry_run=True)

        env = {
            **os.environ,
            **agent.env,
            "RALPH_TASK_ID": task.id,
            "RALPH_STORY_ID": task.story_id,
            "RALPH_ITERATION": str(iteration),
        }

        logger.info(f"Invoking {agent.name} for {task.id} in {workdir}")
        start = time.time()
        try:
            result = subprocess.run(
                cmd,
                cwd=str(workdir),
                env=env,
                input=prompt if agent.prompt_via_stdin else None,
                text=True,
            )
        except OSError as e:
            raise InvocationFailure(agent.name, f"could not start '{agent.binary}': {e}") from e
        duration = time.time() - start

        logger.info(f"{agent.name} exited {result.returncode} after {duration:.1f}s")
        return InvocationResult(
            agent=agent.name,
            exit_code=result.returncode,
            command=cmd,
            duration=duration,
        )
