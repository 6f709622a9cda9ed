"""
Configuration for a loop run.

Settings come from (lowest to highest precedence): built-in defaults,
.ralph/config.env in the project, the process environment, and CLI flags.
The resulting RalphConfig is passed explicitly to every collaborator.
"""

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

from . import envparse

logger = logging.getLogger(__name__)

DEFAULT_AGENT = "codex"
DEFAULT_PRD_PATH = ".agents/tasks/prd.md"
DEFAULT_PLAN_PATH = ".ralph/IMPLEMENTATION_PLAN.md"
DEFAULT_PROGRESS_PATH = ".ralph/progress.md"
CONFIG_ENV_PATH = ".ralph/config.env"
AGENTS_YAML_PATH = ".ralph/agents.yaml"

DRY_RUN_ENV = "RALPH_DRY_RUN"


@dataclass(frozen=True)
class RalphConfig:
    """Resolved settings for one invocation of plan/build."""
    workdir: Path
    prd_path: Path
    plan_path: Path
    progress_path: Path
    agent: str = DEFAULT_AGENT
    dry_run: bool = False
    no_commit: bool = False

    @property
    def agents_yaml(self) -> Path:
        return self.workdir / AGENTS_YAML_PATH

    def with_overrides(self, **changes) -> "RalphConfig":
        """Return a copy with the given non-None fields replaced."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def _resolve(workdir: Path, value: str) -> Path:
    path = Path(value)
    return path if path.is_absolute() else workdir / path


def load_config(
    workdir: Path,
    agent: Optional[str] = None,
    no_commit: Optional[bool] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> RalphConfig:
    """Build a RalphConfig for the project rooted at workdir.

    Args:
        workdir: Project working directory (where .agents/ and .ralph/ live)
        agent: --agent flag, overrides RALPH_AGENT
        no_commit: --no-commit flag; only True overrides the file setting
        environ: Process environment (defaults to os.environ)

    Raises:
        ValueError: If .ralph/config.env is malformed
    """
    workdir = Path(workdir).resolve()
    environ = os.environ if environ is None else environ

    file_env: dict[str, str] = {}
    env_path = workdir / CONFIG_ENV_PATH
    if env_path.exists():
        file_env = envparse.load_env(env_path)
        logger.debug(f"Loaded {env_path} ({len(file_env)} keys)")

    def setting(key: str, default: str) -> str:
        return environ.get(key) or file_env.get(key) or default

    config = RalphConfig(
        workdir=workdir,
        prd_path=_resolve(workdir, setting("RALPH_PRD_PATH", DEFAULT_PRD_PATH)),
        plan_path=_resolve(workdir, setting("RALPH_PLAN_PATH", DEFAULT_PLAN_PATH)),
        progress_path=_resolve(workdir, setting("RALPH_PROGRESS_PATH", DEFAULT_PROGRESS_PATH)),
        agent=setting("RALPH_AGENT", DEFAULT_AGENT),
        dry_run=envparse.is_truthy(environ.get(DRY_RUN_ENV)),
        no_commit=envparse.is_truthy(setting("RALPH_NO_COMMIT", "")),
    )

    return config.with_overrides(agent=agent, no_commit=True if no_commit else None)
