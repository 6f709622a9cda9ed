"""
Agent backend registry.

The set of agents is closed: every backend the loop can drive is listed in
AGENTS below. Adding a backend means adding an entry here, never a branch
in the loop.

COMMAND TEMPLATES
=================

Templates support two placeholders:
- {prompt}:  The rendered task prompt. If absent from the template, the
  prompt is written to the agent's stdin instead.
- {workdir}: The project working directory.

A project may override the template (and extra environment) of a known
agent in .ralph/agents.yaml:

    agents:
      claude:
        command: claude -p --model opus --dangerously-skip-permissions {prompt}
      glm:
        env:
          ANTHROPIC_BASE_URL: https://my-proxy.example/anthropic

Naming an agent that is not registered is a configuration error.
"""

import logging
import shlex
import shutil
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

import yaml

from ralph.lib.errors import UnknownAgentError
from ralph.lib.validate import validate

logger = logging.getLogger(__name__)

_PROMPT_PLACEHOLDER = "__RALPH_PROMPT__"


@dataclass(frozen=True)
class AgentConfig:
    """One pluggable backend."""
    name: str
    binary: str
    command: str
    env: dict[str, str] = field(default_factory=dict)
    description: str = ""

    @property
    def prompt_via_stdin(self) -> bool:
        return "{prompt}" not in self.command


AGENTS: dict[str, AgentConfig] = {
    "codex": AgentConfig(
        name="codex",
        binary="codex",
        command="codex exec --dangerously-bypass-approvals-and-sandbox -C {workdir} -",
        description="OpenAI Codex CLI",
    ),
    "claude": AgentConfig(
        name="claude",
        binary="claude",
        command="claude -p --dangerously-skip-permissions {prompt}",
        description="Anthropic Claude Code CLI",
    ),
    "droid": AgentConfig(
        name="droid",
        binary="droid",
        command="droid exec --skip-permissions-unsafe {prompt}",
        description="Factory Droid CLI",
    ),
    "opencode": AgentConfig(
        name="opencode",
        binary="opencode",
        command="opencode run {prompt}",
        description="OpenCode CLI",
    ),
    "glm": AgentConfig(
        name="glm",
        binary="claude",
        command="claude -p --dangerously-skip-permissions {prompt}",
        env={"ANTHROPIC_BASE_URL": "https://api.z.ai/api/anthropic"},
        description="Claude Code CLI against a GLM-compatible endpoint",
    ),
    "kimi": AgentConfig(
        name="kimi",
        binary="claude",
        command="claude -p --dangerously-skip-permissions {prompt}",
        env={"ANTHROPIC_BASE_URL": "https://api.moonshot.ai/anthropic"},
        description="Claude Code CLI against a Kimi-compatible endpoint",
    ),
}


def agent_names() -> list[str]:
    return sorted(AGENTS)


def resolve_agent(name: str, agents_yaml: Optional[Path] = None) -> AgentConfig:
    """Look up an agent, applying project overrides if present.

    Raises:
        UnknownAgentError: If name (or a name in agents.yaml) is not registered
        ValidationError: If agents.yaml has the wrong shape
    """
    if name not in AGENTS:
        raise UnknownAgentError(name, agent_names())

    overrides = load_overrides(agents_yaml)
    agent = AGENTS[name]
    override = overrides.get(name)
    if override:
        merged_env = {**agent.env, **override.get("env", {})}
        agent = replace(agent, command=override.get("command", agent.command), env=merged_env)
        agent = replace(agent, binary=shlex.split(agent.command)[0])
        logger.debug(f"Applied agents.yaml override for {name}: {agent.command}")
    return agent


def load_overrides(agents_yaml: Optional[Path]) -> dict[str, dict]:
    """Read .ralph/agents.yaml; returns {} when absent or unparseable."""
    if agents_yaml is None or not agents_yaml.exists():
        return {}

    try:
        data = yaml.safe_load(agents_yaml.read_text())
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {agents_yaml}: {e}")
        return {}

    if not data:
        return {}

    validate(data, "agents")
    overrides = data.get("agents") or {}
    for override_name in overrides:
        if override_name not in AGENTS:
            raise UnknownAgentError(override_name, agent_names())
    return overrides


def build_command(agent: AgentConfig, prompt: str, workdir: Path) -> list[str]:
    """Expand an agent's command template into an argv list.

    The prompt is substituted after shell-splitting so quotes inside it
    cannot break the command line.
    """
    template = agent.command.replace("{prompt}", _PROMPT_PLACEHOLDER)
    template = template.replace("{workdir}", shlex.quote(str(workdir)))
    cmd = shlex.split(template)
    return [prompt if arg == _PROMPT_PLACEHOLDER else arg for arg in cmd]


def check_binary_available(agent: AgentConfig) -> bool:
    """Check if the agent's binary is on PATH."""
    return shutil.which(agent.binary) is not None
