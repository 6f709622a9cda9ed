"""Agent backends: the closed registry and the subprocess invoker."""

from ralph.agents.registry import AGENTS, AgentConfig, agent_names, resolve_agent
from ralph.agents.invoker import AgentInvoker, InvocationResult

__all__ = [
    "AGENTS",
    "AgentConfig",
    "agent_names",
    "resolve_agent",
    "AgentInvoker",
    "InvocationResult",
]
