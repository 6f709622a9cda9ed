"""
Error taxonomy for the task loop.

Fatal errors (ParseError, UnknownAgentError, CommitError) abort a run.
Recoverable errors (InvocationFailure, VerificationFailure) are recorded
against the iteration and the loop moves on.
"""

from pathlib import Path


class RalphError(Exception):
    """Base class for all loop errors."""


class ParseError(RalphError):
    """A backlog or plan document does not match the checklist grammar."""

    def __init__(self, path: Path | str, message: str, line: int | None = None):
        self.path = Path(path)
        self.line = line
        self.message = message
        location = f"{self.path}:{line}" if line else str(self.path)
        super().__init__(f"{location}: {message}")


class UnknownAgentError(RalphError):
    """Agent name is not in the registry."""

    def __init__(self, name: str, known: list[str] | None = None):
        self.name = name
        self.known = known or []
        msg = f"Unknown agent '{name}'"
        if self.known:
            msg += f" (known agents: {', '.join(self.known)})"
        super().__init__(msg)


class InvocationFailure(RalphError):
    """The agent process could not be started or exited non-zero."""

    def __init__(self, agent: str, message: str, exit_code: int | None = None):
        self.agent = agent
        self.exit_code = exit_code
        super().__init__(f"[{agent}] {message}")


class VerificationFailure(RalphError):
    """Acceptance condition for a task does not hold on disk."""

    def __init__(self, task_id: str, detail: str):
        self.task_id = task_id
        self.detail = detail
        super().__init__(f"{task_id}: {detail}")


class CommitError(RalphError):
    """Version control refused to record the iteration."""

    def __init__(self, message: str, stderr: str = ""):
        self.stderr = stderr
        super().__init__(message + (f": {stderr.strip()}" if stderr.strip() else ""))
