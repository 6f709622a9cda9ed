"""Ralph: drive coding agents through a PRD backlog, one verified commit at a time."""

__version__ = "0.3.0"
