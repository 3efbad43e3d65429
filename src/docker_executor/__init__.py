"""Docker Executor - runs deployment templates as ephemeral Docker containers."""

__version__ = "0.1.0"
