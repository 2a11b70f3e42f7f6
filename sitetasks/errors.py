"""Exception hierarchy for sitetasks.

TaskFailed is the explicit failure signal of a gate task (lint, test). The
runner turns it into a failed TaskResult. Anything not derived from
TaskFailed is unexpected and propagates to the caller.
"""

from __future__ import annotations


class TaskError(Exception):
    """Base class for sitetasks errors."""


class ConfigError(TaskError):
    """The configuration file is unreadable or malformed."""


class TaskFailed(TaskError):
    """A task finished and reports failure.

    Attributes:
        task: Name of the failing task, filled in by the runner when the
            task itself did not set it.
        message: Human-readable reason.
    """

    def __init__(self, message: str, task: str | None = None):
        self.message = message
        self.task = task
        super().__init__(message)

    def __str__(self) -> str:
        if self.task:
            return f"{self.task}: {self.message}"
        return self.message


class ToolNotFoundError(TaskFailed):
    """An external executable required by a gate task is not installed."""

    def __init__(self, tool: str, task: str | None = None):
        self.tool = tool
        super().__init__(
            f"{tool} not found in PATH or node_modules/.bin; "
            f"install it with `npm install -D {tool}`",
            task,
        )
