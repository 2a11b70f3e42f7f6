"""Task model and composition primitives.

A Task wraps a callable taking a TaskContext. Running it returns a
TaskResult: ``error`` is None on success or the TaskFailed raised by the
task. Exceptions that are not TaskFailed are bugs or setup errors and
propagate out of the runner untouched.

Key components:
- TaskContext: Shared, read-only state for one invocation.
- Task / TaskResult: A named unit of work and its outcome.
- series / parallel: Sequential and fan-out/fan-in composition.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import TaskFailed
from .livereload import LiveReloadBus, default_bus
from .logging_setup import get_logger

logger = get_logger(__name__)


@dataclass
class TaskContext:
    """State shared by every task of one invocation.

    Attributes:
        project_root: Directory all configured paths are relative to.
        config: Loaded configuration (see config.load_config).
        bus: Live reload bus that style and markup changes are published on.
    """

    project_root: Path
    config: dict[str, Any]
    bus: LiveReloadBus = field(default_factory=lambda: default_bus)

    def path(self, relative: str) -> Path:
        """Resolve a configured path against the project root."""
        return self.project_root / relative

    def logger(self, task_name: str) -> logging.Logger:
        return get_logger(f"sitetasks.tasks.{task_name}")


@dataclass
class TaskResult:
    """Outcome of running a task.

    Attributes:
        name: Task name.
        error: The failure signal, or None when the task succeeded.
        duration: Wall time in seconds.
    """

    name: str
    error: TaskFailed | None = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


class Task:
    """A named unit of work.

    Attributes:
        name: Name the task is invoked by.
        fn: Callable receiving the TaskContext. It signals failure by
            raising TaskFailed and success by returning.
        description: One line shown by ``sitetasks tasks``.
    """

    def __init__(
        self,
        name: str,
        fn: Callable[[TaskContext], Any],
        description: str = "",
    ):
        self.name = name
        self.fn = fn
        self.description = description

    def __repr__(self) -> str:
        return f"Task({self.name!r})"

    def run(self, ctx: TaskContext) -> TaskResult:
        """Run the task and report its outcome.

        Returns:
            TaskResult carrying the TaskFailed raised by the task, if any.
        """
        logger.info("Starting '%s'...", self.name)
        started = time.perf_counter()
        try:
            self.fn(ctx)
        except TaskFailed as exc:
            if exc.task is None:
                exc.task = self.name
            duration = time.perf_counter() - started
            logger.error(
                "'%s' errored after %s: %s",
                self.name,
                format_duration(duration),
                exc.message,
            )
            return TaskResult(self.name, exc, duration)
        duration = time.perf_counter() - started
        logger.info("Finished '%s' after %s", self.name, format_duration(duration))
        return TaskResult(self.name, None, duration)


def series(*tasks: Task, name: str | None = None) -> Task:
    """Compose tasks to run one after another.

    The first failing member stops the series; later members never start.
    """
    label = name or "series(" + ", ".join(t.name for t in tasks) + ")"

    def run_series(ctx: TaskContext) -> None:
        for task in tasks:
            result = task.run(ctx)
            if not result.ok:
                raise TaskFailed(
                    f"stopped after '{task.name}' failed"
                ) from result.error

    return Task(label, run_series, "Run " + ", then ".join(t.name for t in tasks))


def parallel(*tasks: Task, name: str | None = None) -> Task:
    """Compose tasks to run concurrently.

    Every member is started without waiting for the others and the group
    completes when all of them completed. A member failure does not cancel
    the others; the group fails if any member failed.
    """
    label = name or "parallel(" + ", ".join(t.name for t in tasks) + ")"

    def run_parallel(ctx: TaskContext) -> None:
        if not tasks:
            return
        with ThreadPoolExecutor(
            max_workers=len(tasks), thread_name_prefix="sitetasks"
        ) as pool:
            futures = [pool.submit(task.run, ctx) for task in tasks]
            wait(futures)
        # Unexpected exceptions win over failure signals.
        for future in futures:
            exc = future.exception()
            if exc is not None:
                raise exc
        failed = [f.result() for f in futures if not f.result().ok]
        if failed:
            names = ", ".join(f"'{r.name}'" for r in failed)
            raise TaskFailed(f"{names} failed") from failed[0].error

    description = "Run " + ", ".join(t.name for t in tasks) + " concurrently"
    return Task(label, run_parallel, description)


def run_task(task: Task, ctx: TaskContext) -> TaskResult:
    """Run a top-level task and log a one-line failure summary."""
    result = task.run(ctx)
    if not result.ok:
        logger.error("Task '%s' failed", task.name)
    return result


def format_duration(seconds: float) -> str:
    """Format a duration the way task logs print it (``12 ms``, ``1.4 s``)."""
    if seconds < 1:
        return f"{seconds * 1000:.0f} ms"
    return f"{seconds:.1f} s"
