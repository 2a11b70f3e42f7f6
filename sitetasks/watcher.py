"""File watching for sitetasks.

A TaskWatcher binds FileSelectors to actions and keeps watchdog observers
running until it is stopped. Every qualifying event re-triggers its action
on a worker thread: nothing is coalesced and an in-flight run is never
cancelled, so rapid changes can produce overlapping runs. Setting
``watch.debounce`` drops triggers that arrive within that many seconds of
the previous trigger of the same binding.

Key classes:
- TaskWatcher: Owns the observer and the trigger pool.
- _TriggerHandler: watchdog event handler for one binding.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .logging_setup import get_logger
from .runner import Task, TaskContext
from .selectors import FileSelector

logger = get_logger(__name__)

# Content changes only; watchdog also reports opened/closed on some platforms.
WATCHED_EVENT_TYPES = {"created", "modified", "moved", "deleted"}


@dataclass
class WatchBinding:
    """A selector and the action it triggers."""

    selector: FileSelector
    action: Callable[[Path], object]
    label: str
    last_trigger: float = 0.0


class TaskWatcher:
    """Runs tasks (or callbacks) when selected files change.

    Attributes:
        ctx: Context passed to triggered tasks.
        debounce: Minimum seconds between two triggers of one binding;
            0 disables debouncing.
        bindings: Registered selector/action pairs.
    """

    def __init__(self, ctx: TaskContext, debounce: float = 0.0):
        self.ctx = ctx
        self.debounce = float(debounce or 0)
        self.bindings: list[WatchBinding] = []
        self._observer: Observer | None = None
        self._pool: ThreadPoolExecutor | None = None

    def add_task(self, selector: FileSelector, task: Task) -> WatchBinding:
        """Re-run ``task`` whenever a file matching ``selector`` changes."""
        return self.add_callback(selector, lambda _path: task.run(self.ctx), task.name)

    def add_callback(
        self, selector: FileSelector, callback: Callable[[Path], object], label: str
    ) -> WatchBinding:
        binding = WatchBinding(selector, callback, label)
        self.bindings.append(binding)
        return binding

    def start(self) -> None:
        """Schedule observer watches for every binding's base directories."""
        self._pool = ThreadPoolExecutor(thread_name_prefix="sitetasks-watch")
        observer = Observer()
        for binding in self.bindings:
            handler = _TriggerHandler(self, binding)
            for directory in binding.selector.base_dirs():
                if not directory.is_dir():
                    logger.warning(
                        "Not watching %s for '%s': directory does not exist",
                        directory,
                        binding.label,
                    )
                    continue
                for path, recursive in _watch_targets(binding.selector, directory):
                    observer.schedule(handler, str(path), recursive=recursive)
                logger.info("Watching %s for '%s'", directory, binding.label)
        observer.start()
        self._observer = observer

    def stop(self) -> None:
        if self._observer:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        if self._pool:
            self._pool.shutdown(wait=False)
            self._pool = None

    def run_forever(self) -> None:  # pragma: no cover - integration path
        self.start()
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stop()

    def trigger(self, binding: WatchBinding, path: Path) -> bool:
        """Schedule the binding's action for a changed path.

        Returns:
            False when the trigger was dropped by the debounce window.
        """
        now = time.monotonic()
        if self.debounce and now - binding.last_trigger < self.debounce:
            logger.debug("Debounced change to %s for '%s'", path, binding.label)
            return False
        binding.last_trigger = now
        rel = binding.selector.relative(path) or str(path)
        logger.info("'%s' changed; running '%s'", rel, binding.label)
        if self._pool is None:
            self._run(binding, path)
        else:
            self._pool.submit(self._run, binding, path)
        return True

    def _run(self, binding: WatchBinding, path: Path) -> None:
        try:
            binding.action(path)
        except Exception:
            # Keep watching after a crashed run.
            logger.exception("'%s' crashed while handling %s", binding.label, path)


def _watch_targets(selector: FileSelector, directory: Path) -> list[tuple[Path, bool]]:
    """Directories to hand to the observer for one base directory.

    Without exclude patterns the base is watched recursively. Otherwise the
    base itself is watched non-recursively and each child directory the
    selector does not exclude gets its own recursive watch, so excluded
    trees such as node_modules never receive inotify watches.
    """
    if not selector.exclude:
        return [(directory, True)]
    targets = [(directory, False)]
    for child in sorted(directory.iterdir()):
        if not child.is_dir():
            continue
        rel = selector.relative(child)
        if rel is not None and selector.is_excluded(rel):
            logger.debug("Not watching excluded directory %s", child)
            continue
        targets.append((child, True))
    return targets


class _TriggerHandler(FileSystemEventHandler):
    def __init__(self, watcher: TaskWatcher, binding: WatchBinding):
        super().__init__()
        self.watcher = watcher
        self.binding = binding

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in WATCHED_EVENT_TYPES:
            return
        candidates = [event.src_path]
        dest = getattr(event, "dest_path", "")
        if dest:
            candidates.append(dest)
        for candidate in candidates:
            if self.binding.selector.matches(candidate):
                self.watcher.trigger(self.binding, Path(candidate))
                return
