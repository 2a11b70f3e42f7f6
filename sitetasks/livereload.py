"""Process-wide live reload notification bus.

Tasks publish change events here; the development server subscribes for
as long as it runs and forwards events to connected browsers. With no
subscribers, publishing does nothing.

Event shapes:
    {"type": "css", "paths": ["stylesheets/main.css"]}
    {"type": "reload", "path": "index.html"}
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from .logging_setup import get_logger

logger = get_logger(__name__)

Event = dict[str, Any]
Subscriber = Callable[[Event], None]


class LiveReloadBus:
    """Thread-safe publish/subscribe channel for reload events."""

    def __init__(self):
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: Event) -> None:
        """Deliver an event to every subscriber.

        A subscriber that raises is logged and skipped; the remaining
        subscribers still receive the event.
        """
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception("Live reload subscriber failed for %s", event)


default_bus = LiveReloadBus()
