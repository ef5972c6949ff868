"""
Schema change notifications.

The engine and the scheduler emit a notification whenever they changed
label/unit metadata of metric descriptors, so a display layer can
refresh without polling. Subscribers are called synchronously on the
emitting thread; a failing subscriber is logged and does not stop the
others.

Usage:
    events = SchemaEvents()
    unsubscribe = events.subscribe(lambda: ui.rebuild_labels())
    ...
    unsubscribe()
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)

SchemaListener = Callable[[], None]


class SchemaEvents:
    """Observer registry for schema-changed notifications."""

    def __init__(self) -> None:
        self._listeners: list[SchemaListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: SchemaListener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            self.unsubscribe(listener)

        return unsubscribe

    def unsubscribe(self, listener: SchemaListener) -> None:
        with self._lock:
            self._listeners = [cb for cb in self._listeners if cb is not listener]

    def emit(self) -> None:
        """Notify every listener once."""
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener()
            except Exception as e:
                logger.error(f"[events] Schema listener error: {e}", exc_info=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)
