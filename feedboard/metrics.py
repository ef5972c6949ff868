"""
Metric Sink.

The engine publishes every rendered value to a MetricSink under a dotted
key ("weather.0.temp"). The sink holds only the latest value per key;
rendering and history are the display layer's concern.

Implementations:
    - InMemoryMetricSink: thread-safe dict, readable from any thread
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol

logger = logging.getLogger(__name__)


class MetricSink(Protocol):
    """Protocol for the live value registry."""

    def inject_value(self, key: str, value: str) -> None:
        """Publish or replace the value under key. Must not raise."""
        ...


class InMemoryMetricSink:
    """Latest-value registry backed by a lock-guarded dict."""

    def __init__(self) -> None:
        self._values: dict[str, str] = {}
        self._lock = threading.Lock()

    def inject_value(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value
        logger.debug(f"[sink] {key} = {value!r}")

    def get(self, key: str, default: str | None = None) -> str | None:
        with self._lock:
            return self._values.get(key, default)

    def snapshot(self, prefix: str = "") -> dict[str, str]:
        """Copy of all values, optionally limited to keys starting with prefix."""
        with self._lock:
            return {k: v for k, v in self._values.items() if k.startswith(prefix)}

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)
