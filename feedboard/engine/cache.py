"""
Step Cache for chain executions.

Stores the variables a chain step produced so that later ticks can skip
the network call while the entry is fresh.

Keys:
    instance_id + target_suffix + "_" + step_id

    The target suffix (".0", ".1", ...) keeps targets of one instance
    apart: two targets never read each other's cached values.

Expiry:
    The TTL belongs to the step, not the entry, so it is passed on read.
    An entry is served while `now - timestamp < ttl`. Expired entries
    are dropped lazily by the read that finds them.

Thread-safety:
    All access goes through a threading.Lock. Ticks of different
    instances may overlap, and the cache can be cleared from whichever
    thread handles a configuration reload.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)


def cache_key(instance_id: str, suffix: str, step_id: str) -> str:
    """Build the cache key for one step of one target."""
    return f"{instance_id}{suffix}_{step_id}"


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """Variables captured from one successful step execution."""

    values: dict[str, str]
    timestamp: float
    instance_id: str = ""


@dataclass
class StepCache:
    """TTL-keyed store of per-step extracted variables."""

    clock: Callable[[], float] = time.monotonic

    _entries: dict[str, CacheEntry] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def get(self, key: str, ttl_minutes: float) -> dict[str, str] | None:
        """
        Return a copy of the cached values if the entry is still fresh.

        Args:
            key: Cache key (see cache_key)
            ttl_minutes: Lifetime of the entry, from the step definition

        Returns:
            The cached variables, or None on miss/expiry
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            if self.clock() - entry.timestamp < ttl_minutes * 60:
                return dict(entry.values)

            del self._entries[key]

        logger.debug(f"[step_cache] Expired: {key}")
        return None

    def put(self, key: str, values: dict[str, str], *, instance_id: str = "") -> None:
        """Store values under key with a fresh timestamp."""
        entry = CacheEntry(values=dict(values), timestamp=self.clock(), instance_id=instance_id)
        with self._lock:
            self._entries[key] = entry

    def clear(self, instance_id: str | None = None) -> int:
        """
        Drop cached entries.

        Args:
            instance_id: Only drop entries owned by this instance.
                         None drops everything.

        Returns:
            Number of entries removed
        """
        with self._lock:
            if instance_id is None:
                removed = len(self._entries)
                self._entries.clear()
            else:
                stale = [k for k, e in self._entries.items() if e.instance_id == instance_id]
                for k in stale:
                    del self._entries[k]
                removed = len(stale)

        if removed:
            logger.debug(f"[step_cache] Cleared {removed} entries (instance={instance_id or '*'})")
        return removed

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
