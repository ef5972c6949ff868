"""
Configuration Stores.

A ConfigStore hands out the one mutable DashboardConfig object and
persists it on request. Engine ticks, the scheduler and a settings UI
all mutate that same object and call save(); save() is therefore
serialized behind a single process-wide lock.

Implementations:
    - JsonConfigStore: JSON file on disk (atomic replace on save)
    - MemoryConfigStore: in-memory, records save calls (testing)

Usage:
    store = JsonConfigStore("feedboard.json")
    config = store.load()
    config.instances.append(InstanceConfig(id="w1", template_id="weather"))
    store.save()
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from .schemas import DashboardConfig

logger = logging.getLogger(__name__)

# Saves are serialized across every store in the process
_SAVE_LOCK = threading.RLock()


class ConfigStore(Protocol):
    """Protocol for configuration persistence."""

    def load(self) -> DashboardConfig:
        """Return the shared, mutable configuration object."""
        ...

    def save(self) -> None:
        """Persist the configuration. Safe under concurrent callers."""
        ...


class JsonConfigStore:
    """
    Configuration persisted as a JSON file.

    The file is read once, on the first load(); later calls return the
    same object so that every component sees the others' edits. A
    missing or unreadable file yields an empty configuration (the
    unreadable file is left in place until the next save overwrites it).
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._config: DashboardConfig | None = None
        self._load_lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> DashboardConfig:
        if self._config is None:
            with self._load_lock:
                if self._config is None:
                    self._config = self._read()
        return self._config

    def save(self) -> None:
        config = self.load()
        with _SAVE_LOCK:
            payload = config.model_dump_json(indent=2)
            self._path.parent.mkdir(parents=True, exist_ok=True)

            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise

        logger.debug(f"[config_store] Saved {self._path}")

    def _read(self) -> DashboardConfig:
        if not self._path.exists():
            logger.info(f"[config_store] No config at {self._path}, starting empty")
            return DashboardConfig()

        try:
            with self._path.open(encoding="utf-8") as f:
                return DashboardConfig.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error(f"[config_store] Failed to load {self._path}: {e}")
            return DashboardConfig()


class MemoryConfigStore:
    """
    In-memory configuration store.

    Counts save() calls so tests can assert how often the configuration
    was persisted.
    """

    def __init__(self, config: DashboardConfig | None = None):
        self._config = config if config is not None else DashboardConfig()
        self.save_count = 0

    def load(self) -> DashboardConfig:
        return self._config

    def save(self) -> None:
        with _SAVE_LOCK:
            self.save_count += 1
