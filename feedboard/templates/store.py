"""
Template Store.

Loads template definitions from a directory of JSON files.

Design Principle:
    Reloading is wholesale. Every load() replaces the in-memory set with
    whatever parses cleanly from disk right now; there is no incremental
    diffing. A malformed file is logged and skipped, it never prevents
    the other templates from loading.

Directory layout:
    plugins/
    ├── weather.json     # one template per file
    ├── stocks.json
    └── notes.txt        # ignored (not *.json)

Usage:
    store = TemplateStore("plugins/")
    store.load()
    weather = store.get("weather")
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from feedboard.errors import TemplateLoadError

from .schemas import Template

logger = logging.getLogger(__name__)


class TemplateStore:
    """In-memory template set backed by a directory of JSON files."""

    def __init__(self, directory: str | Path):
        self._directory = Path(directory)
        self._templates: dict[str, Template] = {}

    @property
    def directory(self) -> Path:
        return self._directory

    def load(self) -> list[Template]:
        """
        (Re)load all templates from the directory.

        The directory is created if missing. Files that fail to read or
        validate are skipped. When two files declare the same Id, the
        one loaded last (alphabetical order) wins.

        Returns:
            The loaded templates
        """
        if not self._directory.exists():
            try:
                self._directory.mkdir(parents=True, exist_ok=True)
                logger.info(f"[template_store] Created template directory: {self._directory}")
            except OSError as e:
                logger.warning(f"[template_store] Cannot create {self._directory}: {e}")
            self._templates = {}
            return []

        templates: dict[str, Template] = {}
        for path in sorted(self._directory.glob("*.json")):
            try:
                template = self._load_file(path)
            except TemplateLoadError as e:
                logger.warning(f"[template_store] {e}")
                continue

            if template.id in templates:
                logger.warning(
                    f"[template_store] Duplicate template id '{template.id}' in {path.name}, "
                    f"replacing earlier definition"
                )
            templates[template.id] = template

        self._templates = templates
        logger.info(f"[template_store] Loaded {len(templates)} templates from {self._directory}")
        return list(templates.values())

    def all(self) -> list[Template]:
        """All currently loaded templates."""
        return list(self._templates.values())

    def get(self, template_id: str) -> Template | None:
        """Get a template by id, or None when it is not loaded."""
        return self._templates.get(template_id)

    def __len__(self) -> int:
        return len(self._templates)

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._templates

    def _load_file(self, path: Path) -> Template:
        try:
            with path.open(encoding="utf-8-sig") as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise TemplateLoadError(str(path), str(e)) from e

        if not isinstance(data, dict):
            raise TemplateLoadError(str(path), "top-level value is not an object")

        try:
            return Template.model_validate(data)
        except ValidationError as e:
            raise TemplateLoadError(str(path), f"{e.error_count()} validation errors") from e
