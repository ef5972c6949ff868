"""
Application wiring for Feedboard.

Builds the component graph once, at the application root, and hands out
explicit references: there is no global scheduler. A display layer takes
the sink (values), the config store (descriptors) and the schema events
(refresh signal) from the returned Runtime.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from feedboard.config.settings import EngineSettings, get_settings
from feedboard.config.store import JsonConfigStore
from feedboard.engine.executor import ExecutionEngine
from feedboard.events import SchemaEvents
from feedboard.metrics import InMemoryMetricSink
from feedboard.scheduler import InstanceScheduler
from feedboard.templates.store import TemplateStore

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Everything a host application needs to drive and observe the engine."""

    settings: EngineSettings
    sink: InMemoryMetricSink
    config_store: JsonConfigStore
    template_store: TemplateStore
    events: SchemaEvents
    engine: ExecutionEngine
    scheduler: InstanceScheduler


def build_runtime(
    settings: EngineSettings | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> Runtime:
    """Create and connect all components. Nothing is started."""
    settings = settings or get_settings()

    sink = InMemoryMetricSink()
    config_store = JsonConfigStore(settings.config_path)
    template_store = TemplateStore(settings.templates_dir)
    events = SchemaEvents()

    engine = ExecutionEngine(
        sink,
        config_store,
        settings=settings,
        http_client=http_client,
        events=events,
    )
    scheduler = InstanceScheduler(template_store, config_store, engine, settings=settings, events=events)

    logger.debug(
        f"[app] Runtime built (templates={settings.templates_dir}, config={settings.config_path})"
    )
    return Runtime(
        settings=settings,
        sink=sink,
        config_store=config_store,
        template_store=template_store,
        events=events,
        engine=engine,
        scheduler=scheduler,
    )
