"""
Feedboard - a template-driven data acquisition engine for dashboards.

Feedboard periodically calls HTTP data sources described by declarative
JSON templates, extracts and transforms values, and publishes them into
a metric registry for display:

- **Templates**: inputs, a request or a chain of requests, extraction
  paths, regex/map transforms and formatted outputs
- **Instances**: configured activations of a template, optionally fanned
  out over several targets
- **Step Cache**: per-step TTL cache for chained requests
- **Scheduler**: one timer per enabled instance, descriptor sync

Quick Start:
    >>> from feedboard.app import build_runtime
    >>>
    >>> runtime = build_runtime()
    >>> runtime.scheduler.load_templates()
    >>> runtime.scheduler.start()          # inside a running event loop
    >>> runtime.sink.get("weather.t")
"""

__version__ = "0.1.0"
__license__ = "MIT"

# Core exports for convenient imports
from feedboard.config import DashboardConfig, EngineSettings, InstanceConfig, MonitorItemConfig
from feedboard.engine import ExecutionEngine, StepCache, StepResult
from feedboard.events import SchemaEvents
from feedboard.metrics import InMemoryMetricSink, MetricSink
from feedboard.scheduler import InstanceScheduler
from feedboard.templates import Template, TemplateStore

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Components
    "TemplateStore",
    "ExecutionEngine",
    "InstanceScheduler",
    "StepCache",
    "StepResult",
    "SchemaEvents",
    "MetricSink",
    "InMemoryMetricSink",
    # Models
    "Template",
    "InstanceConfig",
    "MonitorItemConfig",
    "DashboardConfig",
    "EngineSettings",
]
