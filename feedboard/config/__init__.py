"""
Feedboard Configuration

Persisted instance/descriptor configuration and engine settings.
"""

from .schemas import (
    DESCRIPTOR_PREFIX,
    DashboardConfig,
    InstanceConfig,
    MonitorItemConfig,
    descriptor_key,
    is_instance_descriptor,
    value_key,
)
from .settings import EngineSettings, get_settings
from .store import ConfigStore, JsonConfigStore, MemoryConfigStore

__all__ = [
    "ConfigStore",
    "JsonConfigStore",
    "MemoryConfigStore",
    "DashboardConfig",
    "InstanceConfig",
    "MonitorItemConfig",
    "EngineSettings",
    "get_settings",
    "DESCRIPTOR_PREFIX",
    "descriptor_key",
    "is_instance_descriptor",
    "value_key",
]
