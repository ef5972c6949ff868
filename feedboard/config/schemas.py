"""
Configuration Schemas for Feedboard.

Pydantic models for the persisted, user-editable configuration: the
configured template instances and the metric descriptors that a display
layer uses to label and lay out published values.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

# Metric descriptor keys are the published value key under this prefix
DESCRIPTOR_PREFIX = "DASH."


def value_key(instance_id: str, suffix: str = "", output_key: str = "") -> str:
    """Key a value is published under (instanceId + suffix [+ "." + output])."""
    base = f"{instance_id}{suffix}"
    return f"{base}.{output_key}" if output_key else base


def descriptor_key(instance_id: str, suffix: str = "", output_key: str = "") -> str:
    """Key of the metric descriptor for a published value."""
    return DESCRIPTOR_PREFIX + value_key(instance_id, suffix, output_key)


def is_instance_descriptor(key: str, instance_id: str) -> bool:
    """Whether a descriptor key is namespaced under an instance."""
    root = DESCRIPTOR_PREFIX + instance_id
    return key == root or key.startswith(root + ".")


class InstanceConfig(BaseModel):
    """
    A configured activation of a template.

    Targets run the same template with different parameters; each target
    is executed, cached and published separately. An empty list means a
    single implicit target with no overrides.
    """

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1, description="Unique instance identifier")
    template_id: str = Field(..., description="Template this instance activates")
    enabled: bool = Field(True)
    input_values: dict[str, str] = Field(default_factory=dict)
    targets: list[dict[str, str]] = Field(default_factory=list)
    custom_interval: int = Field(0, ge=0, description="Milliseconds; 0 uses the template interval")

    def effective_targets(self) -> list[dict[str, str]]:
        """Targets to execute: the configured list, or one empty default."""
        return self.targets if self.targets else [{}]

    def target_suffix(self, index: int) -> str:
        """Key suffix for a target: '.N' with explicit targets, '' otherwise."""
        return f".{index}" if self.targets else ""


class MonitorItemConfig(BaseModel):
    """Display metadata for one published value."""

    model_config = ConfigDict(extra="allow")

    key: str = Field(..., description="Descriptor key (DASH.<value key>)")
    user_label: str = Field("", description="Full label")
    taskbar_label: str = Field("", description="Short label")
    unit_panel: str = Field("", description="Unit shown next to the value")
    visible_in_panel: bool = Field(True)
    sort_index: int = Field(-1)


class DashboardConfig(BaseModel):
    """The mutable configuration object held by a ConfigStore."""

    model_config = ConfigDict(extra="allow")

    instances: list[InstanceConfig] = Field(default_factory=list)
    monitor_items: list[MonitorItemConfig] = Field(default_factory=list)

    def find_instance(self, instance_id: str) -> InstanceConfig | None:
        for inst in self.instances:
            if inst.id == instance_id:
                return inst
        return None

    def find_item(self, key: str) -> MonitorItemConfig | None:
        for item in self.monitor_items:
            if item.key == key:
                return item
        return None
