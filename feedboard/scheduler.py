"""
Instance Scheduler for Feedboard.

Owns one periodic timer per enabled instance and keeps the persisted
configuration in step with the loaded templates.

Lifecycle:
    Stopped -> Running (timer task active) -> Stopped (removed/disabled)

    start()               stop all, then schedule every enabled instance
                          whose template is loaded
    reload(config)        same, but clears the step cache first so
                          parameter edits take effect immediately
    restart_instance(id)  reschedule one instance after an edit
    remove_instance(id)   cancel its timer, delete its descriptors
    stop()                cancel every timer (in-flight ticks finish)

Timers:
    Each timer task fires one tick immediately and then one per interval
    (max(min_interval, custom or template interval)). Every tick runs as
    its own task, so a slow endpoint never delays the timer, and two ticks
    of the same instance may overlap. Lifecycle methods must be called
    from inside the running event loop.

Usage:
    engine = ExecutionEngine(sink, config_store)
    scheduler = InstanceScheduler(TemplateStore("plugins/"), config_store, engine)
    scheduler.load_templates()
    scheduler.start()
    ...
    await scheduler.shutdown()
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING

from feedboard.config.schemas import (
    InstanceConfig,
    MonitorItemConfig,
    descriptor_key,
    is_instance_descriptor,
    value_key,
)
from feedboard.engine.executor import merge_inputs
from feedboard.errors import UnknownInstanceError
from feedboard.processing import resolve_template

if TYPE_CHECKING:
    from feedboard.config.schemas import DashboardConfig
    from feedboard.config.settings import EngineSettings
    from feedboard.config.store import ConfigStore
    from feedboard.engine.executor import ExecutionEngine
    from feedboard.events import SchemaEvents
    from feedboard.templates.schemas import Template
    from feedboard.templates.store import TemplateStore

logger = logging.getLogger(__name__)


def _new_instance_id() -> str:
    return uuid.uuid4().hex[:8]


class InstanceScheduler:
    """
    Schedules template instances and synchronizes their descriptors.

    Args:
        template_store: Loaded templates
        config_store: Instances and metric descriptors
        engine: Executes ticks
        settings: Defaults to the engine's settings
        events: Defaults to the engine's schema events, so one
                subscription sees changes from both
    """

    def __init__(
        self,
        template_store: TemplateStore,
        config_store: ConfigStore,
        engine: ExecutionEngine,
        *,
        settings: EngineSettings | None = None,
        events: SchemaEvents | None = None,
    ):
        self._template_store = template_store
        self._config_store = config_store
        self._engine = engine
        self._settings = settings or engine.settings
        self._events = events if events is not None else engine.events

        self._timers: dict[str, asyncio.Task[None]] = {}
        self._ticks: set[asyncio.Task[None]] = set()

    @property
    def templates(self) -> list[Template]:
        return self._template_store.all()

    @property
    def events(self) -> SchemaEvents:
        return self._events

    @property
    def running_instances(self) -> list[str]:
        return [i for i, t in self._timers.items() if not t.done()]

    def is_running(self, instance_id: str) -> bool:
        task = self._timers.get(instance_id)
        return task is not None and not task.done()

    # =========================================================================
    # Templates
    # =========================================================================

    def load_templates(self) -> list[Template]:
        """
        (Re)load templates and create a default instance for every
        template that has none. Running timers are not touched.
        """
        templates = self._template_store.load()
        self._ensure_default_instances()
        return templates

    def _ensure_default_instances(self) -> None:
        config = self._config_store.load()
        changed = False

        for template in self._template_store.all():
            if any(inst.template_id == template.id for inst in config.instances):
                continue

            instance_id = template.id
            if config.find_instance(instance_id) is not None:
                instance_id = _new_instance_id()

            config.instances.append(
                InstanceConfig(
                    id=instance_id,
                    template_id=template.id,
                    enabled=True,
                    input_values=template.default_inputs(),
                )
            )
            changed = True
            logger.info(f"[scheduler] Created default instance '{instance_id}' for '{template.id}'")

        if changed:
            self._config_store.save()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Stop everything, then schedule all enabled instances."""
        self._start_all(self._config_store.load())

    def reload(self, config: DashboardConfig | None = None) -> None:
        """
        Restart all instances from a (possibly edited) configuration.

        The step cache is cleared first, so no cached fragment computed
        from old parameters survives the edit.
        """
        self.stop()
        self._engine.clear_cache()
        self._start_all(config if config is not None else self._config_store.load())

    def _start_all(self, config: DashboardConfig) -> None:
        self.stop()
        started = sum(1 for inst in config.instances if self._activate(inst))
        logger.info(f"[scheduler] Started {started} of {len(config.instances)} instances")

    def restart_instance(self, instance_id: str) -> bool:
        """
        Reschedule one instance after its configuration changed.

        Returns:
            True if the instance is running afterwards
        """
        self._cancel_timer(instance_id)
        self._engine.clear_cache(instance_id)

        instance = self._config_store.load().find_instance(instance_id)
        if instance is None:
            logger.debug(f"[scheduler] restart: no instance '{instance_id}'")
            return False
        return self._activate(instance)

    def remove_instance(self, instance_id: str) -> None:
        """
        Stop an instance and delete everything it owns: its timer, its
        cached step results, its descriptors and its configuration entry.
        """
        self._cancel_timer(instance_id)
        self._engine.clear_cache(instance_id)

        config = self._config_store.load()
        before = len(config.monitor_items)
        config.monitor_items = [
            item for item in config.monitor_items if not is_instance_descriptor(item.key, instance_id)
        ]
        removed_items = before - len(config.monitor_items)

        instance = config.find_instance(instance_id)
        if instance is not None:
            config.instances.remove(instance)

        if removed_items or instance is not None:
            self._config_store.save()
        if removed_items:
            self._events.emit()

        logger.info(f"[scheduler] Removed instance '{instance_id}' ({removed_items} descriptors)")

    def copy_instance(self, instance_id: str) -> InstanceConfig:
        """
        Clone an instance under a fresh id and create its descriptors.

        The copy is not scheduled; call restart_instance(copy.id) to run it.

        Raises:
            UnknownInstanceError: If no instance has this id
        """
        config = self._config_store.load()
        source = config.find_instance(instance_id)
        if source is None:
            raise UnknownInstanceError(instance_id)

        new_id = _new_instance_id()
        while config.find_instance(new_id) is not None:
            new_id = _new_instance_id()

        copy = source.model_copy(deep=True, update={"id": new_id})
        config.instances.append(copy)
        self._config_store.save()

        self.sync_monitor_item(copy)
        logger.info(f"[scheduler] Copied instance '{instance_id}' -> '{new_id}'")
        return copy

    def stop(self) -> None:
        """Cancel all timers. Ticks already running are left to finish."""
        for task in self._timers.values():
            task.cancel()
        self._timers.clear()

    async def shutdown(self) -> None:
        """Stop timers, wait for in-flight ticks, and close the engine."""
        self.stop()
        if self._ticks:
            await asyncio.gather(*list(self._ticks), return_exceptions=True)
        await self._engine.aclose()

    # =========================================================================
    # Timers
    # =========================================================================

    def _activate(self, instance: InstanceConfig) -> bool:
        if not instance.enabled:
            return False

        template = self._template_store.get(instance.template_id)
        if template is None:
            logger.debug(
                f"[scheduler] Skipping '{instance.id}': template '{instance.template_id}' not loaded"
            )
            return False

        self.sync_monitor_item(instance)
        self._schedule(instance, template)
        return True

    def interval_for(self, instance: InstanceConfig, template: Template) -> float:
        """Timer interval in seconds."""
        interval_ms = instance.custom_interval if instance.custom_interval > 0 else template.execution.interval
        return max(self._settings.min_interval_ms, interval_ms) / 1000

    def _schedule(self, instance: InstanceConfig, template: Template) -> None:
        interval = self.interval_for(instance, template)
        self._timers[instance.id] = asyncio.create_task(
            self._run_timer(instance, template, interval),
            name=f"feedboard_timer_{instance.id}",
        )
        logger.info(f"[scheduler] Scheduled '{instance.id}' every {interval:.1f}s")

    def _cancel_timer(self, instance_id: str) -> None:
        task = self._timers.pop(instance_id, None)
        if task is not None:
            task.cancel()

    async def _run_timer(self, instance: InstanceConfig, template: Template, interval: float) -> None:
        while True:
            self._spawn_tick(instance, template)
            await asyncio.sleep(interval)

    def _spawn_tick(self, instance: InstanceConfig, template: Template) -> None:
        task = asyncio.create_task(
            self._tick(instance, template),
            name=f"feedboard_tick_{instance.id}",
        )
        self._ticks.add(task)
        task.add_done_callback(self._ticks.discard)

    async def _tick(self, instance: InstanceConfig, template: Template) -> None:
        try:
            await self._engine.execute_instance(instance, template)
        except Exception as e:
            logger.error(f"[scheduler] Tick for '{instance.id}' failed: {e}", exc_info=True)

    # =========================================================================
    # Descriptor synchronization
    # =========================================================================

    def sync_monitor_item(self, instance: InstanceConfig) -> bool:
        """
        Create, relabel and prune the metric descriptors of an instance.

        For every target and declared output the descriptor is created
        (or its label/short label/unit updated) from a label preview in
        which empty inputs read as a neutral placeholder, and its live
        value is reset to the loading placeholder. Descriptors of this
        instance that no longer correspond to an output (for example
        after removing a target) are deleted. The configuration is saved
        once, at the end, if anything changed.

        Returns:
            True if any descriptor was created, updated or deleted
        """
        template = self._template_store.get(instance.template_id)
        if template is None:
            return False

        config = self._config_store.load()
        sink = self._engine.sink
        changed = False
        valid_keys: set[str] = set()

        for index, target in enumerate(instance.effective_targets()):
            preview = merge_inputs(template, instance, target)
            for template_input in template.inputs:
                if not preview.get(template_input.key):
                    preview[template_input.key] = self._settings.empty_input_placeholder

            suffix = instance.target_suffix(index)

            for output in template.outputs:
                item_key = descriptor_key(instance.id, suffix, output.key)
                valid_keys.add(item_key)

                sink.inject_value(
                    value_key(instance.id, suffix, output.key),
                    self._settings.loading_placeholder,
                )

                label = resolve_template(template.label_pattern(output), preview)
                short_label = resolve_template(output.short_label, preview)

                item = config.find_item(item_key)
                if item is None:
                    config.monitor_items.append(
                        MonitorItemConfig(
                            key=item_key,
                            user_label=label,
                            taskbar_label=short_label,
                            unit_panel=output.unit,
                        )
                    )
                    changed = True
                    continue

                if item.user_label != label:
                    item.user_label = label
                    changed = True
                if item.taskbar_label != short_label:
                    item.taskbar_label = short_label
                    changed = True
                if item.unit_panel != output.unit:
                    item.unit_panel = output.unit
                    changed = True

        prefix = descriptor_key(instance.id) + "."
        stale_keys = {
            item.key for item in config.monitor_items
            if item.key.startswith(prefix) and item.key not in valid_keys
        }
        if stale_keys:
            config.monitor_items = [item for item in config.monitor_items if item.key not in stale_keys]
            changed = True

        if changed:
            self._config_store.save()
            self._events.emit()
            logger.debug(f"[scheduler] Synced descriptors for '{instance.id}' ({len(valid_keys)} keys)")

        return changed
