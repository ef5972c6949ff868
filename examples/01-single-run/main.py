"""
Single Run Example

This example runs every template in examples/plugins once, without timers:
1. Load the templates
2. Create default instances and their descriptors
3. Execute each instance and print the published values

Run: python examples/01-single-run/main.py
"""

import asyncio
import logging
from pathlib import Path

from feedboard.config import EngineSettings, MemoryConfigStore
from feedboard.engine import ExecutionEngine
from feedboard.metrics import InMemoryMetricSink
from feedboard.scheduler import InstanceScheduler
from feedboard.templates import TemplateStore

PLUGINS = Path(__file__).resolve().parent.parent / "plugins"


async def main():
    logging.basicConfig(level=logging.WARNING)

    settings = EngineSettings(templates_dir=str(PLUGINS))
    sink = InMemoryMetricSink()
    config_store = MemoryConfigStore()

    engine = ExecutionEngine(sink, config_store, settings=settings)
    template_store = TemplateStore(settings.templates_dir)
    scheduler = InstanceScheduler(template_store, config_store, engine)

    print("=" * 60)
    print("Feedboard Single Run")
    print("=" * 60)

    templates = scheduler.load_templates()
    print(f"\nLoaded {len(templates)} templates from {PLUGINS}")

    config = config_store.load()
    for instance in config.instances:
        template = template_store.get(instance.template_id)
        scheduler.sync_monitor_item(instance)
        await engine.execute_instance(instance, template)

    print("\nValues:")
    for item in config.monitor_items:
        value_key = item.key.removeprefix("DASH.")
        print(f"  {item.user_label:<32} {sink.get(value_key)} {item.unit_panel}")

    await engine.aclose()


if __name__ == "__main__":
    asyncio.run(main())
