"""
Headless runner: load templates, start all instances, and log the
published values whenever they change.

    python -m feedboard

Configured through FEEDBOARD_* environment variables (see
feedboard.config.settings).
"""

from __future__ import annotations

import asyncio
import logging

from feedboard.app import build_runtime

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def run(report_interval: float = 5.0) -> None:
    runtime = build_runtime()
    runtime.events.subscribe(lambda: logger.info("Metric labels changed"))

    runtime.scheduler.load_templates()
    runtime.scheduler.start()

    last: dict[str, str] = {}
    try:
        while True:
            await asyncio.sleep(report_interval)
            current = runtime.sink.snapshot()
            for key in sorted(current):
                if last.get(key) != current[key]:
                    logger.info(f"{key} = {current[key]}")
            last = current
    finally:
        await runtime.scheduler.shutdown()


def main() -> None:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Stopped")


if __name__ == "__main__":
    main()
