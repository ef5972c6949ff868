"""
Execution Engine for Feedboard.

Runs one template instance: fetches, extracts, transforms and publishes
its outputs, once per target.

Execution Model:
    - Targets run strictly one after another, with a short pause before
      every target after the first (rate-limit courtesy)
    - Inputs are merged per target: template defaults < instance values
      < target overrides
    - api_text:  one request, raw body published under instanceId+suffix
    - api_json:  one request, body parsed, Extract paths resolved,
                 global Process transforms applied, Outputs rendered
    - chain:     Steps run in order over a shared context, then global
                 Process transforms, then Outputs

Failure Model:
    A failure anywhere in a target's pipeline is contained to that
    target: it is logged, every declared output of the target publishes
    "Err", and the next target proceeds. Chain steps report failures as
    StepResult values; the first failed step ends that target's chain.
    Nothing is raised back to the scheduler, so a failing tick simply
    retries on the next timer firing.

Example:
    engine = ExecutionEngine(sink, config_store)
    await engine.execute_instance(instance, template)
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import TYPE_CHECKING, MutableMapping

import httpx

from feedboard.config.schemas import DESCRIPTOR_PREFIX, value_key
from feedboard.config.settings import EngineSettings
from feedboard.events import SchemaEvents
from feedboard.processing import (
    apply_transforms,
    extract_json_value,
    parse_document,
    resolve_template,
)

from .cache import StepCache, cache_key
from .http import HttpFetcher, decode_body
from .result import StepResult

if TYPE_CHECKING:
    from feedboard.config.schemas import InstanceConfig
    from feedboard.config.store import ConfigStore
    from feedboard.metrics import MetricSink
    from feedboard.templates.schemas import Step, Template

logger = logging.getLogger(__name__)

# Published for every output of a failed target
ERROR_MARKER = "Err"

# Published when an output renders to an empty string
EMPTY_MARKER = "[Empty]"

# "callback( ... );" or "( ... )"
_JSONP = re.compile(r"^[\w$.]*\s*\((?P<body>.*)\)\s*;?$", re.DOTALL)


def merge_inputs(
    template: Template,
    instance: InstanceConfig,
    target: dict[str, str] | None = None,
) -> dict[str, str]:
    """Merge inputs: template defaults < instance values < target overrides."""
    merged = template.default_inputs()
    merged.update(instance.input_values)
    merged.update(target or {})
    return merged


def strip_jsonp(payload: str) -> str:
    """Remove one layer of JSONP wrapping, if present."""
    match = _JSONP.match(payload)
    return match.group("body").strip() if match else payload


class ExecutionEngine:
    """
    Executes template instances and publishes their outputs.

    The engine owns the step cache and the HTTP fetcher. It reads and
    updates metric descriptors through the config store, and emits a
    schema-changed notification when it relabels any of them.

    Args:
        sink: Where rendered values are published
        config_store: Source of metric descriptors (labels)
        settings: Engine settings (defaults if omitted)
        http_client: Optional shared httpx client (caller manages lifecycle)
        events: Schema change notifications (a private registry if omitted)
        cache: Step cache (a fresh one if omitted)
    """

    def __init__(
        self,
        sink: MetricSink,
        config_store: ConfigStore,
        *,
        settings: EngineSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
        events: SchemaEvents | None = None,
        cache: StepCache | None = None,
    ):
        self._sink = sink
        self._config_store = config_store
        self._settings = settings or EngineSettings()
        self._events = events if events is not None else SchemaEvents()
        # Use explicit None check - cache may be falsy when empty (len=0)
        self._cache = cache if cache is not None else StepCache()
        self._http = HttpFetcher(
            timeout=self._settings.http_timeout,
            user_agent=self._settings.user_agent,
            http_client=http_client,
        )

    @property
    def cache(self) -> StepCache:
        return self._cache

    @property
    def sink(self) -> MetricSink:
        return self._sink

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def events(self) -> SchemaEvents:
        return self._events

    def clear_cache(self, instance_id: str | None = None) -> None:
        """Drop cached step results (all, or one instance's)."""
        self._cache.clear(instance_id)

    async def aclose(self) -> None:
        """Release the owned HTTP client."""
        await self._http.aclose()

    # =========================================================================
    # Instances and targets
    # =========================================================================

    async def execute_instance(self, instance: InstanceConfig, template: Template) -> None:
        """
        Execute every target of an instance and publish the results.

        Never raises for failures inside a target; those become "Err".
        """
        start_time = time.perf_counter()
        schema_changed = False

        for index, target in enumerate(instance.effective_targets()):
            if index > 0 and self._settings.target_delay > 0:
                await asyncio.sleep(self._settings.target_delay)

            context = merge_inputs(template, instance, target)
            suffix = instance.target_suffix(index)

            if await self.execute_target(instance, template, context, suffix):
                schema_changed = True

        if schema_changed:
            self._config_store.save()
            self._events.emit()

        logger.debug(
            f"[engine] {instance.id}: executed {len(instance.effective_targets())} target(s) "
            f"in {(time.perf_counter() - start_time) * 1000:.1f}ms"
        )

    async def execute_target(
        self,
        instance: InstanceConfig,
        template: Template,
        context: MutableMapping[str, str],
        suffix: str = "",
    ) -> bool:
        """
        Run the pipeline for one target.

        Args:
            instance: Instance being executed
            template: Its template
            context: Merged inputs; updated in place with extracted variables
            suffix: Target key suffix ("" or ".N")

        Returns:
            True if any descriptor label changed (caller persists/notifies)
        """
        execution = template.execution

        try:
            if execution.type == "chain":
                failed = await self._run_chain(instance, template, context, suffix)
                if failed is not None:
                    logger.warning(
                        f"[engine] {instance.id}{suffix}: chain stopped at step "
                        f"'{failed.step_id}' ({failed.error_type}): {failed.error}"
                    )
                    self._publish_errors(instance, template, suffix)
                    return False
            else:
                url = resolve_template(execution.url, context)
                body = resolve_template(execution.body, context)
                raw = await self._http.fetch(
                    url, method=execution.method, body=body, headers=execution.headers
                )
                text = decode_body(raw)

                if execution.type == "api_text":
                    self._sink.inject_value(value_key(instance.id, suffix), text)
                    return False

                document = parse_document(text)
                for var, path in execution.extract.items():
                    context[var] = extract_json_value(document, path)

            apply_transforms(execution.process, context)
            return self._publish_outputs(instance, template, context, suffix)

        except Exception as e:
            logger.error(
                f"[engine] {instance.id}{suffix} ({template.id}) failed: {e}",
                exc_info=True,
            )
            self._publish_errors(instance, template, suffix)
            return False

    async def _run_chain(
        self,
        instance: InstanceConfig,
        template: Template,
        context: MutableMapping[str, str],
        suffix: str,
    ) -> StepResult | None:
        """Run chain steps in order. Returns the failed result, or None."""
        for step in template.execution.steps:
            result = await self.execute_step(instance, step, context, suffix)
            if not result.success:
                return result
        return None

    # =========================================================================
    # Steps
    # =========================================================================

    async def execute_step(
        self,
        instance: InstanceConfig,
        step: Step,
        context: MutableMapping[str, str],
        suffix: str = "",
    ) -> StepResult:
        """
        Execute one chain step against the shared context.

        A fresh cache entry short-circuits the request entirely. On
        success, and when the step caches, exactly the variables the step
        produced (Extract keys and Process targets) are stored.
        """
        key = cache_key(instance.id, suffix, step.id)

        if step.cache_minutes != 0:
            cached = self._cache.get(key, step.cache_minutes)
            if cached is not None:
                context.update(cached)
                logger.debug(f"[engine] Step '{step.id}' served from cache ({key})")
                return StepResult.ok(step.id, cached, from_cache=True)

        try:
            url = resolve_template(step.url, context)
            body = resolve_template(step.body, context)
            raw = await self._http.fetch(url, method=step.method, body=body, headers=step.headers)
        except httpx.TimeoutException as e:
            return StepResult.fail(step.id, f"Request timed out: {e}", error_type="timeout")
        except httpx.HTTPError as e:
            return StepResult.fail(step.id, f"Request failed: {e}", error_type="http")
        except Exception as e:
            logger.error(f"[engine] Step '{step.id}' request error: {e}", exc_info=True)
            return StepResult.fail(step.id, f"Request failed: {e}")

        try:
            text = decode_body(raw, step.response_encoding)

            if step.extract:
                payload = text.strip()
                if step.response_format == "jsonp":
                    payload = strip_jsonp(payload)

                if step.response_format in ("json", "jsonp") and payload.startswith(("{", "[")):
                    document = parse_document(payload)
                    for var, path in step.extract.items():
                        context[var] = extract_json_value(document, path)

            apply_transforms(step.process, context)
        except ValueError as e:
            return StepResult.fail(step.id, f"Invalid response: {e}", error_type="parse")
        except Exception as e:
            logger.error(f"[engine] Step '{step.id}' unexpected error: {e}", exc_info=True)
            return StepResult.fail(step.id, str(e))

        values = {var: context[var] for var in step.produced_vars if var in context}

        if step.cache_minutes != 0:
            self._cache.put(key, values, instance_id=instance.id)

        return StepResult.ok(step.id, values)

    # =========================================================================
    # Publishing
    # =========================================================================

    def _publish_outputs(
        self,
        instance: InstanceConfig,
        template: Template,
        context: MutableMapping[str, str],
        suffix: str,
    ) -> bool:
        """Publish rendered outputs and relabel their descriptors."""
        config = self._config_store.load()
        changed = False

        for output in template.outputs:
            key = value_key(instance.id, suffix, output.key)
            value = resolve_template(output.format, context) or EMPTY_MARKER
            self._sink.inject_value(key, value)

            item = config.find_item(DESCRIPTOR_PREFIX + key)
            if item is None:
                continue

            label = resolve_template(template.label_pattern(output), context)
            short_label = resolve_template(output.short_label, context)

            if item.user_label != label:
                item.user_label = label
                changed = True
            if item.taskbar_label != short_label:
                item.taskbar_label = short_label
                changed = True

        return changed

    def _publish_errors(self, instance: InstanceConfig, template: Template, suffix: str) -> None:
        if template.execution.type == "api_text":
            self._sink.inject_value(value_key(instance.id, suffix), ERROR_MARKER)
            return

        for output in template.outputs:
            self._sink.inject_value(value_key(instance.id, suffix, output.key), ERROR_MARKER)
