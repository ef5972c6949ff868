"""
Tests for the ExecutionEngine.

Tests cover:
- api_json, api_text and chain executions end to end over a mock transport
- Request construction (method, body, headers, User-Agent)
- Response decoding (gbk, JSONP)
- Step caching, expiry and per-target isolation
- Failure containment ("Err") and chain abort
- Descriptor relabeling with a single save and notification
"""

import json
from unittest.mock import MagicMock

import httpx
import pytest

from feedboard.config import DashboardConfig, InstanceConfig, MemoryConfigStore, MonitorItemConfig
from feedboard.engine import ExecutionEngine, StepCache
from feedboard.engine.executor import EMPTY_MARKER, ERROR_MARKER, merge_inputs, strip_jsonp
from feedboard.templates import Template


def _json_response(payload, status_code=200):
    return httpx.Response(status_code, content=json.dumps(payload).encode("utf-8"))


def _template(execution, outputs=None, template_id="feed", inputs=None):
    return Template.model_validate(
        {
            "Id": template_id,
            "Meta": {"Name": "Feed"},
            "Inputs": inputs or [],
            "Execution": execution,
            "Outputs": outputs if outputs is not None else [{"Key": "v", "Format": "{{v}}"}],
        }
    )


def _instance(instance_id="weather", template_id="weather", **kwargs):
    return InstanceConfig(id=instance_id, template_id=template_id, **kwargs)


def _quote_handler(request):
    if request.url.host == "auth.example.com":
        return _json_response({"token": "T1"})
    symbol = request.url.path.rsplit("/", 1)[-1]
    prices = {"ACME": 9.5, "AAA": 1.25, "BBB": 2.5}
    return _json_response({"quote": {"price": prices.get(symbol, 0)}})


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def make_engine(sink, config_store, settings, mock_http):
    """Build an engine over a mock transport: make_engine(handler) -> (engine, transport)."""

    def factory(handler, **kwargs):
        client, transport = mock_http(handler)
        engine = ExecutionEngine(sink, config_store, settings=settings, http_client=client, **kwargs)
        return engine, transport

    return factory


# =============================================================================
# Helpers
# =============================================================================


class TestHelpers:
    """Tests for input merging and JSONP stripping."""

    def test_merge_precedence(self, weather_template):
        instance = _instance(input_values={"city": "Oslo", "extra": "1"})

        assert merge_inputs(weather_template, instance) == {"city": "Oslo", "extra": "1"}
        assert merge_inputs(weather_template, instance, {"city": "Rome"})["city"] == "Rome"

    def test_merge_defaults_only(self, weather_template):
        assert merge_inputs(weather_template, _instance()) == {"city": "Berlin"}

    @pytest.mark.parametrize(
        "payload,expected",
        [
            ('cb({"a":1});', '{"a":1}'),
            ('jQuery123_456({"a":1})', '{"a":1}'),
            ('({"a":1})', '{"a":1}'),
            ('window.cb ( [1,2] ) ;', "[1,2]"),
            ('{"a":1}', '{"a":1}'),
        ],
    )
    def test_strip_jsonp(self, payload, expected):
        assert strip_jsonp(payload) == expected


# =============================================================================
# api_json / api_text
# =============================================================================


class TestSingleRequest:
    """Tests for api_json and api_text templates."""

    @pytest.mark.asyncio
    async def test_api_json_publishes_formatted_output(self, make_engine, sink, weather_template):
        engine, transport = make_engine(lambda r: _json_response({"data": {"temp": 21}}))

        await engine.execute_instance(_instance(), weather_template)

        assert sink.get("weather.t") == "21°C"
        assert transport.urls() == ["https://api.example.com/weather?q=Berlin"]

    @pytest.mark.asyncio
    async def test_instance_inputs_override_defaults(self, make_engine, sink, weather_template):
        engine, transport = make_engine(lambda r: _json_response({"data": {"temp": 3}}))

        await engine.execute_instance(_instance(input_values={"city": "Oslo"}), weather_template)

        assert transport.urls() == ["https://api.example.com/weather?q=Oslo"]
        assert sink.get("weather.t") == "3°C"

    @pytest.mark.asyncio
    async def test_missing_path_publishes_marker(self, make_engine, sink, weather_template):
        engine, _ = make_engine(lambda r: _json_response({"data": {}}))

        await engine.execute_instance(_instance(), weather_template)

        assert sink.get("weather.t") == "?°C"

    @pytest.mark.asyncio
    async def test_global_process_applied(self, make_engine, sink):
        template = _template(
            {
                "Url": "https://api.example.com/state",
                "Extract": {"v": "state"},
                "Process": [{"Function": "map", "TargetVar": "v", "Map": {"1": "on", "0": "off"}}],
            }
        )
        engine, _ = make_engine(lambda r: _json_response({"state": 1}))

        await engine.execute_instance(_instance("s", "feed"), template)

        assert sink.get("s.v") == "on"

    @pytest.mark.asyncio
    async def test_empty_render_publishes_empty_marker(self, make_engine, sink):
        template = _template(
            {"Url": "https://api.example.com/x", "Extract": {"v": "value"}},
            outputs=[{"Key": "v", "Format": "{{nothing}}"}],
        )
        engine, _ = make_engine(lambda r: _json_response({"value": "x"}))

        await engine.execute_instance(_instance("e", "feed"), template)

        assert sink.get("e.v") == EMPTY_MARKER

    @pytest.mark.asyncio
    async def test_error_status_with_json_body_still_published(self, make_engine, sink, weather_template):
        engine, _ = make_engine(lambda r: _json_response({"data": {"temp": 5}}, status_code=503))

        await engine.execute_instance(_instance(), weather_template)

        assert sink.get("weather.t") == "5°C"

    @pytest.mark.asyncio
    async def test_unparseable_body_publishes_error(self, make_engine, sink, weather_template):
        engine, _ = make_engine(lambda r: httpx.Response(500, content=b"<html>oops</html>"))

        await engine.execute_instance(_instance(), weather_template)

        assert sink.get("weather.t") == ERROR_MARKER

    @pytest.mark.asyncio
    async def test_api_text_publishes_raw_body(self, make_engine, sink):
        template = _template({"Type": "api_text", "Url": "https://api.example.com/motd"}, outputs=[])
        engine, _ = make_engine(lambda r: httpx.Response(200, content="héllo\n".encode("utf-8")))

        await engine.execute_instance(_instance("motd", "feed"), template)

        assert sink.get("motd") == "héllo\n"

    @pytest.mark.asyncio
    async def test_api_text_failure_publishes_error_under_raw_key(self, make_engine, sink):
        template = _template({"Type": "api_text", "Url": "https://api.example.com/motd"}, outputs=[])

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        engine, _ = make_engine(handler)

        await engine.execute_instance(_instance("motd", "feed"), template)

        assert sink.get("motd") == ERROR_MARKER


# =============================================================================
# Request construction
# =============================================================================


class TestRequests:
    """Tests for method, body and header handling."""

    @pytest.mark.asyncio
    async def test_post_body_resolved(self, make_engine):
        template = _template(
            {
                "Url": "https://api.example.com/search",
                "Method": "POST",
                "Body": '{"city": "{{city}}"}',
                "Extract": {"v": "v"},
            },
            inputs=[{"Key": "city", "DefaultValue": "Lyon"}],
        )
        engine, transport = make_engine(lambda r: _json_response({"v": 1}))

        await engine.execute_instance(_instance("p", "feed"), template)

        request = transport.requests[0]
        assert request.method == "POST"
        assert request.content == b'{"city": "Lyon"}'
        assert request.headers["content-type"].startswith("application/json")

    @pytest.mark.asyncio
    async def test_get_sends_no_body(self, make_engine, weather_template):
        engine, transport = make_engine(lambda r: _json_response({}))

        await engine.execute_instance(_instance(), weather_template)

        request = transport.requests[0]
        assert request.method == "GET"
        assert request.content == b""

    @pytest.mark.asyncio
    async def test_default_user_agent(self, make_engine, settings, weather_template):
        engine, transport = make_engine(lambda r: _json_response({}))

        await engine.execute_instance(_instance(), weather_template)

        assert transport.requests[0].headers["user-agent"] == settings.user_agent

    @pytest.mark.asyncio
    async def test_template_headers_sent_verbatim(self, make_engine):
        template = _template(
            {
                "Url": "https://api.example.com/x",
                "Headers": {"X-Api-Key": "{{secret}}", "user-agent": "custom/1.0"},
            }
        )
        engine, transport = make_engine(lambda r: _json_response({}))

        await engine.execute_instance(_instance("h", "feed"), template)

        headers = transport.requests[0].headers
        assert headers["x-api-key"] == "{{secret}}"
        assert headers.get_list("user-agent") == ["custom/1.0"]


# =============================================================================
# Chains
# =============================================================================


class TestChain:
    """Tests for chained steps, decoding and caching."""

    @pytest.mark.asyncio
    async def test_chain_passes_variables(self, make_engine, sink, chain_template):
        engine, transport = make_engine(_quote_handler)

        await engine.execute_instance(_instance("quotes", "quotes"), chain_template)

        assert transport.urls() == [
            "https://auth.example.com/token",
            "https://data.example.com/quote/ACME?token=T1",
        ]
        assert sink.get("quotes.price") == "ACME 9.5"

    @pytest.mark.asyncio
    async def test_cached_step_skips_request(self, make_engine, sink, chain_template):
        engine, transport = make_engine(_quote_handler)
        instance = _instance("quotes", "quotes")

        await engine.execute_instance(instance, chain_template)
        await engine.execute_instance(instance, chain_template)

        hosts = [r.url.host for r in transport.requests]
        assert hosts == ["auth.example.com", "data.example.com", "data.example.com"]
        assert sink.get("quotes.price") == "ACME 9.5"
        assert "quotes_auth" in engine.cache

    @pytest.mark.asyncio
    async def test_cache_expires(self, make_engine, chain_template):
        clock = FakeClock()
        engine, transport = make_engine(_quote_handler, cache=StepCache(clock=clock))
        instance = _instance("quotes", "quotes")

        await engine.execute_instance(instance, chain_template)
        clock.now += 10 * 60
        await engine.execute_instance(instance, chain_template)

        hosts = [r.url.host for r in transport.requests]
        assert hosts.count("auth.example.com") == 2

    @pytest.mark.asyncio
    async def test_uncached_step_not_stored(self, make_engine, chain_template):
        engine, _ = make_engine(_quote_handler)

        await engine.execute_instance(_instance("quotes", "quotes"), chain_template)

        assert "quotes_quote" not in engine.cache
        assert len(engine.cache) == 1

    @pytest.mark.asyncio
    async def test_targets_cached_separately(self, make_engine, sink, chain_template):
        engine, transport = make_engine(_quote_handler)
        instance = _instance("quotes", "quotes", targets=[{"symbol": "AAA"}, {"symbol": "BBB"}])

        await engine.execute_instance(instance, chain_template)

        assert sink.get("quotes.0.price") == "AAA 1.25"
        assert sink.get("quotes.1.price") == "BBB 2.5"
        assert "quotes.0_auth" in engine.cache
        assert "quotes.1_auth" in engine.cache
        assert [r.url.host for r in transport.requests].count("auth.example.com") == 2

    @pytest.mark.asyncio
    async def test_failed_step_aborts_chain(self, make_engine, sink, chain_template):
        def handler(request):
            if request.url.host == "auth.example.com":
                raise httpx.ConnectError("refused", request=request)
            return _quote_handler(request)

        engine, transport = make_engine(handler)

        await engine.execute_instance(_instance("quotes", "quotes"), chain_template)

        assert [r.url.host for r in transport.requests] == ["auth.example.com"]
        assert sink.get("quotes.price") == ERROR_MARKER
        assert len(engine.cache) == 0

    @pytest.mark.asyncio
    async def test_step_timeout_result(self, make_engine, chain_template):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        engine, _ = make_engine(handler)
        step = chain_template.execution.steps[0]

        result = await engine.execute_step(_instance("quotes", "quotes"), step, {})

        assert not result.success
        assert result.error_type == "timeout"
        assert result.step_id == "auth"

    @pytest.mark.asyncio
    async def test_step_unencodable_header_result(self, make_engine):
        template = _template(
            {
                "Type": "chain",
                "Steps": [
                    {
                        "Id": "s",
                        "Url": "https://api.example.com/x",
                        "Headers": {"X-City": "北京"},
                        "Extract": {"v": "v"},
                    }
                ],
            }
        )
        engine, transport = make_engine(lambda r: _json_response({"v": 1}))
        step = template.execution.steps[0]

        result = await engine.execute_step(_instance("h", "feed"), step, {})

        assert not result.success
        assert result.error_type == "unexpected"
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_step_parse_failure_result(self, make_engine, chain_template):
        engine, _ = make_engine(lambda r: httpx.Response(200, content=b'{"token": '))
        step = chain_template.execution.steps[0]

        result = await engine.execute_step(_instance("quotes", "quotes"), step, {})

        assert not result.success
        assert result.error_type == "parse"

    @pytest.mark.asyncio
    async def test_step_result_from_cache(self, make_engine, chain_template):
        engine, _ = make_engine(_quote_handler)
        instance = _instance("quotes", "quotes")
        step = chain_template.execution.steps[0]

        first = await engine.execute_step(instance, step, {})
        context = {}
        second = await engine.execute_step(instance, step, context)

        assert first.success and not first.from_cache
        assert second.from_cache
        assert second.values == {"token": "T1"}
        assert context["token"] == "T1"

    @pytest.mark.asyncio
    async def test_gbk_response(self, make_engine, sink):
        template = _template(
            {
                "Type": "chain",
                "Steps": [
                    {
                        "Id": "s",
                        "Url": "https://api.example.com/cn",
                        "ResponseEncoding": "gbk",
                        "Extract": {"v": "city"},
                    }
                ],
            }
        )
        body = '{"city": "北京"}'.encode("gbk")
        engine, _ = make_engine(lambda r: httpx.Response(200, content=body))

        await engine.execute_instance(_instance("cn", "feed"), template)

        assert sink.get("cn.v") == "北京"

    @pytest.mark.asyncio
    async def test_jsonp_response(self, make_engine, sink):
        template = _template(
            {
                "Type": "chain",
                "Steps": [
                    {
                        "Id": "s",
                        "Url": "https://api.example.com/jsonp",
                        "ResponseFormat": "jsonp",
                        "Extract": {"v": "data.v"},
                    }
                ],
            }
        )
        engine, _ = make_engine(lambda r: httpx.Response(200, content=b'callback({"data": {"v": 5}});'))

        await engine.execute_instance(_instance("j", "feed"), template)

        assert sink.get("j.v") == "5"

    @pytest.mark.asyncio
    async def test_step_process_targets_cached(self, make_engine):
        template = _template(
            {
                "Type": "chain",
                "Steps": [
                    {
                        "Id": "s",
                        "Url": "https://api.example.com/x",
                        "Extract": {"raw": "v"},
                        "Process": [
                            {"Function": "regex_replace", "SourceVar": "raw", "TargetVar": "v",
                             "Pattern": "^(\\d+)$", "To": "$1!"}
                        ],
                        "CacheMinutes": 1,
                    }
                ],
            }
        )
        engine, _ = make_engine(lambda r: _json_response({"v": 7}))

        await engine.execute_instance(_instance("c", "feed"), template)

        assert engine.cache.get("c_s", 1) == {"raw": "7", "v": "7!"}


# =============================================================================
# Failure isolation
# =============================================================================


class TestTargets:
    """Tests for multi-target execution."""

    @pytest.mark.asyncio
    async def test_failing_target_does_not_affect_others(self, make_engine, sink, weather_template):
        def handler(request):
            if request.url.params["q"] == "Nowhere":
                return httpx.Response(404, content=b"not found")
            return _json_response({"data": {"temp": 18}})

        engine, _ = make_engine(handler)
        instance = _instance(targets=[{"city": "Nowhere"}, {"city": "Paris"}])

        await engine.execute_instance(instance, weather_template)

        assert sink.get("weather.0.t") == ERROR_MARKER
        assert sink.get("weather.1.t") == "18°C"
        assert sink.get("weather.t") is None

    @pytest.mark.asyncio
    async def test_targets_run_in_order(self, make_engine, weather_template):
        engine, transport = make_engine(lambda r: _json_response({"data": {"temp": 1}}))
        instance = _instance(targets=[{"city": "A"}, {"city": "B"}, {"city": "C"}])

        await engine.execute_instance(instance, weather_template)

        assert [r.url.params["q"] for r in transport.requests] == ["A", "B", "C"]


# =============================================================================
# Descriptor relabeling
# =============================================================================


class TestRelabel:
    """Tests for label updates of existing descriptors."""

    @pytest.mark.asyncio
    async def test_labels_updated_with_one_save_and_emit(
        self, sink, settings, mock_http, weather_template
    ):
        config_store = MemoryConfigStore(
            DashboardConfig(
                monitor_items=[
                    MonitorItemConfig(key="DASH.weather.0.t", user_label="Auto Temp"),
                    MonitorItemConfig(key="DASH.weather.1.t", user_label="Auto Temp"),
                ]
            )
        )
        client, _ = mock_http(lambda r: _json_response({"data": {"temp": 20}}))
        engine = ExecutionEngine(sink, config_store, settings=settings, http_client=client)
        listener = MagicMock()
        engine.events.subscribe(listener)
        instance = _instance(targets=[{"city": "Rome"}, {"city": "Oslo"}])

        await engine.execute_instance(instance, weather_template)

        items = config_store.load().monitor_items
        assert [i.user_label for i in items] == ["Rome Temp", "Oslo Temp"]
        assert [i.taskbar_label for i in items] == ["T", "T"]
        assert config_store.save_count == 1
        listener.assert_called_once()

        await engine.execute_instance(instance, weather_template)

        assert config_store.save_count == 1
        listener.assert_called_once()

    @pytest.mark.asyncio
    async def test_no_descriptor_no_save(self, make_engine, config_store, weather_template):
        engine, _ = make_engine(lambda r: _json_response({"data": {"temp": 20}}))
        listener = MagicMock()
        engine.events.subscribe(listener)

        await engine.execute_instance(_instance(), weather_template)

        assert config_store.save_count == 0
        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_target_keeps_labels(self, sink, settings, mock_http, weather_template):
        config_store = MemoryConfigStore(
            DashboardConfig(monitor_items=[MonitorItemConfig(key="DASH.weather.t", user_label="Old")])
        )
        client, _ = mock_http(lambda r: httpx.Response(500, content=b"down"))
        engine = ExecutionEngine(sink, config_store, settings=settings, http_client=client)

        await engine.execute_instance(_instance(), weather_template)

        assert config_store.load().monitor_items[0].user_label == "Old"
        assert config_store.save_count == 0
