"""
Pytest configuration and fixtures for Feedboard tests.
"""

import json
import sys
from pathlib import Path
from typing import Callable

import httpx
import pytest

# Add the repository root to path for imports
# This allows `from feedboard.engine import ...` to work
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from feedboard.config import EngineSettings, MemoryConfigStore  # noqa: E402
from feedboard.metrics import InMemoryMetricSink  # noqa: E402
from feedboard.templates import Template  # noqa: E402


class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: list[httpx.Request] = []

        def recording_handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(recording_handler)

    def urls(self) -> list[str]:
        return [str(r.url) for r in self.requests]


@pytest.fixture
def mock_http():
    """
    Factory for an httpx client served by a handler function.

    Returns (client, transport); transport.requests lists what was sent.
    """

    def factory(handler: Callable[[httpx.Request], httpx.Response]):
        transport = RecordingTransport(handler)
        return httpx.AsyncClient(transport=transport), transport

    return factory


@pytest.fixture
def settings():
    """Settings without the inter-target pause."""
    return EngineSettings(target_delay=0)


@pytest.fixture
def sink():
    return InMemoryMetricSink()


@pytest.fixture
def config_store():
    return MemoryConfigStore()


@pytest.fixture
def weather_template():
    """api_json template with one input, one extraction and one output."""
    return Template.model_validate(
        {
            "Id": "weather",
            "Meta": {"Name": "Weather", "Version": "1.0", "Author": "tests"},
            "Inputs": [{"Key": "city", "Label": "City", "DefaultValue": "Berlin"}],
            "Execution": {
                "Type": "api_json",
                "Url": "https://api.example.com/weather?q={{city}}",
                "Interval": 600000,
                "Extract": {"temp": "data.temp"},
            },
            "Outputs": [
                {"Key": "t", "Format": "{{temp}}°C", "Label": "{{city}} Temp", "ShortLabel": "T", "Unit": "°C"}
            ],
        }
    )


@pytest.fixture
def chain_template():
    """Two-step chain: a cached token lookup feeding a data request."""
    return Template.model_validate(
        {
            "Id": "quotes",
            "Meta": {"Name": "Quotes"},
            "Inputs": [{"Key": "symbol", "DefaultValue": "ACME"}],
            "Execution": {
                "Type": "chain",
                "Interval": 60000,
                "Steps": [
                    {
                        "Id": "auth",
                        "Url": "https://auth.example.com/token",
                        "Extract": {"token": "token"},
                        "CacheMinutes": 10,
                    },
                    {
                        "Id": "quote",
                        "Url": "https://data.example.com/quote/{{symbol}}?token={{token}}",
                        "Extract": {"price": "quote.price"},
                    },
                ],
            },
            "Outputs": [{"Key": "price", "Format": "{{symbol}} {{price}}"}],
        }
    )


@pytest.fixture
def template_dir(tmp_path, weather_template):
    """Directory holding one valid template file."""
    directory = tmp_path / "plugins"
    directory.mkdir()
    (directory / "weather.json").write_text(
        json.dumps(weather_template.model_dump(by_alias=True)), encoding="utf-8"
    )
    return directory
