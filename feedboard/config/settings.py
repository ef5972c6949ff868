"""
Engine Settings.

Type-safe settings for the engine and scheduler. Values come from
FEEDBOARD_* environment variables via get_settings(); code that builds
its own components (tests, embedding applications) can construct
EngineSettings directly.
"""

from __future__ import annotations

import os
from functools import lru_cache

from pydantic import BaseModel, Field

from feedboard import __version__


class EngineSettings(BaseModel):
    """Settings for template loading, HTTP fetching and scheduling."""

    # Locations
    templates_dir: str = Field(default="plugins", description="Directory of template JSON files")
    config_path: str = Field(default="feedboard.json", description="Persisted configuration file")

    # HTTP
    http_timeout: float = Field(default=10.0, gt=0, description="Per-request timeout (seconds)")
    user_agent: str = Field(default=f"feedboard/{__version__}")

    # Execution
    target_delay: float = Field(
        default=0.5, ge=0, description="Pause before every target after the first (seconds)"
    )
    min_interval_ms: int = Field(default=1000, ge=1, description="Lower bound for timer intervals")

    # Display placeholders
    loading_placeholder: str = Field(default="...", description="Live value shown until the first tick")
    empty_input_placeholder: str = Field(
        default="Auto", description="Substituted for empty inputs in label previews"
    )


@lru_cache()
def get_settings() -> EngineSettings:
    """
    Get engine settings from environment.

    Uses lru_cache for singleton pattern.
    """
    defaults = EngineSettings()
    return EngineSettings(
        templates_dir=os.getenv("FEEDBOARD_TEMPLATES_DIR", defaults.templates_dir),
        config_path=os.getenv("FEEDBOARD_CONFIG_PATH", defaults.config_path),
        http_timeout=float(os.getenv("FEEDBOARD_HTTP_TIMEOUT", defaults.http_timeout)),
        user_agent=os.getenv("FEEDBOARD_USER_AGENT", defaults.user_agent),
        target_delay=float(os.getenv("FEEDBOARD_TARGET_DELAY", defaults.target_delay)),
        min_interval_ms=int(os.getenv("FEEDBOARD_MIN_INTERVAL_MS", defaults.min_interval_ms)),
        loading_placeholder=os.getenv("FEEDBOARD_LOADING_PLACEHOLDER", defaults.loading_placeholder),
        empty_input_placeholder=os.getenv(
            "FEEDBOARD_EMPTY_INPUT_PLACEHOLDER", defaults.empty_input_placeholder
        ),
    )
