"""
Feedboard Execution Engine

Runs template instances (single requests or step chains), caches step
results, and publishes rendered outputs.
"""

from .cache import CacheEntry, StepCache, cache_key
from .executor import EMPTY_MARKER, ERROR_MARKER, ExecutionEngine, merge_inputs
from .http import HttpFetcher, decode_body
from .result import StepResult

__all__ = [
    "ExecutionEngine",
    "merge_inputs",
    "ERROR_MARKER",
    "EMPTY_MARKER",
    "StepCache",
    "CacheEntry",
    "cache_key",
    "StepResult",
    "HttpFetcher",
    "decode_body",
]
