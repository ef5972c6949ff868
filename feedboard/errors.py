"""
Exceptions for Feedboard.

Most failures inside the engine are absorbed where they happen (a bad
template file is skipped, a missing JSON path yields "?", a failing
target publishes "Err"). TemplateLoadError travels from a single file
up to the store's load loop; UnknownInstanceError reaches the caller.
"""

from __future__ import annotations


class FeedboardError(Exception):
    """Base exception for Feedboard errors."""


class TemplateLoadError(FeedboardError):
    """Raised when a single template file cannot be read or validated."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Failed to load template {path}: {reason}")
        self.path = path
        self.reason = reason


class UnknownInstanceError(FeedboardError):
    """Raised when an operation names an instance that does not exist."""

    def __init__(self, instance_id: str):
        super().__init__(f"Unknown instance: {instance_id}")
        self.instance_id = instance_id
