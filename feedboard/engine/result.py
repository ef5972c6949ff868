"""
Step Result.

Chain steps report their outcome as a value instead of raising. The
engine inspects each result and stops the chain at the first failure;
the remaining steps of that target are not run and its outputs are
published as "Err".

Usage:
    result = await engine.execute_step(instance, step, context, suffix)
    if not result.success:
        logger.warning(result.error)
        break
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class StepResult:
    """Outcome of one chain step."""

    step_id: str
    success: bool

    # Variables the step produced (Extract + Process targets)
    values: dict[str, str] = field(default_factory=dict)

    # True when values came from the step cache instead of the network
    from_cache: bool = False

    # Error information (if success=False)
    error: str = ""
    error_type: str = ""  # "http", "timeout", "parse", "unexpected"

    @classmethod
    def ok(
        cls,
        step_id: str,
        values: dict[str, str] | None = None,
        *,
        from_cache: bool = False,
    ) -> StepResult:
        """Create a successful result."""
        return cls(step_id=step_id, success=True, values=dict(values or {}), from_cache=from_cache)

    @classmethod
    def fail(cls, step_id: str, error: str, *, error_type: str = "unexpected") -> StepResult:
        """Create a failed result."""
        return cls(step_id=step_id, success=False, error=error, error_type=error_type)
