"""Fallback wrapper - Per-step execution with a single fallback attempt."""

from flowpilot.fallback.fallback import EventCallback, FallbackWrapper, StepAttemptResult

__all__ = ["EventCallback", "FallbackWrapper", "StepAttemptResult"]
