"""Fallback Wrapper - Runs one step on its preferred path, then its fallback."""

import asyncio
import time
from typing import Any, Callable, Optional

import structlog
from pydantic import BaseModel, Field

from flowpilot.core.config import Config
from flowpilot.core.interfaces import ReasoningExecutor, SnippetExecutor
from flowpilot.core.types import (
    ExecutionOutcome,
    ExecutionPath,
    Step,
    substitute_step,
)


logger = structlog.get_logger()


EventCallback = Callable[[str, dict[str, Any]], None]


class StepAttemptResult(BaseModel):
    """Outcome of executing one step, including any fallback."""

    success: bool
    path_used: ExecutionPath
    fallback_occurred: bool = False
    error: Optional[str] = None
    screenshots: list[str] = Field(default_factory=list)


class FallbackWrapper:
    """Executes a step on its preferred path and falls back once on failure.

    Every executor failure (missing executor, empty input, raised
    exception, timeout) is converted into a failed result; nothing raised
    by an executor escapes ``execute_step``.
    """

    def __init__(
        self,
        snippet_executor: SnippetExecutor | None = None,
        reasoning_executor: ReasoningExecutor | None = None,
        config: Config | None = None,
        on_event: EventCallback | None = None,
    ) -> None:
        """Initialize the fallback wrapper.

        Args:
            snippet_executor: Snippet path capability
            reasoning_executor: Reasoning path capability
            config: Application configuration
            on_event: Receives fallback-started / fallback-completed events
        """
        self.snippet_executor = snippet_executor
        self.reasoning_executor = reasoning_executor
        self.config = config or Config()
        self.on_event = on_event

    @property
    def default_path(self) -> ExecutionPath:
        """Primary path for steps with no preference."""
        if self.reasoning_executor is None:
            return ExecutionPath.SNIPPET
        return ExecutionPath.REASONING

    async def execute_step(
        self,
        step: Step,
        variables: dict[str, str] | None = None,
        preferred: ExecutionPath | None = None,
    ) -> StepAttemptResult:
        """Execute a step with fallback.

        Args:
            step: Step to execute
            variables: Run-time variables for {{VAR}} substitution
            preferred: Path override; defaults to the step's preferred path,
                then to reasoning when a reasoning executor is configured,
                else to snippet

        Returns:
            StepAttemptResult. ``path_used`` is the path that succeeded, or
            the primary path when every attempt failed.
        """
        variables = variables or {}
        primary = preferred or step.preferred_path or self.default_path

        outcome = await self.run_path(step, primary, variables)
        if outcome.success:
            return StepAttemptResult(
                success=True,
                path_used=primary,
                screenshots=outcome.screenshots,
            )

        fallback = step.fallback_for(primary)
        if fallback is None:
            logger.info(
                "step_failed_no_fallback",
                step=step.name,
                path=primary.value,
                error=outcome.error,
            )
            return StepAttemptResult(
                success=False,
                path_used=primary,
                error=outcome.error,
                screenshots=outcome.screenshots,
            )

        logger.info(
            "fallback_started",
            step=step.name,
            primary=primary.value,
            fallback=fallback.value,
            error=outcome.error,
        )
        self._emit(
            "fallback-started",
            {"step": step.name, "from": primary.value, "to": fallback.value, "error": outcome.error},
        )

        fallback_outcome = await self.run_path(step, fallback, variables)

        self._emit(
            "fallback-completed",
            {"step": step.name, "path": fallback.value, "success": fallback_outcome.success},
        )
        screenshots = [*outcome.screenshots, *fallback_outcome.screenshots]

        if fallback_outcome.success:
            logger.info("fallback_succeeded", step=step.name, path=fallback.value)
            return StepAttemptResult(
                success=True,
                path_used=fallback,
                fallback_occurred=True,
                screenshots=screenshots,
            )

        logger.warning(
            "fallback_failed",
            step=step.name,
            primary_error=outcome.error,
            fallback_error=fallback_outcome.error,
        )
        return StepAttemptResult(
            success=False,
            path_used=primary,
            fallback_occurred=True,
            error=(
                "Both primary and fallback execution failed. "
                f"Primary: {outcome.error}, Fallback: {fallback_outcome.error}"
            ),
            screenshots=screenshots,
        )

    async def run_path(
        self,
        step: Step,
        path: ExecutionPath,
        variables: dict[str, str],
    ) -> ExecutionOutcome:
        """Run a single path for a step, substituting variables first.

        Args:
            step: Step to execute
            path: Path to run
            variables: Run-time variables

        Returns:
            ExecutionOutcome; never raises for executor failures
        """
        step = substitute_step(step, variables)
        start = time.monotonic()

        if path is ExecutionPath.SNIPPET:
            executor = self.snippet_executor
            payload = step.snippet_code
            missing = "No snippet provided for this step"
        else:
            executor = self.reasoning_executor
            payload = step.instruction_text
            if payload.strip() and step.value:
                payload = f"{payload}\nValue to use: {step.value}"
            missing = "No reasoning instruction provided for this step"

        if executor is None:
            return ExecutionOutcome.failed(f"No {path.value} executor configured")
        if not payload.strip():
            return ExecutionOutcome.failed(missing)

        timeout = self.config.step_timeout
        if path is ExecutionPath.REASONING:
            timeout += self.config.judge_timeout

        try:
            outcome = await asyncio.wait_for(
                executor.execute(payload, variables),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            outcome = ExecutionOutcome.failed(
                f"{path.value.capitalize()} execution timed out after {timeout:.0f}s"
            )
        except Exception as e:
            outcome = ExecutionOutcome.failed(str(e) or type(e).__name__)

        logger.debug(
            "path_executed",
            step=step.name,
            path=path.value,
            success=outcome.success,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        return outcome

    def _emit(self, event: str, payload: dict[str, Any]) -> None:
        if self.on_event is None:
            return
        try:
            self.on_event(event, payload)
        except Exception as e:
            logger.warning("event_listener_failed", event_name=event, error=str(e))
