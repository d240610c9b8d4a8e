"""Execution Orchestrator - Runs an intent spec step by step with fallback and recovery."""

import asyncio
import time
import uuid
from collections import defaultdict
from typing import Any, Callable

import structlog

from flowpilot.core.config import Config
from flowpilot.core.errors import ConfigurationError
from flowpilot.core.interfaces import ReasoningExecutor, SnippetExecutor
from flowpilot.core.types import (
    ErrorAnalysis,
    ExecutionOutcome,
    ExecutionPath,
    ExecutionReport,
    IntentSpec,
    RecoveryActionKind,
    Step,
    StepExecutionResult,
    substitute_step,
)
from flowpilot.decider import PathDecider
from flowpilot.fallback import FallbackWrapper, StepAttemptResult
from flowpilot.recovery import ErrorAnalyzer
from flowpilot.solutions import (
    ErrorContext,
    SolutionCandidate,
    SolutionStore,
    Urgency,
    infer_strategy,
)


logger = structlog.get_logger()


EXECUTION_EVENTS = (
    "execution-started",
    "step-started",
    "step-completed",
    "fallback-started",
    "fallback-completed",
    "recovery-started",
    "recovery-completed",
    "execution-cancelled",
    "execution-completed",
)

INITIALIZATION_STEP_NAME = "Execution Failed"

# Recovery actions whose implementation is page-level code worth running
# before the step is attempted again
PREPARATORY_ACTIONS = {
    RecoveryActionKind.WAIT,
    RecoveryActionKind.REFRESH,
    RecoveryActionKind.NAVIGATE_BACK,
    RecoveryActionKind.RETRY,
}

EventListener = Callable[[dict[str, Any]], Any]


def new_execution_id() -> str:
    return f"exec_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class ExecutionOrchestrator:
    """Walks an intent spec, delegating each step to the fallback wrapper.

    One run at a time per instance. Steps execute strictly in order and
    cancellation is checked only between steps.
    """

    def __init__(
        self,
        snippet_executor: SnippetExecutor | None = None,
        reasoning_executor: ReasoningExecutor | None = None,
        config: Config | None = None,
        decider: PathDecider | None = None,
        analyzer: ErrorAnalyzer | None = None,
        solution_store: SolutionStore | None = None,
        navigator: Any | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            snippet_executor: Snippet path capability
            reasoning_executor: Reasoning path capability
            config: Application configuration
            decider: Chooses a path for steps without a preferred path
            analyzer: Error analyzer used by the recovery loop
            solution_store: Store of reusable remediations
            navigator: Object with ``async navigate(url)``, used for the start URL

        Raises:
            ConfigurationError: If no executor is provided
        """
        if snippet_executor is None and reasoning_executor is None:
            raise ConfigurationError("At least one executor must be provided")

        self.config = config or Config()
        self.snippet_executor = snippet_executor
        self.reasoning_executor = reasoning_executor
        self.decider = decider
        self.analyzer = analyzer
        self.solution_store = solution_store
        self.navigator = navigator

        self.fallback = FallbackWrapper(
            snippet_executor=snippet_executor,
            reasoning_executor=reasoning_executor,
            config=self.config,
            on_event=self._emit,
        )

        self._listeners: dict[str, list[EventListener]] = defaultdict(list)
        self._running = False
        self._cancel_requested = False

    # ------------------------------------------------------------------ events

    def on(self, event: str, listener: EventListener) -> None:
        """Subscribe to a lifecycle event.

        Args:
            event: One of EXECUTION_EVENTS
            listener: Called with the event payload

        Raises:
            ConfigurationError: If the event name is unknown
        """
        if event not in EXECUTION_EVENTS:
            raise ConfigurationError(f"Unknown event: {event}")
        self._listeners[event].append(listener)

    def _emit(self, event: str, payload: dict[str, Any]) -> None:
        for listener in self._listeners.get(event, []):
            try:
                listener({"event": event, **payload})
            except Exception as e:
                logger.warning("event_listener_failed", event_name=event, error=str(e))

    # --------------------------------------------------------------- lifecycle

    @property
    def is_running(self) -> bool:
        return self._running

    def cancel(self) -> None:
        """Request cancellation; honoured before the next step starts."""
        if self._running:
            self._cancel_requested = True
            logger.info("execution_cancel_requested")

    async def run(
        self,
        spec: IntentSpec,
        variables: dict[str, str] | None = None,
    ) -> ExecutionReport:
        """Execute an intent spec.

        Args:
            spec: Intent spec to run
            variables: Values for {{VAR}} tokens

        Returns:
            ExecutionReport for the run

        Raises:
            ConfigurationError: If a run is already in progress on this instance
        """
        if self._running:
            raise ConfigurationError("An execution is already in progress on this orchestrator")

        self._running = True
        self._cancel_requested = False
        try:
            return await self._run(spec, variables or {})
        finally:
            self._running = False

    async def _run(self, spec: IntentSpec, variables: dict[str, str]) -> ExecutionReport:
        report = ExecutionReport(execution_id=new_execution_id())
        start = time.monotonic()

        logger.info(
            "execution_started",
            execution_id=report.execution_id,
            spec=spec.name,
            steps=len(spec.steps),
        )
        self._emit(
            "execution-started",
            {"execution_id": report.execution_id, "spec": spec.name, "total_steps": len(spec.steps)},
        )

        unresolved = [p for p in spec.params if p not in variables]
        if unresolved:
            logger.warning("unresolved_params", params=unresolved)

        try:
            await self._initialize(spec)
        except Exception as e:
            logger.error("execution_initialization_failed", error=str(e))
            report.steps.append(
                StepExecutionResult(
                    index=-1,
                    name=INITIALIZATION_STEP_NAME,
                    path_used=ExecutionPath.REASONING,
                    success=False,
                    error=str(e) or type(e).__name__,
                )
            )
            report.overall_success = False
            return self._finish(report, start)

        previous_success = True
        for index, step in enumerate(spec.steps):
            if self._cancel_requested:
                report.cancelled = True
                report.overall_success = False
                logger.info("execution_cancelled", execution_id=report.execution_id, next_step=index)
                self._emit(
                    "execution-cancelled",
                    {"execution_id": report.execution_id, "next_step": index},
                )
                break

            self._emit("step-started", {"index": index, "name": step.name})
            result = await self._execute_step(index, step, variables, previous_success, report)
            report.add_step(result)
            self._emit(
                "step-completed",
                {
                    "index": index,
                    "name": result.name,
                    "path_used": result.path_used.value,
                    "success": result.success,
                    "fallback_occurred": result.fallback_occurred,
                    "recovered": result.recovered,
                },
            )
            previous_success = result.success

            if result.success:
                continue
            if step.continue_on_failure:
                logger.info("step_failed_continuing", step=step.name, error=result.error)
                continue

            report.overall_success = False
            logger.warning("execution_halted", step=step.name, index=index, error=result.error)
            break

        if report.overall_success and not report.cancelled:
            await self._run_validation_steps(spec, variables)

        return self._finish(report, start)

    async def _initialize(self, spec: IntentSpec) -> None:
        if self.navigator is not None and spec.start_url:
            await self.navigator.navigate(spec.start_url)

    def _finish(self, report: ExecutionReport, start: float) -> ExecutionReport:
        report.total_duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "execution_completed",
            execution_id=report.execution_id,
            success=report.overall_success,
            steps=len(report.steps),
            ai_usage=report.ai_usage_count,
            snippet_usage=report.snippet_usage_count,
            fallbacks=report.fallback_count,
            duration_ms=report.total_duration_ms,
        )
        self._emit(
            "execution-completed",
            {"execution_id": report.execution_id, "report": report.model_dump(mode="json")},
        )
        return report

    # ------------------------------------------------------------------- steps

    async def _execute_step(
        self,
        index: int,
        step: Step,
        variables: dict[str, str],
        previous_success: bool,
        report: ExecutionReport,
    ) -> StepExecutionResult:
        started = time.monotonic()
        # The fallback wrapper substitutes on each attempt; the resolved copy
        # only feeds decisions and analysis.
        resolved = substitute_step(step, variables)

        preferred = step.preferred_path
        if preferred is None:
            preferred = await self._choose_path(resolved, previous_success, attempt=1)

        logger.info("step_started", index=index, step=step.name, path=preferred.value)
        attempt = await self.fallback.execute_step(step, variables, preferred=preferred)
        report.screenshots.extend(attempt.screenshots)

        path_used = attempt.path_used
        error = attempt.error
        recovered = False

        if not attempt.success and self.config.enable_recovery and self.analyzer is not None:
            allowed = self._allowed_paths(step, preferred)
            recovery_path = await self._recover(step, resolved, variables, attempt, report, allowed)
            if recovery_path is not None:
                path_used = recovery_path
                error = None
                recovered = True

        success = attempt.success or recovered
        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "step_completed",
            index=index,
            step=step.name,
            success=success,
            path=path_used.value,
            fallback=attempt.fallback_occurred,
            recovered=recovered,
            duration_ms=duration_ms,
        )
        return StepExecutionResult(
            index=index,
            name=step.name,
            path_used=path_used,
            fallback_occurred=attempt.fallback_occurred,
            success=success,
            duration_ms=duration_ms,
            error=error,
            recovered=recovered,
        )

    def _has_executor(self, path: ExecutionPath) -> bool:
        if path is ExecutionPath.SNIPPET:
            return self.snippet_executor is not None
        return self.reasoning_executor is not None

    def _allowed_paths(self, step: Step, primary: ExecutionPath) -> set[ExecutionPath]:
        """Paths recovery may use for a step.

        A pinned step keeps to its preferred path plus its configured
        fallback. An unpinned step may use any path with an executor.
        """
        if step.preferred_path is None:
            return {path for path in ExecutionPath if self._has_executor(path)}
        allowed = {primary}
        fallback = step.fallback_for(primary)
        if fallback is not None:
            allowed.add(fallback)
        return allowed

    async def _choose_path(
        self,
        step: Step,
        previous_success: bool,
        attempt: int,
        context: str | None = None,
    ) -> ExecutionPath:
        if self.decider is None:
            choice = ExecutionPath.REASONING
        else:
            signals = self.decider.signals_for(
                step, previous_step_success=previous_success, attempt=attempt
            )
            decision = await self.decider.decide(signals, context)
            choice = decision.choice
            logger.info(
                "path_selected",
                step=step.name,
                choice=choice.value,
                confidence=decision.confidence,
                source=decision.source.value,
                rationale=decision.rationale,
            )

        if not self._has_executor(choice):
            choice = choice.alternate
        return choice

    # ---------------------------------------------------------------- recovery

    async def _recover(
        self,
        step: Step,
        resolved: Step,
        variables: dict[str, str],
        attempt: StepAttemptResult,
        report: ExecutionReport,
        allowed: set[ExecutionPath],
    ) -> ExecutionPath | None:
        """Run the recovery loop for a failed step.

        Args:
            step: The step as written; the fallback wrapper substitutes it
            resolved: The step with variables substituted, for analysis
            variables: Run-time variables
            attempt: The failed attempt
            report: Report receiving suggestions and screenshots
            allowed: Paths the step may be executed on

        Returns:
            The path that finally succeeded, or None if recovery failed
        """
        error = attempt.error or "Unknown error"
        tried_solutions: set[str] = set()
        recovered_path: ExecutionPath | None = None
        code_allowed = ExecutionPath.SNIPPET in allowed

        self._emit("recovery-started", {"name": step.name, "error": error})
        logger.info(
            "recovery_started",
            step=step.name,
            error=error,
            paths=sorted(p.value for p in allowed),
        )

        for retry in range(self.config.max_recovery_attempts):
            # Step 1: Analyze the failure
            analysis = await self.analyzer.analyze(error, resolved, retry_count=retry)
            top = analysis.top_action
            if top is not None:
                suggestion = f"{step.name}: {top.description}"
                if suggestion not in report.suggestions:
                    report.suggestions.append(suggestion)

            if not analysis.is_recoverable:
                logger.info(
                    "error_not_recoverable",
                    step=step.name,
                    error_type=analysis.error_type.value,
                    severity=analysis.severity.value,
                )
                break

            context = ErrorContext(
                error_message=error,
                error_type=analysis.error_type,
                step_name=step.name,
                selector=resolved.selector_hint,
                value=resolved.value,
                retry_count=retry,
                url=analysis.page_context.url,
            )

            # Remediation code runs on the snippet path
            if code_allowed:
                # Step 2: Reuse stored solutions
                if await self._try_stored_solutions(step, variables, analysis, context, tried_solutions):
                    recovered_path = ExecutionPath.SNIPPET
                    break

                # Step 3: Try AI-suggested alternatives, keeping the first that works
                if await self._try_alternatives(step, variables, analysis, context):
                    recovered_path = ExecutionPath.SNIPPET
                    break

            if top is not None and top.kind is RecoveryActionKind.SKIP:
                logger.info("recovery_skipped", step=step.name, reason=top.description)
                break

            # Step 4: Apply the top action and attempt the step again
            if code_allowed:
                await self._apply_action(step, variables, analysis)
            elif top is not None and top.kind is RecoveryActionKind.WAIT:
                await asyncio.sleep(self.config.recovery_wait_seconds)

            if len(allowed) == 1:
                (path,) = allowed
            else:
                path = await self._choose_path(
                    resolved,
                    previous_success=False,
                    attempt=retry + 2,
                    context=f"Previous attempt failed: {error}. Suggested: {top.description if top else 'retry'}",
                )
            outcome = await self.fallback.run_path(step, path, variables)
            report.screenshots.extend(outcome.screenshots)
            if outcome.success:
                recovered_path = path
                break

            error = outcome.error or error
            logger.info("recovery_attempt_failed", step=step.name, retry=retry, path=path.value, error=error)

        if recovered_path is not None:
            self.analyzer.history.mark_last_success(step.name)

        logger.info(
            "recovery_completed",
            step=step.name,
            success=recovered_path is not None,
            path=recovered_path.value if recovered_path else None,
        )
        self._emit(
            "recovery-completed",
            {
                "name": step.name,
                "success": recovered_path is not None,
                "path_used": recovered_path.value if recovered_path else None,
            },
        )
        return recovered_path

    async def _run_code(self, step: Step, code: str, variables: dict[str, str]) -> ExecutionOutcome:
        return await self.fallback.run_path(
            step.model_copy(update={"snippet_code": code}),
            ExecutionPath.SNIPPET,
            variables,
        )

    async def _try_stored_solutions(
        self,
        step: Step,
        variables: dict[str, str],
        analysis: ErrorAnalysis,
        context: ErrorContext,
        tried: set[str],
    ) -> bool:
        if self.solution_store is None or self.snippet_executor is None:
            return False

        try:
            lookup = await self.solution_store.find_solutions(
                context,
                urgency=Urgency.from_severity(analysis.severity),
                exclude_ids=tried,
            )
        except Exception as e:
            logger.warning("solution_lookup_failed", step=step.name, error=str(e))
            return False

        for ranked in lookup.solutions:
            solution = ranked.solution
            tried.add(solution.id)
            started = time.monotonic()
            outcome = await self._run_code(step, solution.code, variables)
            duration_ms = int((time.monotonic() - started) * 1000)

            try:
                await self.solution_store.record_outcome(solution.id, outcome.success, duration_ms)
            except Exception as e:
                logger.warning("solution_outcome_not_recorded", solution_id=solution.id, error=str(e))

            if outcome.success:
                logger.info(
                    "stored_solution_applied",
                    step=step.name,
                    solution_id=solution.id,
                    stage=ranked.match_stage.value,
                )
                return True

        if lookup.fallback_required:
            logger.debug("solution_store_requires_fallback", step=step.name)
        return False

    async def _try_alternatives(
        self,
        step: Step,
        variables: dict[str, str],
        analysis: ErrorAnalysis,
        context: ErrorContext,
    ) -> bool:
        if self.snippet_executor is None:
            return False

        for alternative in analysis.alternative_approaches:
            started = time.monotonic()
            outcome = await self._run_code(step, alternative.code, variables)
            if not outcome.success:
                logger.debug("alternative_failed", step=step.name, approach=alternative.approach)
                continue

            logger.info("alternative_applied", step=step.name, approach=alternative.approach)
            if self.solution_store is not None:
                candidate = SolutionCandidate(
                    code=alternative.code,
                    strategy=infer_strategy(context.error_message),
                    explanation=alternative.approach,
                    confidence=alternative.confidence,
                    succeeded=True,
                    duration_ms=int((time.monotonic() - started) * 1000),
                )
                try:
                    await self.solution_store.store_new_solution(candidate, context)
                except Exception as e:
                    logger.warning("solution_not_stored", step=step.name, error=str(e))
            return True

        return False

    async def _apply_action(
        self,
        step: Step,
        variables: dict[str, str],
        analysis: ErrorAnalysis,
    ) -> None:
        top = analysis.top_action
        if top is None or top.kind not in PREPARATORY_ACTIONS:
            return

        if top.implementation and self.snippet_executor is not None:
            outcome = await self._run_code(step, top.implementation, variables)
            logger.info(
                "recovery_action_applied",
                step=step.name,
                action=top.kind.value,
                success=outcome.success,
            )
        elif top.kind is RecoveryActionKind.WAIT:
            await asyncio.sleep(self.config.recovery_wait_seconds)

    # -------------------------------------------------------------- validation

    async def _run_validation_steps(self, spec: IntentSpec, variables: dict[str, str]) -> None:
        """Run post-run checks; results are logged only."""
        for step in spec.validation_steps:
            result = await self.fallback.execute_step(step, variables)
            logger.info(
                "validation_step_completed",
                step=step.name,
                success=result.success,
                path=result.path_used.value,
                error=result.error,
            )
