"""Error analyzer - Builds a full ErrorAnalysis for a failed step."""

import asyncio

import structlog

from flowpilot.core.config import Config
from flowpilot.core.interfaces import JudgmentService, PageInspector
from flowpilot.core.types import (
    ErrorAnalysis,
    ErrorType,
    PageContext,
    RecoveryAction,
    RecoveryActionKind,
    Severity,
    Step,
)
from flowpilot.recovery.classifier import ErrorClassifier, error_message
from flowpilot.recovery.generator import RecoveryActionGenerator
from flowpilot.recovery.history import ErrorHistory


logger = structlog.get_logger()


class ErrorAnalyzer:
    """Classifies a failure, inspects the page and proposes recoveries."""

    def __init__(
        self,
        history: ErrorHistory,
        generator: RecoveryActionGenerator | None = None,
        classifier: ErrorClassifier | None = None,
        inspector: PageInspector | None = None,
        judge: JudgmentService | None = None,
        config: Config | None = None,
    ) -> None:
        """Initialize the analyzer.

        Args:
            history: Error history owned by the enclosing session
            generator: Recovery-action generator
            classifier: Error classifier
            inspector: Page inspection capability
            judge: Judgment service used for root-cause analysis
            config: Application configuration
        """
        self.config = config or Config()
        self.history = history
        self.generator = generator or RecoveryActionGenerator(judge=judge, config=self.config)
        self.classifier = classifier or ErrorClassifier()
        self.inspector = inspector
        self.judge = judge

    async def analyze(
        self,
        error: BaseException | str | None,
        step: Step,
        retry_count: int = 0,
    ) -> ErrorAnalysis:
        """Analyze a failure and propose recovery strategies.

        Args:
            error: Exception or error message
            step: The failing step
            retry_count: Number of prior recovery attempts

        Returns:
            ErrorAnalysis; a conservative default if analysis itself fails
        """
        message = error_message(error)
        logger.info("analyzing_error", step=step.name, retry_count=retry_count)

        try:
            classification = self.classifier.evaluate(message, step, retry_count)
            page_context = await self._page_context()
            root_cause = await self._identify_root_cause(message, step, page_context)

            actions = self.generator.generate(
                classification.error_type, root_cause, step, retry_count
            )
            alternatives = []
            if classification.is_recoverable:
                alternatives = await self.generator.suggest_alternatives(
                    step, root_cause, page_context
                )

            top = actions[0].kind.value if actions else "none"
            self.history.record(step.name, message, top)

            analysis = ErrorAnalysis(
                error_type=classification.error_type,
                severity=classification.severity,
                is_recoverable=classification.is_recoverable,
                root_cause=root_cause,
                suggested_actions=actions,
                page_context=page_context,
                alternative_approaches=alternatives,
            )
        except Exception as e:
            logger.error("error_analysis_failed", step=step.name, error=str(e))
            return ErrorAnalysis(
                error_type=ErrorType.UNKNOWN,
                severity=Severity.HIGH,
                is_recoverable=False,
                root_cause="Unable to analyze error",
                suggested_actions=[
                    RecoveryAction(
                        kind=RecoveryActionKind.SKIP,
                        confidence=0.5,
                        description="Skip this step due to analysis failure",
                    )
                ],
            )

        logger.info(
            "error_analyzed",
            step=step.name,
            error_type=analysis.error_type.value,
            severity=analysis.severity.value,
            recoverable=analysis.is_recoverable,
            alternatives=len(analysis.alternative_approaches),
        )
        return analysis

    async def _page_context(self) -> PageContext:
        if self.inspector is None:
            return PageContext()
        try:
            return await self.inspector.inspect()
        except Exception as e:
            logger.warning("page_context_unavailable", error=str(e))
            return PageContext()

    async def _identify_root_cause(
        self, message: str, step: Step, page_context: PageContext
    ) -> str:
        """One-sentence root cause from the judgment service, else the error text."""
        if self.judge is None:
            return message

        prompt = f"""Analyze why this browser automation step failed: "{step.name}".
Error: {message}
Current URL: {page_context.url}
Page title: {page_context.title}
Dialog open: {page_context.has_dialog}
Error elements visible: {page_context.has_errors}

Identify the root cause in one sentence. Respond with only that sentence."""

        try:
            answer = await asyncio.wait_for(
                self.judge.ask(prompt, max_tokens=150),
                timeout=self.config.judge_timeout,
            )
        except Exception as e:
            logger.warning("root_cause_analysis_failed", step=step.name, error=str(e))
            return message

        return answer.strip() or message
