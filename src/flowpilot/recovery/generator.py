"""Recovery-action generator - Ranked remediation candidates for a classified failure."""

import asyncio
from dataclasses import dataclass
from enum import Enum

import structlog

from flowpilot.core.config import Config
from flowpilot.core.interfaces import JudgmentService
from flowpilot.core.types import (
    AlternativeApproach,
    ErrorType,
    PageContext,
    RecoveryAction,
    RecoveryActionKind,
    Step,
)
from flowpilot.judge import extract_json_array


logger = structlog.get_logger()


class Guard(str, Enum):
    """Condition under which a table row applies."""

    ALWAYS = "always"
    EARLY_RETRY = "early_retry"
    OPTIONAL_STEP = "optional_step"


@dataclass(frozen=True)
class ActionRule:
    kind: RecoveryActionKind
    confidence: float
    description: str
    implementation: str | None = None
    guard: Guard = Guard.ALWAYS


EARLY_RETRY_LIMIT = 2

DEFAULT_RULES: tuple[ActionRule, ...] = (
    ActionRule(RecoveryActionKind.USE_ALTERNATE_PATH, 0.7, "Use the reasoning path for intelligent recovery"),
    ActionRule(RecoveryActionKind.SKIP, 0.5, "Skip this problematic step"),
)

ACTION_TABLE: dict[ErrorType, tuple[ActionRule, ...]] = {
    ErrorType.SELECTOR: (
        ActionRule(
            RecoveryActionKind.USE_ALTERNATE_PATH, 0.85,
            "Use the reasoning path to locate the element from its description",
        ),
        ActionRule(RecoveryActionKind.ALTERNATE_SELECTOR, 0.7, "Search for alternative selectors"),
        ActionRule(RecoveryActionKind.SKIP, 0.9, "Skip this optional step", guard=Guard.OPTIONAL_STEP),
    ),
    ErrorType.TIMEOUT: (
        ActionRule(
            RecoveryActionKind.WAIT, 0.7, "Wait 5 seconds and retry",
            implementation="await page.wait_for_timeout(5000)",
            guard=Guard.EARLY_RETRY,
        ),
        ActionRule(
            RecoveryActionKind.REFRESH, 0.6, "Refresh the page and retry",
            implementation="await page.reload()",
        ),
        ActionRule(RecoveryActionKind.USE_ALTERNATE_PATH, 0.8, "Use the reasoning path to handle dynamic content"),
    ),
    ErrorType.NETWORK: (
        ActionRule(
            RecoveryActionKind.RETRY, 0.8, "Retry with extended timeout",
            implementation="page.set_default_timeout(30000)",
        ),
        ActionRule(
            RecoveryActionKind.NAVIGATE_BACK, 0.5, "Go back and try an alternative path",
            implementation="await page.go_back()",
        ),
    ),
    ErrorType.VALIDATION: (
        ActionRule(
            RecoveryActionKind.USE_ALTERNATE_PATH, 0.9,
            "Use the reasoning path to understand and fix validation errors",
        ),
        ActionRule(RecoveryActionKind.SKIP, 0.4, "Skip validation step"),
    ),
}

ALTERNATIVE_CONFIDENCES = (0.9, 0.7, 0.5)


def _applies(rule: ActionRule, step: Step, retry_count: int) -> bool:
    if rule.guard is Guard.EARLY_RETRY:
        return retry_count < EARLY_RETRY_LIMIT
    if rule.guard is Guard.OPTIONAL_STEP:
        return step.continue_on_failure
    return True


class RecoveryActionGenerator:
    """Table-driven recovery suggestions plus AI-generated alternative code."""

    def __init__(
        self,
        judge: JudgmentService | None = None,
        config: Config | None = None,
    ) -> None:
        """Initialize the generator.

        Args:
            judge: Judgment service for alternative snippets; None disables them
            config: Application configuration
        """
        self.judge = judge
        self.config = config or Config()

    def generate(
        self,
        error_type: ErrorType,
        root_cause: str,
        step: Step,
        retry_count: int = 0,
    ) -> list[RecoveryAction]:
        """Generate recovery actions for a classified failure.

        Args:
            error_type: Classified error type
            root_cause: Root cause text, used in descriptions
            step: The failing step
            retry_count: Number of prior retries

        Returns:
            Actions sorted by confidence, highest first
        """
        rules = ACTION_TABLE.get(error_type, DEFAULT_RULES)
        actions = []
        for rule in rules:
            if not _applies(rule, step, retry_count):
                continue
            implementation = rule.implementation
            if rule.kind is RecoveryActionKind.ALTERNATE_SELECTOR:
                implementation = step.selector_hint
            actions.append(
                RecoveryAction(
                    kind=rule.kind,
                    confidence=rule.confidence,
                    description=rule.description,
                    implementation=implementation,
                )
            )

        actions.sort(key=lambda a: a.confidence, reverse=True)
        logger.debug(
            "recovery_actions_generated",
            step=step.name,
            error_type=error_type.value,
            root_cause=root_cause,
            actions=[a.kind.value for a in actions],
        )
        return actions

    async def suggest_alternatives(
        self,
        step: Step,
        root_cause: str,
        page_context: PageContext | None = None,
    ) -> list[AlternativeApproach]:
        """Ask the judgment service for alternative snippets.

        Args:
            step: The failing step
            root_cause: Why the step failed
            page_context: Page state at failure time

        Returns:
            Up to ``max_alternatives`` approaches with decaying confidence;
            empty on any failure
        """
        if self.judge is None:
            return []

        page_context = page_context or PageContext()
        limit = min(self.config.max_alternatives, len(ALTERNATIVE_CONFIDENCES))
        prompt = f"""The browser automation step "{step.name}" failed.

Goal: {step.instruction_text or step.name}
Original snippet:
{step.snippet_code or "(none)"}
Root cause: {root_cause}
Current URL: {page_context.url}
Page title: {page_context.title}

Suggest {limit} alternative Playwright (Python, async API) snippets that achieve the same goal.
Each snippet is the body of an async function with `page` in scope.

Return ONLY a JSON array of objects with "approach" and "code" fields.
"""

        try:
            response = await asyncio.wait_for(
                self.judge.ask(prompt, max_tokens=1024),
                timeout=self.config.judge_timeout,
            )
            raw = extract_json_array(response)
        except Exception as e:
            logger.warning("alternative_generation_failed", step=step.name, error=str(e))
            return []

        alternatives = []
        for item in raw:
            if len(alternatives) >= limit:
                break
            if not isinstance(item, dict):
                continue
            code = item.get("code") or item.get("snippet")
            if not isinstance(code, str) or not code.strip():
                logger.debug("alternative_discarded", step=step.name, item=item)
                continue
            approach = item.get("approach")
            if not isinstance(approach, str) or not approach.strip():
                approach = f"Alternative {len(alternatives) + 1}"
            alternatives.append(
                AlternativeApproach(
                    approach=approach,
                    code=code,
                    confidence=ALTERNATIVE_CONFIDENCES[len(alternatives)],
                )
            )

        logger.info("alternatives_generated", step=step.name, count=len(alternatives))
        return alternatives
