"""Path Decider - Chooses between the snippet and reasoning paths."""

import asyncio
import re
from dataclasses import dataclass
from typing import Callable

import structlog

from flowpilot.core.config import Config
from flowpilot.core.interfaces import JudgmentService
from flowpilot.core.types import (
    PATH_ALIASES,
    Complexity,
    DecisionSignals,
    DecisionSource,
    DomStability,
    ExecutionPath,
    PathDecision,
    Stability,
    Step,
    Visibility,
)
from flowpilot.judge import extract_json_object


logger = structlog.get_logger()


@dataclass(frozen=True)
class ScoringRule:
    reason: str
    applies: Callable[[DecisionSignals], bool]
    points: int


SCORING_RULES: tuple[ScoringRule, ...] = (
    ScoringRule("CI environment detected", lambda s: s.is_ci_environment, 30),
    ScoringRule("high selector stability", lambda s: s.selector_stability is Stability.HIGH, 25),
    ScoringRule("low selector stability", lambda s: s.selector_stability is Stability.LOW, -20),
    ScoringRule("element clearly visible", lambda s: s.element_visibility is Visibility.VISIBLE, 15),
    ScoringRule("element not visible", lambda s: s.element_visibility is Visibility.HIDDEN, -25),
    ScoringRule("simple step", lambda s: s.step_complexity is Complexity.SIMPLE, 20),
    ScoringRule("complex step", lambda s: s.step_complexity is Complexity.COMPLEX, -15),
    ScoringRule("stable DOM", lambda s: s.dom_stability is DomStability.STABLE, 20),
    ScoringRule("dynamic DOM", lambda s: s.dom_stability is DomStability.DYNAMIC, -25),
    ScoringRule(
        "slow network conditions",
        lambda s: s.page_load_time_ms > 3000 or s.network_latency_ms > 200,
        10,
    ),
    ScoringRule("retry attempt", lambda s: s.current_attempt > 1, -15),
)

SNIPPET_THRESHOLD = 50
MIN_RULE_CONFIDENCE = 0.3
MAX_RULE_CONFIDENCE = 0.9

# Selectors anchored on ids, test ids or accessible names survive redesigns
STABLE_SELECTOR = re.compile(r"^#[\w-]+$|data-test|aria-label|role=|get_by_role|get_by_test_id")
BRITTLE_SELECTOR = re.compile(r"nth-child|nth-of-type|:nth\(|xpath=|^/")


def score_signals(signals: DecisionSignals) -> tuple[int, list[str]]:
    """Sum the points of every rule that applies.

    Returns:
        (score, reasons) with reasons in table order
    """
    score = 0
    reasons = []
    for rule in SCORING_RULES:
        if rule.applies(signals):
            score += rule.points
            reasons.append(rule.reason)
    return score, reasons


def rule_based_decision(signals: DecisionSignals) -> PathDecision:
    """Deterministic decision from the scoring table.

    Args:
        signals: Environmental signals

    Returns:
        Snippet when the score exceeds the threshold, reasoning otherwise
    """
    score, reasons = score_signals(signals)
    choice = ExecutionPath.SNIPPET if score > SNIPPET_THRESHOLD else ExecutionPath.REASONING
    confidence = min(MAX_RULE_CONFIDENCE, max(MIN_RULE_CONFIDENCE, abs(score) / 100))
    return PathDecision(
        choice=choice,
        confidence=confidence,
        rationale=f"Rule-based decision: {choice.value} (score: {score}) - {', '.join(reasons) or 'no signals'}",
        source=DecisionSource.RULES,
    )


def parse_decision(response: str) -> PathDecision:
    """Validate a remote decision payload.

    Raises:
        ValueError: If the payload is malformed
    """
    parsed = extract_json_object(response)

    raw_choice = str(parsed.get("choice", "")).strip().lower()
    raw_choice = PATH_ALIASES.get(raw_choice, raw_choice)
    try:
        choice = ExecutionPath(raw_choice)
    except ValueError as e:
        raise ValueError(f"Invalid choice in response: {parsed.get('choice')!r}") from e

    confidence = parsed.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise ValueError("Invalid confidence in response")
    if not 0 <= confidence <= 1:
        raise ValueError(f"Confidence out of range: {confidence}")

    return PathDecision(
        choice=choice,
        confidence=float(confidence),
        rationale=parsed.get("rationale") or "No rationale provided",
        source=DecisionSource.REMOTE,
    )


class PathDecider:
    """Remote judgment with a deterministic rule-based fallback."""

    def __init__(
        self,
        judge: JudgmentService | None = None,
        config: Config | None = None,
    ) -> None:
        """Initialize the decider.

        Args:
            judge: Judgment service; None always uses the rules
            config: Application configuration
        """
        self.judge = judge
        self.config = config or Config()

    async def decide(self, signals: DecisionSignals, context: str | None = None) -> PathDecision:
        """Choose an execution path. Never raises.

        Args:
            signals: Environmental signals
            context: Optional free-text context for the remote judgment

        Returns:
            PathDecision from the remote judgment, or from the rules
            when the remote call fails or returns an invalid payload
        """
        if self.judge is None:
            return rule_based_decision(signals)

        try:
            response = await asyncio.wait_for(
                self.judge.ask(self._build_prompt(signals, context), max_tokens=500),
                timeout=self.config.judge_timeout,
            )
            decision = parse_decision(response)
        except Exception as e:
            logger.warning("remote_decision_failed", error=str(e))
            decision = rule_based_decision(signals)

        logger.debug(
            "path_decided",
            choice=decision.choice.value,
            confidence=decision.confidence,
            source=decision.source.value,
        )
        return decision

    def _build_prompt(self, signals: DecisionSignals, context: str | None) -> str:
        extra = f"\nAdditional context:\n{context}\n" if context else ""
        return f"""You decide how a browser automation step should be executed.

1. "reasoning": an agent reads the live page and performs the step from its natural-language goal
2. "snippet": a pre-written Playwright snippet for this specific action is executed

Environment signals:
- CI environment: {signals.is_ci_environment}
- Selector stability: {signals.selector_stability.value}
- Element visibility: {signals.element_visibility.value}
- Page load time: {signals.page_load_time_ms}ms
- Previous step success: {signals.previous_step_success}
- Step complexity: {signals.step_complexity.value}
- DOM stability: {signals.dom_stability.value}
- Network latency: {signals.network_latency_ms}ms
- Current attempt: {signals.current_attempt}/{signals.max_attempts}
{extra}
Reasoning suits dynamic content, complex interactions and one-off tasks.
Snippets suit stable selectors, CI environments, repeated actions and performance-critical paths.

Respond with ONLY a JSON object:
{{"choice": "reasoning" or "snippet", "confidence": number between 0 and 1, "rationale": "brief explanation"}}"""

    def signals_for(
        self,
        step: Step,
        previous_step_success: bool = True,
        attempt: int = 1,
        page_load_time_ms: int = 0,
    ) -> DecisionSignals:
        """Estimate decision signals from a step and the run so far.

        Args:
            step: Step about to run
            previous_step_success: Whether the previous step succeeded
            attempt: 1-based attempt number for this step
            page_load_time_ms: Last observed page load time

        Returns:
            DecisionSignals
        """
        hint = (step.selector_hint or "").strip()
        if hint and STABLE_SELECTOR.search(hint):
            stability = Stability.HIGH
        elif (hint and BRITTLE_SELECTOR.search(hint)) or not step.snippet_code.strip():
            stability = Stability.LOW
        else:
            stability = Stability.MEDIUM

        instruction = step.instruction_text.lower()
        snippet_lines = [line for line in step.snippet_code.splitlines() if line.strip()]
        if len(instruction) > 150 or " then " in instruction or len(snippet_lines) > 5:
            complexity = Complexity.COMPLEX
        elif len(snippet_lines) <= 2:
            complexity = Complexity.SIMPLE
        else:
            complexity = Complexity.MEDIUM

        return DecisionSignals(
            is_ci_environment=self.config.is_ci,
            selector_stability=stability,
            element_visibility=Visibility.VISIBLE,
            page_load_time_ms=page_load_time_ms,
            previous_step_success=previous_step_success,
            step_complexity=complexity,
            dom_stability=DomStability.STABLE if previous_step_success else DomStability.CHANGING,
            current_attempt=attempt,
            max_attempts=self.config.max_recovery_attempts + 1,
        )
