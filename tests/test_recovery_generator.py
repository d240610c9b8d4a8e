"""Unit tests for the recovery-action generator and error history."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from flowpilot.core.config import Config
from flowpilot.core.types import ErrorType, RecoveryActionKind, Step
from flowpilot.recovery import ErrorHistory, RecoveryActionGenerator


@pytest.fixture
def step() -> Step:
    return Step(
        name="Click submit",
        instruction_text="Click the submit button",
        snippet_code="await page.click('#submit')",
        selector_hint="#submit",
    )


class TestGenerate:
    """Test suite for table-driven action generation."""

    def test_selector_actions(self, step: Step) -> None:
        """Test selector errors on a required step."""
        actions = RecoveryActionGenerator().generate(ErrorType.SELECTOR, "missing", step)

        kinds = [a.kind for a in actions]
        assert kinds == [
            RecoveryActionKind.USE_ALTERNATE_PATH,
            RecoveryActionKind.ALTERNATE_SELECTOR,
        ]
        assert actions[0].confidence == 0.85
        assert actions[1].implementation == "#submit"

    def test_selector_actions_for_optional_step(self, step: Step) -> None:
        """Test that optional steps get a top-ranked skip."""
        optional = step.model_copy(update={"continue_on_failure": True})

        actions = RecoveryActionGenerator().generate(ErrorType.SELECTOR, "missing", optional)

        assert actions[0].kind is RecoveryActionKind.SKIP
        assert actions[0].confidence == 0.9

    def test_timeout_actions_early_retry(self, step: Step) -> None:
        """Test that wait is offered only for early retries."""
        early = RecoveryActionGenerator().generate(ErrorType.TIMEOUT, "slow", step, retry_count=1)
        late = RecoveryActionGenerator().generate(ErrorType.TIMEOUT, "slow", step, retry_count=2)

        assert [a.kind for a in early] == [
            RecoveryActionKind.USE_ALTERNATE_PATH,
            RecoveryActionKind.WAIT,
            RecoveryActionKind.REFRESH,
        ]
        assert RecoveryActionKind.WAIT not in [a.kind for a in late]

    def test_network_actions(self, step: Step) -> None:
        """Test network error actions."""
        actions = RecoveryActionGenerator().generate(ErrorType.NETWORK, "offline", step)

        assert [(a.kind, a.confidence) for a in actions] == [
            (RecoveryActionKind.RETRY, 0.8),
            (RecoveryActionKind.NAVIGATE_BACK, 0.5),
        ]

    def test_validation_actions(self, step: Step) -> None:
        """Test validation error actions."""
        actions = RecoveryActionGenerator().generate(ErrorType.VALIDATION, "bad", step)

        assert [(a.kind, a.confidence) for a in actions] == [
            (RecoveryActionKind.USE_ALTERNATE_PATH, 0.9),
            (RecoveryActionKind.SKIP, 0.4),
        ]

    @pytest.mark.parametrize("error_type", [ErrorType.UNKNOWN, ErrorType.PERMISSION])
    def test_default_actions(self, step: Step, error_type: ErrorType) -> None:
        """Test the default rows."""
        actions = RecoveryActionGenerator().generate(error_type, "?", step)

        assert [(a.kind, a.confidence) for a in actions] == [
            (RecoveryActionKind.USE_ALTERNATE_PATH, 0.7),
            (RecoveryActionKind.SKIP, 0.5),
        ]

    def test_actions_sorted_descending(self, step: Step) -> None:
        """Test that every table yields confidence-sorted actions."""
        for error_type in ErrorType:
            actions = RecoveryActionGenerator().generate(error_type, "x", step)
            confidences = [a.confidence for a in actions]
            assert confidences == sorted(confidences, reverse=True)


class TestSuggestAlternatives:
    """Test suite for AI alternative snippets."""

    @pytest.mark.asyncio
    async def test_alternatives_get_decaying_confidence(
        self, step: Step, mock_judge, test_config: Config
    ) -> None:
        """Test that alternatives are parsed and ranked 0.9/0.7/0.5."""
        mock_judge.ask.return_value = "Here you go:\n" + json.dumps(
            [
                {"approach": "By role", "code": "await page.get_by_role('button', name='Submit').click()"},
                {"approach": "By text", "code": "await page.get_by_text('Submit').click()"},
                {"approach": "Press enter", "code": "await page.keyboard.press('Enter')"},
                {"approach": "Extra", "code": "await page.click('form button')"},
            ]
        )
        generator = RecoveryActionGenerator(judge=mock_judge, config=test_config)

        alternatives = await generator.suggest_alternatives(step, "selector changed")

        assert [a.confidence for a in alternatives] == [0.9, 0.7, 0.5]
        assert alternatives[0].approach == "By role"

    @pytest.mark.asyncio
    async def test_malformed_response_yields_empty_list(
        self, step: Step, mock_judge, test_config: Config
    ) -> None:
        """Test that unparsable output degrades to no alternatives."""
        mock_judge.ask.return_value = "I cannot help with that."
        generator = RecoveryActionGenerator(judge=mock_judge, config=test_config)

        assert await generator.suggest_alternatives(step, "x") == []

    @pytest.mark.asyncio
    async def test_non_string_fields_are_skipped(
        self, step: Step, mock_judge, test_config: Config
    ) -> None:
        """Test that items with non-text code are dropped and bad names replaced."""
        mock_judge.ask.return_value = json.dumps(
            [
                {"approach": "a", "code": 123},
                {"approach": ["x"], "code": "await page.keyboard.press('Enter')"},
            ]
        )
        generator = RecoveryActionGenerator(judge=mock_judge, config=test_config)

        alternatives = await generator.suggest_alternatives(step, "x")

        assert len(alternatives) == 1
        assert alternatives[0].approach == "Alternative 1"
        assert alternatives[0].confidence == 0.9

    @pytest.mark.asyncio
    async def test_only_malformed_items_yield_empty_list(
        self, step: Step, mock_judge, test_config: Config
    ) -> None:
        """Test that a list of unusable items degrades to no alternatives."""
        mock_judge.ask.return_value = json.dumps([{"approach": "a", "code": 123}])
        generator = RecoveryActionGenerator(judge=mock_judge, config=test_config)

        assert await generator.suggest_alternatives(step, "x") == []

    @pytest.mark.asyncio
    async def test_judge_error_yields_empty_list(
        self, step: Step, mock_judge, test_config: Config
    ) -> None:
        """Test that service errors degrade to no alternatives."""
        mock_judge.ask.side_effect = RuntimeError("service down")
        generator = RecoveryActionGenerator(judge=mock_judge, config=test_config)

        assert await generator.suggest_alternatives(step, "x") == []

    @pytest.mark.asyncio
    async def test_slow_judge_times_out(self, step: Step, test_config: Config) -> None:
        """Test that a hanging service is cut off by the judge timeout."""

        async def slow_ask(*args, **kwargs):
            await asyncio.sleep(5)
            return "[]"

        judge = AsyncMock()
        judge.ask = slow_ask
        config = test_config.model_copy(update={"judge_timeout": 0.05})
        generator = RecoveryActionGenerator(judge=judge, config=config)

        assert await generator.suggest_alternatives(step, "x") == []

    @pytest.mark.asyncio
    async def test_no_judge_means_no_alternatives(self, step: Step) -> None:
        """Test that the generator works without a judgment service."""
        assert await RecoveryActionGenerator().suggest_alternatives(step, "x") == []


class TestErrorHistory:
    """Test suite for the bounded error history."""

    def test_capacity_evicts_oldest(self) -> None:
        """Test ring-buffer eviction."""
        history = ErrorHistory(capacity=3)
        for i in range(5):
            history.record(f"step{i}", "error", "retry")

        assert len(history) == 3
        assert [e.step for e in history.entries()] == ["step2", "step3", "step4"]

    def test_successful_patterns(self) -> None:
        """Test that only patterns above 50% success are returned."""
        history = ErrorHistory()
        history.record("a", "Timeout exceeded", "wait", success=True)
        history.record("a", "Timeout exceeded", "wait", success=True)
        history.record("a", "Timeout exceeded", "wait", success=False)
        history.record("b", "Element not found", "skip", success=False)

        patterns = history.successful_patterns()

        assert patterns == [("Timeout exceeded_wait", pytest.approx(2 / 3))]

    def test_mark_last_success(self) -> None:
        """Test that the latest entry for a step is flagged."""
        history = ErrorHistory()
        history.record("a", "e1", "wait")
        history.record("a", "e2", "refresh")

        assert history.mark_last_success("a") is True
        assert [e.success for e in history.entries()] == [False, True]
        assert history.mark_last_success("missing") is False
