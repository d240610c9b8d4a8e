"""Unit tests for core types."""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from flowpilot.core.types import (
    ExecutionPath,
    ExecutionReport,
    FallbackPath,
    IntentSpec,
    Step,
    StepExecutionResult,
    substitute_step,
    substitute_variables,
)


class TestStep:
    """Test suite for Step model."""

    def test_accepts_recorded_field_names(self) -> None:
        """Test that camelCase and legacy path names are accepted."""
        step = Step.model_validate(
            {
                "name": "Open menu",
                "instructionText": "Open the account menu",
                "snippetCode": "await page.click('#menu')",
                "preferredPath": "ai",
                "fallbackPath": "snippet",
                "continueOnFailure": True,
            }
        )

        assert step.preferred_path is ExecutionPath.REASONING
        assert step.fallback_path is FallbackPath.SNIPPET
        assert step.instruction_text == "Open the account menu"
        assert step.continue_on_failure is True

    def test_fallback_must_differ_from_preferred(self) -> None:
        """Test that a fallback equal to the preferred path is rejected."""
        with pytest.raises(ValidationError):
            Step(name="Bad", preferred_path="snippet", fallback_path="snippet")

    def test_fallback_none_is_allowed_with_any_preference(self) -> None:
        """Test that fallback none never conflicts."""
        step = Step(name="Only snippet", preferred_path="snippet", fallback_path="none")

        assert step.fallback_for(ExecutionPath.SNIPPET) is None

    def test_fallback_for_ignores_same_path(self) -> None:
        """Test that a decided primary equal to the fallback yields no fallback."""
        step = Step(name="Adaptive", fallback_path="snippet")

        assert step.fallback_for(ExecutionPath.REASONING) is ExecutionPath.SNIPPET
        assert step.fallback_for(ExecutionPath.SNIPPET) is None

    def test_empty_name_falls_back_to_instruction(self) -> None:
        """Test that unnamed steps are named after their instruction."""
        step = Step(instruction_text="Click the big green button")

        assert step.name == "Click the big green button"

    def test_authentication_step_detection(self) -> None:
        """Test that login-like step names are detected."""
        assert Step(name="Login to dashboard").is_authentication_step
        assert Step(name="Sign in with SSO").is_authentication_step
        assert not Step(name="Open settings").is_authentication_step


class TestVariableSubstitution:
    """Test suite for {{VAR}} substitution."""

    def test_known_variables_are_replaced(self) -> None:
        """Test that known tokens are substituted."""
        text = "Type {{EMAIL}} into {{ FIELD }}"

        result = substitute_variables(text, {"EMAIL": "a@b.c", "FIELD": "email"})

        assert result == "Type a@b.c into email"

    def test_unknown_variables_are_left_verbatim(self) -> None:
        """Test that unresolved tokens stay in the text."""
        result = substitute_variables("Hello {{NAME}}", {})

        assert result == "Hello {{NAME}}"

    def test_none_and_empty_pass_through(self) -> None:
        """Test that empty inputs are returned unchanged."""
        assert substitute_variables(None, {"A": "1"}) is None
        assert substitute_variables("", {"A": "1"}) == ""

    def test_substitute_step_covers_all_text_fields(self) -> None:
        """Test that value, snippet and instruction are substituted."""
        step = Step(
            name="Fill",
            instruction_text="Enter {{USER}}",
            snippet_code="await page.fill('#u', '{{USER}}')",
            value="{{USER}}",
        )

        result = substitute_step(step, {"USER": "alice"})

        assert result.instruction_text == "Enter alice"
        assert result.snippet_code == "await page.fill('#u', 'alice')"
        assert result.value == "alice"
        assert step.value == "{{USER}}"


class TestIntentSpec:
    """Test suite for IntentSpec loading."""

    def test_load_from_json(self, tmp_path: Path) -> None:
        """Test that a recorded spec file loads."""
        path = tmp_path / "flow.json"
        path.write_text(
            json.dumps(
                {
                    "name": "Checkout",
                    "startUrl": "https://shop.example.com",
                    "params": ["EMAIL"],
                    "steps": [
                        {"name": "Open cart", "snippet": "await page.click('#cart')", "prefer": "snippet"},
                    ],
                }
            )
        )

        spec = IntentSpec.load(path)

        assert spec.name == "Checkout"
        assert spec.start_url == "https://shop.example.com"
        assert spec.steps[0].preferred_path is ExecutionPath.SNIPPET

    def test_spec_is_immutable(self) -> None:
        """Test that a loaded spec cannot be reassigned."""
        spec = IntentSpec(name="Flow", steps=[])

        with pytest.raises(ValidationError):
            spec.name = "Other"


class TestExecutionReport:
    """Test suite for ExecutionReport tallies."""

    def test_add_step_tallies_final_path(self) -> None:
        """Test that counters follow path_used and fallback_occurred."""
        report = ExecutionReport(execution_id="exec_1")

        report.add_step(StepExecutionResult(index=0, name="A", path_used="reasoning", success=True))
        report.add_step(
            StepExecutionResult(
                index=1, name="B", path_used="snippet", fallback_occurred=True, success=True
            )
        )

        assert report.ai_usage_count == 1
        assert report.snippet_usage_count == 1
        assert report.fallback_count == 1

    def test_report_is_json_serializable(self) -> None:
        """Test that the report serializes to JSON."""
        report = ExecutionReport(execution_id="exec_1")
        report.add_step(StepExecutionResult(index=0, name="A", path_used="snippet", success=True))

        data = json.loads(report.to_json())

        assert data["execution_id"] == "exec_1"
        assert data["steps"][0]["path_used"] == "snippet"

    def test_step_results_are_frozen(self) -> None:
        """Test that step results cannot be mutated after creation."""
        result = StepExecutionResult(index=0, name="A", path_used="snippet", success=True)

        with pytest.raises(ValidationError):
            result.success = False
