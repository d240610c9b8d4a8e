"""Core types and data models for flowpilot."""

import json
import re
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


class ExecutionPath(str, Enum):
    """Ways a single step can be executed."""

    SNIPPET = "snippet"
    REASONING = "reasoning"

    @property
    def alternate(self) -> "ExecutionPath":
        """The other execution path."""
        if self is ExecutionPath.SNIPPET:
            return ExecutionPath.REASONING
        return ExecutionPath.SNIPPET


class FallbackPath(str, Enum):
    """Path to try after the preferred path fails."""

    SNIPPET = "snippet"
    REASONING = "reasoning"
    NONE = "none"

    def as_execution_path(self) -> ExecutionPath | None:
        if self is FallbackPath.NONE:
            return None
        return ExecutionPath(self.value)


# Recorded flows written by older tooling call the reasoning path "ai"
PATH_ALIASES = {"ai": "reasoning", "act": "reasoning"}

AUTH_STEP_KEYWORDS = ("login", "log in", "sign in", "signin", "auth")


def _normalize_path_value(value: Any) -> Any:
    if isinstance(value, str):
        lowered = value.strip().lower()
        return PATH_ALIASES.get(lowered, lowered)
    return value


class Step(BaseModel):
    """One unit of work inside an intent spec."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(
        default="",
        validation_alias=AliasChoices("name", "description"),
        description="Human readable step name",
    )
    instruction_text: str = Field(
        default="",
        validation_alias=AliasChoices("instruction_text", "instructionText", "ai_instruction"),
        description="Natural-language goal used by the reasoning path",
    )
    snippet_code: str = Field(
        default="",
        validation_alias=AliasChoices("snippet_code", "snippetCode", "snippet"),
        description="Deterministic automation code used by the snippet path",
    )
    preferred_path: Optional[ExecutionPath] = Field(
        None,
        validation_alias=AliasChoices("preferred_path", "preferredPath", "prefer"),
        description="Path to try first; None lets the decision function choose",
    )
    fallback_path: FallbackPath = Field(
        default=FallbackPath.NONE,
        validation_alias=AliasChoices("fallback_path", "fallbackPath", "fallback"),
        description="Path to try after the preferred path fails",
    )
    selector_hint: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("selector_hint", "selectorHint", "selector"),
    )
    value: Optional[str] = Field(
        None, description="Optional value, supports {{VAR}} substitution"
    )
    continue_on_failure: bool = Field(
        default=False,
        validation_alias=AliasChoices("continue_on_failure", "continueOnFailure"),
    )

    @field_validator("preferred_path", "fallback_path", mode="before")
    @classmethod
    def _accept_legacy_path_names(cls, value: Any) -> Any:
        return _normalize_path_value(value)

    @model_validator(mode="after")
    def _check_paths(self) -> "Step":
        if not self.name:
            self.name = self.instruction_text[:60] or "unnamed step"
        if (
            self.fallback_path is not FallbackPath.NONE
            and self.preferred_path is not None
            and self.fallback_path.value == self.preferred_path.value
        ):
            raise ValueError(
                f"Step '{self.name}': fallback path must differ from preferred path"
            )
        return self

    @property
    def is_authentication_step(self) -> bool:
        """Whether the step name looks like a login/authentication step."""
        name = self.name.lower()
        return any(keyword in name for keyword in AUTH_STEP_KEYWORDS)

    def fallback_for(self, primary: ExecutionPath) -> ExecutionPath | None:
        """Resolve the fallback path for a given primary path."""
        fallback = self.fallback_path.as_execution_path()
        if fallback is None or fallback == primary:
            return None
        return fallback


class IntentSpec(BaseModel):
    """An ordered, named automation unit."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str = Field(..., description="Flow name")
    description: str = Field(default="")
    start_url: Optional[str] = Field(
        None, validation_alias=AliasChoices("start_url", "startUrl", "url")
    )
    params: list[str] = Field(default_factory=list, description="Declared variable names")
    steps: list[Step] = Field(..., description="Ordered list of steps")
    validation_steps: list[Step] = Field(
        default_factory=list,
        validation_alias=AliasChoices("validation_steps", "validationSteps"),
        description="Informational checks run after the main loop",
    )

    @classmethod
    def load(cls, path: Path | str) -> "IntentSpec":
        """Load an intent spec from a JSON file.

        Args:
            path: Path to the JSON file

        Returns:
            Parsed intent spec
        """
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls.model_validate(data)


VARIABLE_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def substitute_variables(text: Optional[str], variables: dict[str, str]) -> Optional[str]:
    """Replace {{VAR}} tokens with run-time values.

    Unknown tokens are left verbatim.
    """
    if not text:
        return text

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key in variables:
            return str(variables[key])
        return match.group(0)

    return VARIABLE_PATTERN.sub(_replace, text)


def substitute_step(step: Step, variables: dict[str, str]) -> Step:
    """Return a copy of the step with variables substituted."""
    return step.model_copy(
        update={
            "value": substitute_variables(step.value, variables),
            "snippet_code": substitute_variables(step.snippet_code, variables),
            "instruction_text": substitute_variables(step.instruction_text, variables),
        }
    )


class ExecutionOutcome(BaseModel):
    """Result returned by an executor capability."""

    success: bool = Field(..., description="Whether execution succeeded")
    error: Optional[str] = Field(None, description="Error message on failure")
    screenshots: list[str] = Field(default_factory=list)

    @classmethod
    def failed(cls, error: str) -> "ExecutionOutcome":
        return cls(success=False, error=error)


class StepExecutionResult(BaseModel):
    """Outcome of running one step."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(..., description="Position of the step in the spec, -1 for run setup")
    name: str
    path_used: ExecutionPath
    fallback_occurred: bool = False
    success: bool
    duration_ms: int = 0
    error: Optional[str] = None
    recovered: bool = Field(
        default=False, description="Success came from the recovery loop"
    )


class ExecutionReport(BaseModel):
    """Aggregate over a full run."""

    execution_id: str
    steps: list[StepExecutionResult] = Field(default_factory=list)
    ai_usage_count: int = 0
    snippet_usage_count: int = 0
    fallback_count: int = 0
    overall_success: bool = True
    total_duration_ms: int = 0
    screenshots: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    cancelled: bool = False

    def add_step(self, result: StepExecutionResult) -> None:
        """Append a step result and update usage counters."""
        self.steps.append(result)
        if result.path_used is ExecutionPath.REASONING:
            self.ai_usage_count += 1
        else:
            self.snippet_usage_count += 1
        if result.fallback_occurred:
            self.fallback_count += 1

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)


class ErrorType(str, Enum):
    """Taxonomy of step failures."""

    SELECTOR = "selector"
    NETWORK = "network"
    TIMEOUT = "timeout"
    VALIDATION = "validation"
    PERMISSION = "permission"
    UNKNOWN = "unknown"


class Severity(str, Enum):
    """Severity of a classified failure."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryActionKind(str, Enum):
    """Remediation actions the recovery generator can propose."""

    RETRY = "retry"
    WAIT = "wait"
    USE_ALTERNATE_PATH = "use_alternate_path"
    ALTERNATE_SELECTOR = "alternate_selector"
    REFRESH = "refresh"
    NAVIGATE_BACK = "navigate_back"
    SKIP = "skip"


class RecoveryAction(BaseModel):
    """A candidate remediation for a failed step."""

    kind: RecoveryActionKind
    confidence: float = Field(..., ge=0.0, le=1.0)
    description: str
    implementation: Optional[str] = Field(
        None, description="Code or concrete parameter that carries out the action"
    )


class PageContext(BaseModel):
    """Read-only snapshot of the page at failure time."""

    url: str = "unknown"
    title: str = "unknown"
    has_dialog: Optional[bool] = None
    has_errors: Optional[bool] = None
    network_status: Optional[str] = None


class AlternativeApproach(BaseModel):
    """AI-suggested alternative code for a failed step."""

    approach: str
    code: str
    confidence: float = Field(..., ge=0.0, le=1.0)


class ErrorAnalysis(BaseModel):
    """Full analysis of one failure."""

    error_type: ErrorType
    severity: Severity
    is_recoverable: bool
    root_cause: str
    suggested_actions: list[RecoveryAction] = Field(default_factory=list)
    page_context: PageContext = Field(default_factory=PageContext)
    alternative_approaches: list[AlternativeApproach] = Field(default_factory=list)

    @property
    def top_action(self) -> Optional[RecoveryAction]:
        return self.suggested_actions[0] if self.suggested_actions else None


class Stability(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Visibility(str, Enum):
    VISIBLE = "visible"
    PARTIAL = "partial"
    HIDDEN = "hidden"


class Complexity(str, Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


class DomStability(str, Enum):
    STABLE = "stable"
    CHANGING = "changing"
    DYNAMIC = "dynamic"


class DecisionSignals(BaseModel):
    """Environmental signals used to choose an execution path."""

    is_ci_environment: bool = False
    selector_stability: Stability = Stability.MEDIUM
    element_visibility: Visibility = Visibility.VISIBLE
    page_load_time_ms: int = 0
    previous_step_success: bool = True
    step_complexity: Complexity = Complexity.MEDIUM
    dom_stability: DomStability = DomStability.STABLE
    network_latency_ms: int = 0
    current_attempt: int = 1
    max_attempts: int = 3


class DecisionSource(str, Enum):
    REMOTE = "remote"
    RULES = "rules"


class PathDecision(BaseModel):
    """Outcome of the path decision function."""

    choice: ExecutionPath
    confidence: float = Field(..., ge=0.0, le=1.0)
    rationale: str
    source: DecisionSource = DecisionSource.RULES
