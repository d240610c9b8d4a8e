"""Core module - Shared types, interfaces, and configuration."""

from .types import (
    ErrorAnalysis,
    ErrorType,
    ExecutionOutcome,
    ExecutionPath,
    ExecutionReport,
    FallbackPath,
    IntentSpec,
    RecoveryAction,
    RecoveryActionKind,
    Severity,
    Step,
    StepExecutionResult,
)
from .config import Config
from .errors import ConfigurationError, FlowpilotError

__all__ = [
    "ErrorAnalysis",
    "ErrorType",
    "ExecutionOutcome",
    "ExecutionPath",
    "ExecutionReport",
    "FallbackPath",
    "IntentSpec",
    "RecoveryAction",
    "RecoveryActionKind",
    "Severity",
    "Step",
    "StepExecutionResult",
    "Config",
    "ConfigurationError",
    "FlowpilotError",
]
