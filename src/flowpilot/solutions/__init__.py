"""Solution store - Reusable remediations with feedback-driven ranking."""

from flowpilot.solutions.models import (
    ErrorContext,
    ImportResult,
    MatchStage,
    RankedSolution,
    RiskLevel,
    Solution,
    SolutionCandidate,
    SolutionLookup,
    SolutionSnapshot,
    Urgency,
    UsageStatistics,
)
from flowpilot.solutions.signature import error_signature, normalize_error
from flowpilot.solutions.store import SolutionStore, assess_risk, infer_strategy

__all__ = [
    "ErrorContext",
    "ImportResult",
    "MatchStage",
    "RankedSolution",
    "RiskLevel",
    "Solution",
    "SolutionCandidate",
    "SolutionLookup",
    "SolutionSnapshot",
    "SolutionStore",
    "Urgency",
    "UsageStatistics",
    "assess_risk",
    "error_signature",
    "infer_strategy",
    "normalize_error",
]
