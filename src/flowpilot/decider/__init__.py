"""Path decider - Adaptive choice between snippet and reasoning execution."""

from flowpilot.decider.decider import (
    SCORING_RULES,
    PathDecider,
    ScoringRule,
    parse_decision,
    rule_based_decision,
    score_signals,
)

__all__ = [
    "PathDecider",
    "SCORING_RULES",
    "ScoringRule",
    "parse_decision",
    "rule_based_decision",
    "score_signals",
]
