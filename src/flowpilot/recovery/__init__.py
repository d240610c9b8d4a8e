"""Recovery module - Error classification, analysis and recovery actions."""

from .analyzer import ErrorAnalyzer
from .classifier import (
    CLASSIFICATION_RULES,
    Classification,
    ErrorClassifier,
    classify,
    determine_severity,
    is_recoverable,
)
from .generator import ACTION_TABLE, RecoveryActionGenerator
from .history import ErrorHistory, ErrorHistoryEntry

__all__ = [
    "ACTION_TABLE",
    "CLASSIFICATION_RULES",
    "Classification",
    "ErrorAnalyzer",
    "ErrorClassifier",
    "ErrorHistory",
    "ErrorHistoryEntry",
    "RecoveryActionGenerator",
    "classify",
    "determine_severity",
    "is_recoverable",
]
