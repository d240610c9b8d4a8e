"""Data models for the solution store."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from flowpilot.core.types import ErrorType, Severity


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return {"low": 1, "medium": 2, "high": 3}[self.value]


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def from_severity(cls, severity: Severity) -> "Urgency":
        return cls(severity.value)


class MatchStage(str, Enum):
    """Lookup stage that produced a result."""

    EXACT = "exact_signature"
    FUZZY = "fuzzy_similarity"
    CATEGORY = "category"
    NONE = "none"


class UsageStatistics(BaseModel):
    """How often a solution was applied and how it went."""

    total_uses: int = 0
    success_count: int = 0
    failure_count: int = 0
    consecutive_failures: int = 0
    average_duration_ms: float = 0.0
    first_used: datetime = Field(default_factory=utcnow)
    last_used: datetime = Field(default_factory=utcnow)


class Solution(BaseModel):
    """A durable, reusable remediation for a class of errors."""

    id: str
    error_pattern: str = Field(..., description="Original error message")
    error_signature: str = Field(..., description="Normalized hash of the error pattern")
    strategy: str
    code: str
    explanation: str = ""
    confidence: float = Field(..., ge=0.0, le=1.0)
    actual_success_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    risk_level: RiskLevel = RiskLevel.MEDIUM
    tags: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    usage_statistics: UsageStatistics = Field(default_factory=UsageStatistics)
    deprecated: bool = False
    deprecated_reason: Optional[str] = None
    evolved_from: Optional[str] = Field(None, description="Id of the solution this one was derived from")
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def effective_confidence(self) -> float:
        """Stated confidence blended with observed success once it has been used."""
        if self.usage_statistics.total_uses == 0:
            return self.confidence
        return (self.confidence + self.actual_success_rate) / 2


class ErrorContext(BaseModel):
    """The failure a solution is looked up or stored for."""

    error_message: str
    error_type: ErrorType = ErrorType.UNKNOWN
    step_name: Optional[str] = None
    selector: Optional[str] = None
    value: Optional[str] = None
    retry_count: int = 0
    url: Optional[str] = None


class SolutionCandidate(BaseModel):
    """A remediation that has not been stored yet."""

    code: str
    strategy: str
    explanation: str = ""
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    risk_level: RiskLevel = RiskLevel.MEDIUM
    succeeded: Optional[bool] = Field(
        None, description="Outcome of the use that produced this candidate"
    )
    duration_ms: Optional[int] = None


class RankedSolution(BaseModel):
    """A lookup hit with its ranking information."""

    solution: Solution
    relevance: float
    similarity: float = 0.0
    estimated_duration_ms: int
    risk_assessment: str
    match_stage: MatchStage


class SolutionLookup(BaseModel):
    """Result of a staged solution lookup."""

    solutions: list[RankedSolution] = Field(default_factory=list)
    fallback_required: bool = False
    search_stage: MatchStage = MatchStage.NONE


class CategoryCount(BaseModel):
    category: str
    count: int


class SnapshotMetadata(BaseModel):
    exported_at: datetime = Field(default_factory=utcnow)
    exported_by: str = "anonymous"
    anonymized: bool = False
    solution_count: int = 0


class SnapshotStatistics(BaseModel):
    total_solutions: int = 0
    average_success_rate: float = 0.0
    top_categories: list[CategoryCount] = Field(default_factory=list)


class SolutionSnapshot(BaseModel):
    """Versioned bundle for sharing solutions between store instances."""

    version: str = "1.0"
    metadata: SnapshotMetadata = Field(default_factory=SnapshotMetadata)
    solutions: list[Solution] = Field(default_factory=list)
    statistics: SnapshotStatistics = Field(default_factory=SnapshotStatistics)


class ImportResult(BaseModel):
    imported: int = 0
    skipped: int = 0
    errors: list[str] = Field(default_factory=list)
