"""Solution Store - Persistent, self-improving library of error remediations."""

import asyncio
import getpass
import re
import uuid
import weakref
from collections import Counter
from datetime import datetime, timezone
from typing import Any

import chromadb
import structlog
from pydantic import ValidationError
from sentence_transformers import SentenceTransformer

from flowpilot.core.config import Config
from flowpilot.core.errors import SnapshotFormatError, SolutionNotFoundError
from flowpilot.solutions.models import (
    CategoryCount,
    ErrorContext,
    ImportResult,
    MatchStage,
    RankedSolution,
    RiskLevel,
    Solution,
    SolutionCandidate,
    SolutionLookup,
    SolutionSnapshot,
    SnapshotMetadata,
    SnapshotStatistics,
    Urgency,
    UsageStatistics,
    utcnow,
)
from flowpilot.solutions.signature import error_signature


logger = structlog.get_logger()


COLLECTION_NAME = "solutions"
SNAPSHOT_VERSION = "1.0"

RELEVANCE_WEIGHTS = {
    "success_rate": 0.3,
    "confidence": 0.25,
    "recency": 0.15,
    "performance": 0.15,
    "usage": 0.15,
}
RECENCY_HORIZON_DAYS = 365
PERFORMANCE_HORIZON_MS = 60_000
USAGE_SATURATION = 20
SIMILARITY_BONUS = 0.5
DEFAULT_DURATION_MS = 5000

TRUST_LEVELS: dict[str, tuple[float, RiskLevel]] = {
    "low": (0.1, RiskLevel.HIGH),
    "medium": (0.5, RiskLevel.MEDIUM),
    "high": (0.8, RiskLevel.LOW),
}

EVOLUTION_GUARD = 'await page.wait_for_load_state("domcontentloaded")'

EMAIL_PATTERN = re.compile(r"[\w.+-]+@[\w-]+\.[\w.]+")


def infer_strategy(error_message: str) -> str:
    """Strategy name for a remediation of the given error."""
    message = error_message.lower()
    if "timeout" in message:
        return "wait_strategy"
    if "not found" in message:
        return "element_location"
    if "click" in message:
        return "interaction_retry"
    if "network" in message:
        return "network_retry"
    return "generic_retry"


def assess_risk(solution: Solution, urgency: Urgency) -> str:
    """Human-readable risk note for a ranked solution."""
    if solution.risk_level is RiskLevel.HIGH and urgency is Urgency.CRITICAL:
        return "High risk solution for critical issue - use with extreme caution"
    if solution.risk_level is RiskLevel.HIGH:
        return "High risk solution - thoroughly test before deployment"
    if solution.actual_success_rate < 0.5:
        return "Low success rate - consider as last resort"
    if solution.risk_level is RiskLevel.LOW and solution.actual_success_rate > 0.8:
        return "Low risk, high success rate - recommended"
    return "Moderate risk - standard precautions apply"


def _tags_for(context: ErrorContext) -> list[str]:
    tags = []
    if context.selector:
        tags.append("selector-based")
    if context.value:
        tags.append("input-related")
    if context.retry_count > 0:
        tags.append("retry-needed")
    tags.append(f"category-{context.error_type.value}")
    if context.step_name:
        slug = re.sub(r"[^a-z0-9]+", "-", context.step_name.lower()).strip("-")
        if slug:
            tags.append(f"step-{slug}")
    return tags


def _categories_for(context: ErrorContext) -> list[str]:
    message = context.error_message.lower()
    categories = [context.error_type.value]
    if context.selector:
        categories.append("ui-interaction")
    if "timeout" in message:
        categories.append("timing")
    if "network" in message:
        categories.append("network")
    return list(dict.fromkeys(categories))


class SolutionStore:
    """Vector database of remediations keyed by error signature.

    Lookups are staged: exact signature first, then embedding similarity,
    then error category. Outcomes fed back through ``record_outcome`` drive
    the success-rate statistics, deprecation and evolution.
    """

    def __init__(
        self,
        config: Config | None = None,
        client: Any | None = None,
        encoder: Any | None = None,
    ) -> None:
        """Initialize the solution store.

        Args:
            config: Application configuration
            client: chromadb client; a PersistentClient by default
            encoder: Sentence embedding model; all-MiniLM-L6-v2 by default
        """
        self.config = config or Config()

        self._encoder = encoder or SentenceTransformer("all-MiniLM-L6-v2")

        persist_dir = str(self.config.solutions_persist_dir)
        self._client = client or chromadb.PersistentClient(path=persist_dir)
        self._collection = self._client.get_or_create_collection(
            name=COLLECTION_NAME,
            metadata={"hnsw:space": "cosine"},
        )

        # Entries vanish once no update holds the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

        logger.info(
            "solution_store_initialized",
            persist_dir=persist_dir,
            solution_count=self._collection.count(),
        )

    @property
    def count(self) -> int:
        return self._collection.count()

    # ----------------------------------------------------------------- lookup

    async def find_solutions(
        self,
        error_context: ErrorContext,
        urgency: Urgency = Urgency.MEDIUM,
        time_budget_ms: int | None = None,
        exclude_ids: set[str] | None = None,
    ) -> SolutionLookup:
        """Find ranked solutions for an error.

        Args:
            error_context: The failure to remediate
            urgency: How urgent the failure is
            time_budget_ms: Drop solutions expected to take longer than this
            exclude_ids: Solution ids that must not be returned

        Returns:
            SolutionLookup with the stage that produced the results
        """
        exclude_ids = exclude_ids or set()
        signature = error_signature(error_context.error_message)

        stages = (
            (MatchStage.EXACT, lambda: self._exact_matches(signature)),
            (MatchStage.FUZZY, lambda: self._fuzzy_matches(error_context.error_message)),
            (MatchStage.CATEGORY, lambda: self._category_matches(error_context.error_type.value)),
        )

        for stage, search in stages:
            if self._collection.count() == 0:
                break
            matches = [(s, sim) for s, sim in search() if s.id not in exclude_ids]
            ranked = self._rank(matches, stage, urgency, time_budget_ms)
            if not ranked:
                logger.debug("solution_stage_empty", stage=stage.value, signature=signature)
                continue

            best_confidence = max(r.solution.effective_confidence for r in ranked)
            fallback_required = (
                urgency is Urgency.CRITICAL
                and best_confidence < self.config.solution_high_confidence
            )
            logger.info(
                "solutions_found",
                stage=stage.value,
                count=len(ranked),
                top=ranked[0].solution.id,
                fallback_required=fallback_required,
            )
            return SolutionLookup(
                solutions=ranked,
                fallback_required=fallback_required,
                search_stage=stage,
            )

        logger.info("no_solution_found", signature=signature, urgency=urgency.value)
        return SolutionLookup(fallback_required=True, search_stage=MatchStage.NONE)

    def _exact_matches(self, signature: str) -> list[tuple[Solution, float]]:
        results = self._collection.get(
            where={"$and": [{"error_signature": signature}, {"deprecated": False}]},
            include=["documents"],
        )
        return [(Solution.model_validate_json(doc), 1.0) for doc in results["documents"]]

    def _fuzzy_matches(self, error_message: str) -> list[tuple[Solution, float]]:
        n_results = min(self._collection.count(), self.config.solution_max_results * 2)
        results = self._collection.query(
            query_embeddings=[self._embed(error_message)],
            n_results=n_results,
            where={"deprecated": False},
            include=["documents", "distances"],
        )
        if not results["documents"] or not results["documents"][0]:
            return []

        matches = []
        for doc, distance in zip(results["documents"][0], results["distances"][0]):
            # Cosine distance: similarity = 1 - distance
            similarity = 1 - distance
            if similarity >= self.config.solution_fuzzy_threshold:
                matches.append((Solution.model_validate_json(doc), similarity))
        return matches

    def _category_matches(self, category: str) -> list[tuple[Solution, float]]:
        results = self._collection.get(
            where={"$and": [{"category": category}, {"deprecated": False}]},
            include=["documents"],
        )
        return [(Solution.model_validate_json(doc), 0.0) for doc in results["documents"]]

    def _rank(
        self,
        matches: list[tuple[Solution, float]],
        stage: MatchStage,
        urgency: Urgency,
        time_budget_ms: int | None,
    ) -> list[RankedSolution]:
        now = datetime.now(timezone.utc)
        ranked = []
        for solution, similarity in matches:
            if solution.deprecated:
                continue
            estimated = self.estimate_duration(solution)
            if time_budget_ms is not None and estimated > time_budget_ms:
                continue
            relevance = self.relevance(solution, similarity, urgency, now)
            if relevance < self.config.solution_min_relevance:
                continue
            ranked.append(
                RankedSolution(
                    solution=solution,
                    relevance=relevance,
                    similarity=similarity,
                    estimated_duration_ms=estimated,
                    risk_assessment=assess_risk(solution, urgency),
                    match_stage=stage,
                )
            )

        ranked.sort(key=lambda r: r.relevance, reverse=True)
        return ranked[: self.config.solution_max_results]

    @staticmethod
    def estimate_duration(solution: Solution) -> int:
        average = solution.usage_statistics.average_duration_ms
        return int(average) if average > 0 else DEFAULT_DURATION_MS

    @staticmethod
    def relevance(
        solution: Solution,
        similarity: float,
        urgency: Urgency,
        now: datetime | None = None,
    ) -> float:
        """Weighted relevance of a solution for the current failure.

        Args:
            solution: Candidate solution
            similarity: Match similarity in [0, 1]; 0 for category matches
            urgency: Failure urgency
            now: Reference time for recency

        Returns:
            Relevance score, higher is better
        """
        now = now or datetime.now(timezone.utc)
        stats = solution.usage_statistics

        last_used = stats.last_used
        if last_used.tzinfo is None:
            last_used = last_used.replace(tzinfo=timezone.utc)
        days_since = max(0.0, (now - last_used).total_seconds() / 86400)
        recency = max(0.0, 1 - days_since / RECENCY_HORIZON_DAYS)

        if stats.average_duration_ms > 0:
            performance = max(0.0, 1 - stats.average_duration_ms / PERFORMANCE_HORIZON_MS)
        else:
            performance = 0.5

        usage = min(1.0, stats.total_uses / USAGE_SATURATION)

        score = (
            solution.actual_success_rate * RELEVANCE_WEIGHTS["success_rate"]
            + solution.confidence * RELEVANCE_WEIGHTS["confidence"]
            + recency * RELEVANCE_WEIGHTS["recency"]
            + performance * RELEVANCE_WEIGHTS["performance"]
            + usage * RELEVANCE_WEIGHTS["usage"]
        )
        score *= 1 + similarity * SIMILARITY_BONUS

        if urgency is Urgency.CRITICAL:
            if solution.risk_level is RiskLevel.LOW:
                score *= 1.2
            elif solution.risk_level is RiskLevel.HIGH:
                score *= 0.8

        return score

    # --------------------------------------------------------------- feedback

    async def record_outcome(
        self,
        solution_id: str,
        success: bool,
        duration_ms: int,
        improvements: str | None = None,
    ) -> Solution:
        """Record the outcome of applying a solution.

        Args:
            solution_id: Id of the applied solution
            success: Whether it resolved the failure
            duration_ms: How long it took
            improvements: Optional note kept on any evolved solution

        Returns:
            The updated solution as stored

        Raises:
            SolutionNotFoundError: If no solution has this id
        """
        lock = self._locks.get(solution_id)
        if lock is None:
            lock = self._locks[solution_id] = asyncio.Lock()
        async with lock:
            solution = self.get(solution_id)
            stats = solution.usage_statistics

            stats.total_uses += 1
            if success:
                stats.success_count += 1
                stats.consecutive_failures = 0
            else:
                stats.failure_count += 1
                stats.consecutive_failures += 1

            n = stats.total_uses
            solution.actual_success_rate = (
                solution.actual_success_rate * (n - 1) + (1.0 if success else 0.0)
            ) / n
            stats.average_duration_ms = (stats.average_duration_ms * (n - 1) + duration_ms) / n
            stats.last_used = utcnow()

            if (
                not solution.deprecated
                and stats.total_uses >= self.config.deprecation_min_uses
                and solution.actual_success_rate <= self.config.deprecation_threshold
            ):
                solution.deprecated = True
                solution.deprecated_reason = (
                    f"Success rate {solution.actual_success_rate:.0%} "
                    f"after {stats.total_uses} uses"
                )
                logger.warning(
                    "solution_deprecated",
                    solution_id=solution_id,
                    success_rate=solution.actual_success_rate,
                    uses=stats.total_uses,
                )

            if stats.consecutive_failures >= self.config.evolution_failure_streak:
                evolved = self._evolve(solution, improvements)
                self._save(evolved)
                solution.confidence = solution.confidence * 0.5
                stats.consecutive_failures = 0
                logger.info(
                    "solution_evolved",
                    solution_id=solution_id,
                    evolved_id=evolved.id,
                )

            self._save(solution)
            logger.info(
                "solution_outcome_recorded",
                solution_id=solution_id,
                success=success,
                success_rate=solution.actual_success_rate,
                uses=stats.total_uses,
            )
            return self.get(solution_id)

    def _evolve(self, solution: Solution, improvements: str | None) -> Solution:
        reason = improvements or "Evolved based on feedback"
        code = f"# Evolved from {solution.id}: {reason}\n{EVOLUTION_GUARD}\n{solution.code}"
        confidence = min(1.0, solution.confidence + 0.05)
        return Solution(
            id=str(uuid.uuid4()),
            error_pattern=solution.error_pattern,
            error_signature=solution.error_signature,
            strategy=solution.strategy,
            code=code,
            explanation=f"{solution.explanation} ({reason})".strip(),
            confidence=confidence,
            actual_success_rate=confidence,
            risk_level=solution.risk_level,
            tags=[*solution.tags, "evolved"],
            categories=list(solution.categories),
            evolved_from=solution.id,
        )

    async def store_new_solution(
        self,
        candidate: SolutionCandidate,
        error_context: ErrorContext,
    ) -> Solution:
        """Store a remediation that just worked.

        Args:
            candidate: The remediation
            error_context: The failure it remediated

        Returns:
            The stored solution, or the existing one with the same
            signature and code
        """
        signature = error_signature(error_context.error_message)

        existing = self._collection.get(
            where={"error_signature": signature},
            include=["documents"],
        )
        for doc in existing["documents"]:
            solution = Solution.model_validate_json(doc)
            if solution.code.strip() == candidate.code.strip():
                logger.debug("solution_already_stored", solution_id=solution.id)
                return solution

        stats = UsageStatistics()
        success_rate = 0.0
        if candidate.succeeded is not None:
            stats.total_uses = 1
            if candidate.succeeded:
                stats.success_count = 1
                success_rate = 1.0
            else:
                stats.failure_count = 1
                stats.consecutive_failures = 1
            stats.average_duration_ms = float(candidate.duration_ms or 0)

        solution = Solution(
            id=str(uuid.uuid4()),
            error_pattern=error_context.error_message,
            error_signature=signature,
            strategy=candidate.strategy or infer_strategy(error_context.error_message),
            code=candidate.code,
            explanation=candidate.explanation,
            confidence=candidate.confidence,
            actual_success_rate=success_rate,
            risk_level=candidate.risk_level,
            tags=_tags_for(error_context),
            categories=_categories_for(error_context),
            usage_statistics=stats,
        )
        self._save(solution)

        logger.info(
            "solution_stored",
            solution_id=solution.id,
            signature=signature,
            strategy=solution.strategy,
        )
        return solution

    # ---------------------------------------------------------------- storage

    def get(self, solution_id: str) -> Solution:
        results = self._collection.get(ids=[solution_id], include=["documents"])
        if not results["documents"]:
            raise SolutionNotFoundError(solution_id)
        return Solution.model_validate_json(results["documents"][0])

    def all_solutions(self, include_deprecated: bool = True) -> list[Solution]:
        if self._collection.count() == 0:
            return []
        results = self._collection.get(include=["documents"])
        solutions = [Solution.model_validate_json(doc) for doc in results["documents"]]
        if not include_deprecated:
            solutions = [s for s in solutions if not s.deprecated]
        return solutions

    def _embed(self, text: str) -> list[float]:
        return self._encoder.encode(text).tolist()

    def _save(self, solution: Solution) -> None:
        self._collection.upsert(
            ids=[solution.id],
            embeddings=[self._embed(solution.error_pattern)],
            documents=[solution.model_dump_json()],
            metadatas=[
                {
                    "error_signature": solution.error_signature,
                    "category": solution.categories[0] if solution.categories else "unknown",
                    "strategy": solution.strategy,
                    "deprecated": solution.deprecated,
                }
            ],
        )

    # ---------------------------------------------------------------- sharing

    async def export_snapshot(
        self,
        min_success_rate: float = 0.0,
        anonymize: bool = False,
        include_deprecated: bool = False,
    ) -> SolutionSnapshot:
        """Export solutions as a versioned snapshot.

        Args:
            min_success_rate: Only export solutions at or above this rate
            anonymize: Strip exporter identity and email addresses
            include_deprecated: Also export deprecated solutions

        Returns:
            SolutionSnapshot ready for ``model_dump_json``
        """
        solutions = [
            s
            for s in self.all_solutions(include_deprecated=include_deprecated)
            if s.actual_success_rate >= min_success_rate
        ]
        if anonymize:
            solutions = [
                s.model_copy(
                    update={
                        "explanation": EMAIL_PATTERN.sub("<redacted>", s.explanation),
                        "error_pattern": EMAIL_PATTERN.sub("<redacted>", s.error_pattern),
                    }
                )
                for s in solutions
            ]

        snapshot = SolutionSnapshot(
            version=SNAPSHOT_VERSION,
            metadata=SnapshotMetadata(
                exported_by="anonymous" if anonymize else getpass.getuser(),
                anonymized=anonymize,
                solution_count=len(solutions),
            ),
            solutions=solutions,
            statistics=self._snapshot_statistics(solutions),
        )
        logger.info("solutions_exported", count=len(solutions), anonymized=anonymize)
        return snapshot

    async def import_snapshot(
        self,
        data: SolutionSnapshot | dict | str,
        overwrite: bool = False,
        trust_level: str = "medium",
    ) -> ImportResult:
        """Import solutions from a snapshot.

        Args:
            data: Snapshot model, parsed JSON dict or raw JSON text
            overwrite: Replace solutions whose id already exists
            trust_level: "low", "medium" or "high"; filters by success
                rate and risk

        Returns:
            ImportResult with imported/skipped counts and per-solution errors

        Raises:
            SnapshotFormatError: If the snapshot cannot be parsed or its
                version is unsupported
            ValueError: If the trust level is unknown
        """
        if trust_level not in TRUST_LEVELS:
            raise ValueError(f"Unknown trust level: {trust_level}")

        try:
            if isinstance(data, SolutionSnapshot):
                snapshot = data
            elif isinstance(data, str):
                snapshot = SolutionSnapshot.model_validate_json(data)
            else:
                snapshot = SolutionSnapshot.model_validate(data)
        except ValidationError as e:
            raise SnapshotFormatError(f"Invalid solution snapshot: {e}") from e

        if snapshot.version.split(".")[0] != SNAPSHOT_VERSION.split(".")[0]:
            raise SnapshotFormatError(f"Unsupported snapshot version: {snapshot.version}")

        min_rate, max_risk = TRUST_LEVELS[trust_level]
        result = ImportResult()

        for solution in snapshot.solutions:
            if solution.actual_success_rate < min_rate or solution.risk_level.rank > max_risk.rank:
                result.skipped += 1
                continue

            exists = bool(self._collection.get(ids=[solution.id], include=[])["ids"])
            if exists and not overwrite:
                result.skipped += 1
                continue

            try:
                self._save(solution)
            except Exception as e:
                logger.error("solution_import_failed", solution_id=solution.id, error=str(e))
                result.errors.append(f"{solution.id}: {e}")
                continue
            result.imported += 1

        logger.info(
            "solutions_imported",
            imported=result.imported,
            skipped=result.skipped,
            errors=len(result.errors),
            trust_level=trust_level,
        )
        return result

    @staticmethod
    def _snapshot_statistics(solutions: list[Solution]) -> SnapshotStatistics:
        if not solutions:
            return SnapshotStatistics()
        counts = Counter(c for s in solutions for c in s.categories)
        return SnapshotStatistics(
            total_solutions=len(solutions),
            average_success_rate=sum(s.actual_success_rate for s in solutions) / len(solutions),
            top_categories=[
                CategoryCount(category=category, count=count)
                for category, count in counts.most_common(5)
            ],
        )

    async def statistics(self) -> dict[str, Any]:
        """Summary statistics over the whole store."""
        solutions = self.all_solutions()
        active = [s for s in solutions if not s.deprecated]
        summary = self._snapshot_statistics(solutions)
        return {
            "total_solutions": len(solutions),
            "active_solutions": len(active),
            "deprecated_solutions": len(solutions) - len(active),
            "evolved_solutions": sum(1 for s in solutions if s.evolved_from),
            "average_success_rate": summary.average_success_rate,
            "top_categories": [c.model_dump() for c in summary.top_categories],
        }
