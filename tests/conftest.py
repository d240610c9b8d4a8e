"""Shared pytest fixtures for flowpilot tests."""

import math
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from flowpilot.core.config import Config
from flowpilot.core.types import ExecutionOutcome
from flowpilot.solutions import SolutionStore


@pytest.fixture
def temp_screenshots_dir(tmp_path: Path) -> Path:
    """Create a temporary directory for screenshots.

    Args:
        tmp_path: pytest's built-in temporary directory fixture

    Returns:
        Path to temporary screenshots directory
    """
    screenshots_dir = tmp_path / "screenshots"
    screenshots_dir.mkdir(parents=True, exist_ok=True)
    return screenshots_dir


@pytest.fixture
def temp_solutions_dir(tmp_path: Path) -> Path:
    """Create a temporary directory for the solution store.

    Args:
        tmp_path: pytest's built-in temporary directory fixture

    Returns:
        Path to temporary solution store directory
    """
    solutions_dir = tmp_path / "solutions"
    solutions_dir.mkdir(parents=True, exist_ok=True)
    return solutions_dir


@pytest.fixture
def test_config(temp_screenshots_dir: Path, temp_solutions_dir: Path) -> Config:
    """Create a test configuration with temporary directories.

    Args:
        temp_screenshots_dir: Temporary screenshots directory
        temp_solutions_dir: Temporary solution store directory

    Returns:
        Config instance for testing
    """
    return Config(
        anthropic_api_key="test-api-key",
        screenshots_dir=temp_screenshots_dir,
        solutions_persist_dir=temp_solutions_dir,
        judge_timeout=1.0,
        step_timeout=2.0,
        is_ci=False,
        headless=True,
        viewport_width=1280,
        viewport_height=720,
        recovery_wait_seconds=0.0,
    )


@pytest.fixture
def mock_page() -> AsyncMock:
    """Create a mock Playwright Page object.

    Returns:
        AsyncMock configured to simulate Playwright Page
    """
    page = AsyncMock()
    page.url = "https://example.com/form"
    page.title = AsyncMock(return_value="Example Form")
    page.screenshot = AsyncMock()
    page.wait_for_load_state = AsyncMock()
    return page


@pytest.fixture
def mock_snippet_executor() -> MagicMock:
    """Create a snippet executor that always succeeds.

    Returns:
        MagicMock with an async ``execute``
    """
    executor = MagicMock()
    executor.execute = AsyncMock(return_value=ExecutionOutcome(success=True))
    return executor


@pytest.fixture
def mock_reasoning_executor() -> MagicMock:
    """Create a reasoning executor that always succeeds.

    Returns:
        MagicMock with an async ``execute``
    """
    executor = MagicMock()
    executor.execute = AsyncMock(return_value=ExecutionOutcome(success=True))
    return executor


@pytest.fixture
def mock_judge() -> MagicMock:
    """Create a judgment service mock.

    Returns:
        MagicMock with an async ``ask``
    """
    judge = MagicMock()
    judge.ask = AsyncMock(return_value="")
    return judge


class FakeVector:
    def __init__(self, values: list[float]) -> None:
        self._values = values

    def tolist(self) -> list[float]:
        return list(self._values)


class FakeEncoder:
    """Keyword-count embeddings so related error messages land close together."""

    VOCABULARY = (
        "timeout", "waiting", "selector", "element", "click", "button",
        "network", "submit", "login", "visible", "invalid", "denied",
    )

    def encode(self, text: str) -> FakeVector:
        lowered = text.lower()
        return FakeVector([float(lowered.count(word)) for word in self.VOCABULARY])


def _matches(metadata: dict[str, Any], where: dict[str, Any] | None) -> bool:
    if not where:
        return True
    if "$and" in where:
        return all(_matches(metadata, clause) for clause in where["$and"])
    return all(metadata.get(key) == value for key, value in where.items())


def _cosine_distance(a: list[float], b: list[float]) -> float:
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))
    if norm_a == 0 or norm_b == 0:
        return 1.0
    return 1 - sum(x * y for x, y in zip(a, b)) / (norm_a * norm_b)


class FakeCollection:
    """In-memory stand-in for a chromadb collection in cosine space."""

    def __init__(self) -> None:
        self.records: dict[str, dict[str, Any]] = {}

    def count(self) -> int:
        return len(self.records)

    def upsert(self, ids, embeddings, documents, metadatas) -> None:
        for record_id, embedding, document, metadata in zip(ids, embeddings, documents, metadatas):
            self.records[record_id] = {
                "embedding": embedding,
                "document": document,
                "metadata": metadata,
            }

    def get(self, ids=None, where=None, include=None) -> dict[str, list]:
        items = [
            (record_id, record)
            for record_id, record in self.records.items()
            if (ids is None or record_id in ids) and _matches(record["metadata"], where)
        ]
        return {
            "ids": [record_id for record_id, _ in items],
            "documents": [record["document"] for _, record in items],
            "metadatas": [record["metadata"] for _, record in items],
        }

    def query(self, query_embeddings, n_results, where=None, include=None) -> dict[str, list]:
        query = query_embeddings[0]
        scored = sorted(
            (
                (record_id, record, _cosine_distance(query, record["embedding"]))
                for record_id, record in self.records.items()
                if _matches(record["metadata"], where)
            ),
            key=lambda item: item[2],
        )[:n_results]
        return {
            "ids": [[record_id for record_id, _, _ in scored]],
            "documents": [[record["document"] for _, record, _ in scored]],
            "distances": [[distance for _, _, distance in scored]],
        }


@pytest.fixture
def fake_collection() -> FakeCollection:
    return FakeCollection()


@pytest.fixture
def solution_store(test_config: Config, fake_collection: FakeCollection) -> SolutionStore:
    """Create a SolutionStore backed by the in-memory collection.

    Returns:
        SolutionStore with a fake chromadb client and encoder
    """
    client = MagicMock()
    client.get_or_create_collection.return_value = fake_collection
    return SolutionStore(test_config, client=client, encoder=FakeEncoder())


@pytest.fixture
def solution_store_factory(test_config: Config):
    """Build independent in-memory solution stores.

    Returns:
        Callable returning a fresh SolutionStore per call
    """

    def factory() -> SolutionStore:
        client = MagicMock()
        client.get_or_create_collection.return_value = FakeCollection()
        return SolutionStore(test_config, client=client, encoder=FakeEncoder())

    return factory
