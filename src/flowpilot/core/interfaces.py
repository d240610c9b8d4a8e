"""Capability interfaces consumed by the execution engine."""

from typing import Protocol, runtime_checkable

from .types import ExecutionOutcome, PageContext


@runtime_checkable
class SnippetExecutor(Protocol):
    """Runs deterministic, pre-authored automation code."""

    async def execute(
        self, code: str, variables: dict[str, str]
    ) -> ExecutionOutcome:
        """Execute a snippet.

        Args:
            code: Snippet source with variables already substituted
            variables: Run-time variables, available to the snippet

        Returns:
            ExecutionOutcome; a failed outcome if code is empty
        """
        ...


@runtime_checkable
class ReasoningExecutor(Protocol):
    """Carries out a natural-language instruction against the live page."""

    async def execute(
        self, instruction: str, variables: dict[str, str]
    ) -> ExecutionOutcome:
        """Execute an instruction.

        Args:
            instruction: Natural-language goal
            variables: Run-time variables

        Returns:
            ExecutionOutcome, optionally carrying screenshots
        """
        ...


@runtime_checkable
class JudgmentService(Protocol):
    """Remote natural-language judgment (decisions, alternatives, root causes)."""

    async def ask(
        self, prompt: str, *, max_tokens: int = 512, model: str | None = None
    ) -> str:
        """Send a prompt and return the raw text response."""
        ...


@runtime_checkable
class PageInspector(Protocol):
    """Read-only queries against the current page."""

    async def inspect(self) -> PageContext:
        """Return url, title, dialog/error flags and online status."""
        ...
