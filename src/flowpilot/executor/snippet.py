"""Snippet executor - Runs pre-authored Playwright code against the live page."""

import asyncio
import textwrap
from typing import Any, Awaitable, Callable

import structlog

from flowpilot.core.config import Config
from flowpilot.core.types import ExecutionOutcome


logger = structlog.get_logger()


SNIPPET_FUNCTION = "__flowpilot_snippet__"

SnippetFunction = Callable[[Any, dict[str, str]], Awaitable[Any]]


def compile_snippet(code: str) -> SnippetFunction:
    """Compile snippet source into an async function of (page, variables).

    The snippet is written as the body of a coroutine, so it may use
    ``await page.click(...)`` directly.

    Args:
        code: Snippet source

    Returns:
        The compiled coroutine function

    Raises:
        SyntaxError: If the snippet does not compile
    """
    body = textwrap.indent(textwrap.dedent(code).strip("\n"), "    ")
    source = f"async def {SNIPPET_FUNCTION}(page, variables):\n{body}\n    pass\n"
    namespace: dict[str, Any] = {}
    exec(compile(source, "<snippet>", "exec"), namespace)
    return namespace[SNIPPET_FUNCTION]


class PlaywrightSnippetExecutor:
    """Executes deterministic snippets with ``page`` and ``variables`` in scope."""

    def __init__(self, browser: Any, config: Config | None = None) -> None:
        """Initialize the snippet executor.

        Args:
            browser: Object exposing the current Playwright ``page``
            config: Application configuration
        """
        self.browser = browser
        self.config = config or Config()

    async def execute(
        self, code: str, variables: dict[str, str]
    ) -> ExecutionOutcome:
        """Execute a snippet.

        Args:
            code: Snippet source with variables already substituted
            variables: Run-time variables

        Returns:
            ExecutionOutcome describing success or the failure reason
        """
        if not code or not code.strip():
            return ExecutionOutcome.failed("No snippet provided")

        try:
            snippet = compile_snippet(code)
        except SyntaxError as e:
            logger.warning("snippet_compile_failed", error=str(e))
            return ExecutionOutcome.failed(f"Snippet compile error: {e}")

        try:
            await asyncio.wait_for(
                snippet(self.browser.page, dict(variables)),
                timeout=self.config.step_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("snippet_timed_out", timeout=self.config.step_timeout)
            return ExecutionOutcome.failed(
                f"Snippet timed out after {self.config.step_timeout}s"
            )
        except Exception as e:
            logger.warning("snippet_failed", error=str(e))
            return ExecutionOutcome.failed(str(e) or type(e).__name__)

        logger.info("snippet_executed", lines=len(code.splitlines()))
        return ExecutionOutcome(success=True)
