"""Reasoning executor - Turns a natural-language instruction into page actions."""

import asyncio
import re
from typing import Any

import structlog

from flowpilot.core.config import Config
from flowpilot.core.interfaces import JudgmentService, SnippetExecutor
from flowpilot.core.types import ExecutionOutcome
from flowpilot.judge import extract_json_object


logger = structlog.get_logger()


CODE_BLOCK = re.compile(r"```(?:python|py)?\s*\n([\s\S]*?)```")


class ClaudeReasoningExecutor:
    """Reasoning path backed by the judgment service.

    The model sees the instruction and the current page, answers with a
    Playwright snippet, and the snippet executor runs it.
    """

    def __init__(
        self,
        browser: Any,
        judge: JudgmentService,
        snippet_executor: SnippetExecutor,
        config: Config | None = None,
    ) -> None:
        """Initialize the reasoning executor.

        Args:
            browser: BrowserSession (page, inspect, page_text, capture_screenshot)
            judge: Judgment service used to interpret the instruction
            snippet_executor: Executor for the generated code
            config: Application configuration
        """
        self.browser = browser
        self.judge = judge
        self.snippet_executor = snippet_executor
        self.config = config or Config()

    async def execute(
        self, instruction: str, variables: dict[str, str]
    ) -> ExecutionOutcome:
        """Execute a natural-language instruction.

        Args:
            instruction: Goal for this step
            variables: Run-time variables

        Returns:
            ExecutionOutcome with a screenshot on success
        """
        if not instruction or not instruction.strip():
            return ExecutionOutcome.failed("No reasoning instruction provided")
        if not self.config.anthropic_api_key:
            return ExecutionOutcome.failed(
                "Reasoning service not configured: ANTHROPIC_API_KEY is missing"
            )

        page_context = await self.browser.inspect()
        page_text = await self.browser.page_text()

        prompt = f"""You control a Playwright (Python, async API) browser page through the variable `page`.

Instruction: {instruction}

Current page:
- URL: {page_context.url}
- Title: {page_context.title}
- Dialog open: {page_context.has_dialog}

Visible text (truncated):
{page_text}

Write the body of an async function that accomplishes the instruction on this page.
Use only `page` (and `variables`, a dict of run-time values: {sorted(variables)}).
Prefer role/text based locators such as page.get_by_role(...) and page.get_by_text(...).

Respond with ONLY a JSON object:
{{"code": "<python statements>", "explanation": "<one sentence>"}}
"""

        try:
            response = await asyncio.wait_for(
                self.judge.ask(prompt, max_tokens=1024, model=self.config.reasoning_model),
                timeout=self.config.judge_timeout,
            )
            code = self._parse_code(response)
        except Exception as e:
            logger.error("reasoning_request_failed", instruction=instruction, error=str(e))
            return ExecutionOutcome.failed(f"Reasoning service error: {e}")

        logger.info("reasoning_code_generated", instruction=instruction, lines=len(code.splitlines()))

        outcome = await self.snippet_executor.execute(code, variables)
        if not outcome.success:
            return outcome

        screenshot = await self.browser.capture_screenshot("reasoning_step")
        return ExecutionOutcome(
            success=True,
            screenshots=[screenshot] if screenshot else [],
        )

    def _parse_code(self, response: str) -> str:
        """Extract generated code from the model response."""
        try:
            code = extract_json_object(response).get("code", "")
        except ValueError:
            match = CODE_BLOCK.search(response)
            code = match.group(1) if match else ""
        if not code.strip():
            raise ValueError("Reasoning service returned no code")
        return code
