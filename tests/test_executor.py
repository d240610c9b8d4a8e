"""Unit tests for the browser session and the executors."""

import asyncio
import inspect
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from flowpilot.core.config import Config
from flowpilot.core.types import ExecutionOutcome, PageContext
from flowpilot.executor import (
    BrowserSession,
    ClaudeReasoningExecutor,
    PlaywrightSnippetExecutor,
    compile_snippet,
)


class TestBrowserSession:
    """Test suite for BrowserSession class."""

    @pytest.mark.asyncio
    async def test_init_with_custom_config(self, test_config: Config) -> None:
        """Test that BrowserSession initializes without a browser."""
        session = BrowserSession(test_config)

        assert session.config == test_config
        assert session._playwright is None
        assert session._browser is None
        assert session._page is None

    @pytest.mark.asyncio
    async def test_start_launches_browser(self, test_config: Config) -> None:
        """Test that start() launches browser and returns page."""
        mock_playwright = AsyncMock()
        mock_browser = AsyncMock()
        mock_context = AsyncMock()
        mock_page = AsyncMock()

        mock_playwright.chromium.launch = AsyncMock(return_value=mock_browser)
        mock_browser.new_context = AsyncMock(return_value=mock_context)
        mock_context.new_page = AsyncMock(return_value=mock_page)

        session = BrowserSession(test_config)

        with patch("flowpilot.executor.browser.async_playwright") as mock_async_playwright:
            mock_async_playwright.return_value.start = AsyncMock(return_value=mock_playwright)

            page = await session.start()

            mock_playwright.chromium.launch.assert_called_once_with(headless=True)
            mock_browser.new_context.assert_called_once_with(
                viewport={"width": 1280, "height": 720}
            )
            assert page == mock_page
            assert session.page == mock_page

    @pytest.mark.asyncio
    async def test_start_loads_storage_state(self, test_config: Config, tmp_path) -> None:
        """Test that an existing storage state file is passed to the context."""
        state = tmp_path / "auth.json"
        state.write_text("{}")
        config = test_config.model_copy(update={"storage_state": state})
        mock_playwright = AsyncMock()
        mock_browser = AsyncMock()
        mock_playwright.chromium.launch = AsyncMock(return_value=mock_browser)
        mock_browser.new_context = AsyncMock(return_value=AsyncMock())

        with patch("flowpilot.executor.browser.async_playwright") as mock_async_playwright:
            mock_async_playwright.return_value.start = AsyncMock(return_value=mock_playwright)
            await BrowserSession(config).start()

        assert mock_browser.new_context.call_args.kwargs["storage_state"] == str(state)

    @pytest.mark.asyncio
    async def test_stop_closes_everything(self) -> None:
        """Test that stop() closes context, browser and playwright."""
        session = BrowserSession()
        session._context = AsyncMock()
        session._browser = AsyncMock()
        session._playwright = AsyncMock()

        await session.stop()

        session._context.close.assert_called_once()
        session._browser.close.assert_called_once()
        session._playwright.stop.assert_called_once()

    @pytest.mark.asyncio
    async def test_stop_tolerates_close_errors(self) -> None:
        """Test that a failing close does not prevent the rest of cleanup."""
        session = BrowserSession()
        session._browser = AsyncMock()
        session._browser.close.side_effect = RuntimeError("already closed")
        session._playwright = AsyncMock()

        await session.stop()

        session._playwright.stop.assert_called_once()

    def test_page_property_raises_if_not_started(self) -> None:
        """Test that page raises RuntimeError before start()."""
        with pytest.raises(RuntimeError, match="Browser not started"):
            _ = BrowserSession().page

    @pytest.mark.asyncio
    async def test_navigate(self, mock_page) -> None:
        """Test that navigate() waits for the load event."""
        session = BrowserSession()
        session._page = mock_page

        await session.navigate("https://example.com")

        mock_page.goto.assert_called_once_with(
            "https://example.com", wait_until="load", timeout=60000
        )

    @pytest.mark.asyncio
    async def test_capture_screenshot(self, test_config: Config, mock_page, temp_screenshots_dir) -> None:
        """Test that screenshots are written under the configured directory."""
        mock_page.screenshot = AsyncMock(return_value=b"\x89PNG")
        session = BrowserSession(test_config)
        session._page = mock_page

        filepath = await session.capture_screenshot("after click")

        assert filepath is not None
        assert filepath.startswith(str(temp_screenshots_dir))
        assert filepath.endswith("_after_click.png")

    @pytest.mark.asyncio
    async def test_capture_screenshot_skips_blank_page(self, test_config: Config, mock_page) -> None:
        """Test that about:blank is never captured."""
        mock_page.url = "about:blank"
        session = BrowserSession(test_config)
        session._page = mock_page

        assert await session.capture_screenshot("blank") is None
        mock_page.screenshot.assert_not_called()

    @pytest.mark.asyncio
    async def test_inspect(self, mock_page) -> None:
        """Test that inspect() gathers page probes."""
        mock_page.evaluate = AsyncMock(side_effect=[True, False, "online"])
        session = BrowserSession()
        session._page = mock_page

        context = await session.inspect()

        assert context == PageContext(
            url="https://example.com/form",
            title="Example Form",
            has_dialog=True,
            has_errors=False,
            network_status="online",
        )

    @pytest.mark.asyncio
    async def test_inspect_without_page_returns_unknown(self) -> None:
        """Test that inspection never raises."""
        context = await BrowserSession().inspect()

        assert context.url == "unknown"
        assert context.title == "unknown"

    @pytest.mark.asyncio
    async def test_save_storage_state(self, tmp_path) -> None:
        """Test that the context state is written to the requested file."""
        session = BrowserSession()
        session._context = AsyncMock()
        target = tmp_path / "state" / "auth.json"

        await session.save_storage_state(target)

        session._context.storage_state.assert_called_once_with(path=str(target))
        assert target.parent.is_dir()

    @pytest.mark.asyncio
    async def test_page_text_is_truncated(self, mock_page) -> None:
        """Test that page text honors the limit."""
        mock_page.inner_text = AsyncMock(return_value="x" * 100)
        session = BrowserSession()
        session._page = mock_page

        assert await session.page_text(limit=10) == "x" * 10


class TestCompileSnippet:
    """Test suite for snippet compilation."""

    def test_compiles_indented_multiline_code(self) -> None:
        """Test that indented snippets are dedented into a coroutine body."""
        snippet = compile_snippet(
            """
            await page.click('#a')
            await page.click('#b')
            """
        )

        assert inspect.iscoroutinefunction(snippet)

    def test_syntax_error_raises(self) -> None:
        """Test that invalid code raises SyntaxError."""
        with pytest.raises(SyntaxError):
            compile_snippet("await page.click(")


class TestPlaywrightSnippetExecutor:
    """Test suite for PlaywrightSnippetExecutor."""

    @pytest.mark.asyncio
    async def test_execute_runs_against_page(self, mock_page, test_config: Config) -> None:
        """Test that snippets see page and variables."""
        executor = PlaywrightSnippetExecutor(MagicMock(page=mock_page), test_config)

        outcome = await executor.execute(
            "await page.fill('#q', variables['TERM'])\nawait page.click('#go')",
            {"TERM": "shoes"},
        )

        assert outcome == ExecutionOutcome(success=True)
        mock_page.fill.assert_awaited_once_with("#q", "shoes")
        mock_page.click.assert_awaited_once_with("#go")

    @pytest.mark.asyncio
    async def test_execute_reports_page_errors(self, mock_page, test_config: Config) -> None:
        """Test that exceptions from the page become failures."""
        mock_page.click = AsyncMock(side_effect=Exception("Element not found: #go"))
        executor = PlaywrightSnippetExecutor(MagicMock(page=mock_page), test_config)

        outcome = await executor.execute("await page.click('#go')", {})

        assert outcome.success is False
        assert outcome.error == "Element not found: #go"

    @pytest.mark.asyncio
    async def test_execute_reports_compile_errors(self, mock_page, test_config: Config) -> None:
        """Test that broken snippets fail without touching the page."""
        executor = PlaywrightSnippetExecutor(MagicMock(page=mock_page), test_config)

        outcome = await executor.execute("await page.click(", {})

        assert outcome.success is False
        assert outcome.error.startswith("Snippet compile error")
        mock_page.click.assert_not_called()

    @pytest.mark.asyncio
    async def test_execute_empty_code(self, mock_page, test_config: Config) -> None:
        """Test that blank snippets fail."""
        executor = PlaywrightSnippetExecutor(MagicMock(page=mock_page), test_config)

        outcome = await executor.execute("   ", {})

        assert outcome.error == "No snippet provided"

    @pytest.mark.asyncio
    async def test_execute_times_out(self, mock_page, test_config: Config) -> None:
        """Test that hanging snippets are cut off at the step timeout."""

        async def hang(*args, **kwargs):
            await asyncio.sleep(10)

        mock_page.wait_for_selector = hang
        config = test_config.model_copy(update={"step_timeout": 0.05})
        executor = PlaywrightSnippetExecutor(MagicMock(page=mock_page), config)

        outcome = await executor.execute("await page.wait_for_selector('#never')", {})

        assert outcome.success is False
        assert "timed out" in outcome.error


@pytest.fixture
def browser(mock_page) -> MagicMock:
    browser = MagicMock(page=mock_page)
    browser.inspect = AsyncMock(return_value=PageContext(url="https://example.com/form", title="Form"))
    browser.page_text = AsyncMock(return_value="Email Password Sign in")
    browser.capture_screenshot = AsyncMock(return_value="/tmp/reasoning_step.png")
    return browser


class TestClaudeReasoningExecutor:
    """Test suite for ClaudeReasoningExecutor."""

    @pytest.mark.asyncio
    async def test_generated_code_is_executed(
        self, browser, mock_judge, mock_snippet_executor, test_config: Config
    ) -> None:
        """Test that the model's code runs through the snippet executor."""
        mock_judge.ask.return_value = json.dumps(
            {"code": "await page.get_by_role('button', name='Sign in').click()", "explanation": "click"}
        )
        executor = ClaudeReasoningExecutor(browser, mock_judge, mock_snippet_executor, test_config)

        outcome = await executor.execute("Sign in", {"EMAIL": "a@b.c"})

        assert outcome.success is True
        assert outcome.screenshots == ["/tmp/reasoning_step.png"]
        mock_snippet_executor.execute.assert_awaited_once_with(
            "await page.get_by_role('button', name='Sign in').click()", {"EMAIL": "a@b.c"}
        )
        prompt = mock_judge.ask.call_args[0][0]
        assert "Instruction: Sign in" in prompt
        assert "https://example.com/form" in prompt
        assert "Email Password Sign in" in prompt

    @pytest.mark.asyncio
    async def test_fenced_code_is_accepted(
        self, browser, mock_judge, mock_snippet_executor, test_config: Config
    ) -> None:
        """Test that a fenced code block is used when there is no JSON."""
        mock_judge.ask.return_value = "```python\nawait page.click('#ok')\n```"
        executor = ClaudeReasoningExecutor(browser, mock_judge, mock_snippet_executor, test_config)

        outcome = await executor.execute("Confirm", {})

        assert outcome.success is True
        assert mock_snippet_executor.execute.call_args[0][0] == "await page.click('#ok')\n"

    @pytest.mark.asyncio
    async def test_missing_api_key_fails(
        self, browser, mock_judge, mock_snippet_executor, test_config: Config
    ) -> None:
        """Test that reasoning is unavailable without credentials."""
        config = test_config.model_copy(update={"anthropic_api_key": ""})
        executor = ClaudeReasoningExecutor(browser, mock_judge, mock_snippet_executor, config)

        outcome = await executor.execute("Sign in", {})

        assert outcome.success is False
        assert "ANTHROPIC_API_KEY" in outcome.error
        mock_judge.ask.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_service_error_fails(
        self, browser, mock_judge, mock_snippet_executor, test_config: Config
    ) -> None:
        """Test that judgment failures become failed outcomes."""
        mock_judge.ask.side_effect = ConnectionError("unreachable")
        executor = ClaudeReasoningExecutor(browser, mock_judge, mock_snippet_executor, test_config)

        outcome = await executor.execute("Sign in", {})

        assert outcome.success is False
        assert outcome.error.startswith("Reasoning service error")
        mock_snippet_executor.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_code_fails(
        self, browser, mock_judge, mock_snippet_executor, test_config: Config
    ) -> None:
        """Test that an answer without code is a failure."""
        mock_judge.ask.return_value = '{"code": "", "explanation": "nothing to do"}'
        executor = ClaudeReasoningExecutor(browser, mock_judge, mock_snippet_executor, test_config)

        outcome = await executor.execute("Sign in", {})

        assert outcome.success is False

    @pytest.mark.asyncio
    async def test_snippet_failure_is_returned(
        self, browser, mock_judge, test_config: Config
    ) -> None:
        """Test that generated code failures propagate."""
        mock_judge.ask.return_value = '{"code": "await page.click(\'#x\')"}'
        snippet = MagicMock(execute=AsyncMock(return_value=ExecutionOutcome.failed("no #x")))
        executor = ClaudeReasoningExecutor(browser, mock_judge, snippet, test_config)

        outcome = await executor.execute("Click x", {})

        assert outcome.error == "no #x"
        browser.capture_screenshot.assert_not_awaited()
