"""Session - Owns shared run state and wires the engine components together."""

import structlog

from flowpilot.core.config import Config
from flowpilot.core.interfaces import (
    JudgmentService,
    PageInspector,
    ReasoningExecutor,
    SnippetExecutor,
)
from flowpilot.core.types import ExecutionReport, IntentSpec
from flowpilot.decider import PathDecider
from flowpilot.executor import BrowserSession, ClaudeReasoningExecutor, PlaywrightSnippetExecutor
from flowpilot.judge import Judge
from flowpilot.orchestrator import ExecutionOrchestrator
from flowpilot.recovery import ErrorAnalyzer, ErrorHistory, RecoveryActionGenerator
from flowpilot.solutions import SolutionStore


logger = structlog.get_logger()


class Session:
    """One automation session.

    The error history belongs to the session. The solution store may be
    private to the session or shared with others by passing the same
    instance to each.
    """

    def __init__(
        self,
        config: Config | None = None,
        snippet_executor: SnippetExecutor | None = None,
        reasoning_executor: ReasoningExecutor | None = None,
        judge: JudgmentService | None = None,
        inspector: PageInspector | None = None,
        navigator=None,
        solution_store: SolutionStore | None = None,
        history: ErrorHistory | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            config: Application configuration
            snippet_executor: Snippet path capability
            reasoning_executor: Reasoning path capability
            judge: Judgment service for decisions, root causes and alternatives
            inspector: Page inspection capability
            navigator: Object with ``async navigate(url)``
            solution_store: Solution store, possibly shared between sessions
            history: Error history; a new one sized from config by default
        """
        self.config = config or Config()
        self.history = history or ErrorHistory(capacity=self.config.error_history_size)
        self.solution_store = solution_store
        self.judge = judge
        self.browser: BrowserSession | None = None

        self.decider = PathDecider(judge=judge, config=self.config)
        self.analyzer = ErrorAnalyzer(
            history=self.history,
            generator=RecoveryActionGenerator(judge=judge, config=self.config),
            inspector=inspector,
            judge=judge,
            config=self.config,
        )
        self.orchestrator = ExecutionOrchestrator(
            snippet_executor=snippet_executor,
            reasoning_executor=reasoning_executor,
            config=self.config,
            decider=self.decider,
            analyzer=self.analyzer,
            solution_store=solution_store,
            navigator=navigator,
        )

    @classmethod
    def with_browser(
        cls,
        config: Config | None = None,
        solution_store: SolutionStore | None = None,
        use_solution_store: bool = True,
    ) -> "Session":
        """Build a session backed by a Playwright browser and the Anthropic API.

        The browser is not launched until ``start`` is awaited.

        Args:
            config: Application configuration
            solution_store: Shared solution store; a persistent one is
                created when omitted and ``use_solution_store`` is set
            use_solution_store: Whether to reuse and record solutions

        Returns:
            Session wired to real executors
        """
        config = config or Config()
        browser = BrowserSession(config=config)
        judge = Judge(config=config) if config.anthropic_api_key else None
        snippet_executor = PlaywrightSnippetExecutor(browser, config=config)
        reasoning_executor = None
        if judge is not None:
            reasoning_executor = ClaudeReasoningExecutor(
                browser, judge, snippet_executor, config=config
            )
        else:
            logger.warning("reasoning_path_disabled", reason="ANTHROPIC_API_KEY is missing")

        if solution_store is None and use_solution_store:
            solution_store = SolutionStore(config=config)

        session = cls(
            config=config,
            snippet_executor=snippet_executor,
            reasoning_executor=reasoning_executor,
            judge=judge,
            inspector=browser,
            navigator=browser,
            solution_store=solution_store,
        )
        session.browser = browser
        return session

    async def start(self) -> None:
        if self.browser is not None:
            await self.browser.start()
        logger.info("session_started", browser=self.browser is not None)

    async def close(self) -> None:
        if self.browser is not None:
            await self.browser.stop()
        logger.info("session_closed", errors_recorded=len(self.history))

    async def __aenter__(self) -> "Session":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def run(
        self,
        spec: IntentSpec,
        variables: dict[str, str] | None = None,
    ) -> ExecutionReport:
        """Run an intent spec on this session's orchestrator."""
        return await self.orchestrator.run(spec, variables)

    def cancel(self) -> None:
        self.orchestrator.cancel()
