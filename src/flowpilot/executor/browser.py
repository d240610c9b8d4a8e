"""Browser session - Playwright lifecycle, navigation and page inspection."""

from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from playwright.async_api import async_playwright, Browser, BrowserContext

from flowpilot.core.config import Config
from flowpilot.core.types import PageContext

if TYPE_CHECKING:
    from playwright.async_api import Page


logger = structlog.get_logger()


DIALOG_PROBE = "() => !!document.querySelector('[role=\"dialog\"], .modal, .popup')"
ERROR_PROBE = (
    "() => document.querySelectorAll('.error, .alert-danger, [class*=\"error\"]').length > 0"
)
ONLINE_PROBE = "() => navigator.onLine ? 'online' : 'offline'"


class BrowserSession:
    """Owns the Playwright browser and exposes the current page."""

    def __init__(self, config: Config | None = None) -> None:
        """Initialize the browser session.

        Args:
            config: Application configuration
        """
        self.config = config or Config()
        self._playwright = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: "Page | None" = None

    async def start(self) -> "Page":
        """Start the browser and return the page.

        Returns:
            Playwright page instance
        """
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.config.headless
        )

        context_options = {
            "viewport": {
                "width": self.config.viewport_width,
                "height": self.config.viewport_height,
            }
        }

        # Load storage state if provided
        if self.config.storage_state and self.config.storage_state.exists():
            logger.info(
                "loading_storage_state",
                storage_state=str(self.config.storage_state),
            )
            context_options["storage_state"] = str(self.config.storage_state)

        self._context = await self._browser.new_context(**context_options)
        self._page = await self._context.new_page()

        logger.info("browser_started", headless=self.config.headless)
        return self._page

    async def stop(self) -> None:
        """Stop the browser and cleanup resources."""
        if self._context:
            try:
                await self._context.close()
            except Exception as e:
                logger.debug("context_close_error", error=str(e))

        if self._browser:
            try:
                await self._browser.close()
            except Exception as e:
                logger.debug("browser_close_error", error=str(e))

        if self._playwright:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.debug("playwright_stop_error", error=str(e))

        logger.info("browser_stopped")

    @property
    def page(self) -> "Page":
        """Get the current page instance."""
        if self._page is None:
            raise RuntimeError("Browser not started. Call start() first.")
        return self._page

    async def navigate(self, url: str) -> None:
        """Navigate to a URL.

        Args:
            url: URL to navigate to
        """
        # "networkidle" can hang on pages that poll continuously
        await self.page.goto(url, wait_until="load", timeout=60000)
        logger.info("navigated", url=url)

    async def capture_screenshot(self, name: str) -> str | None:
        """Save a screenshot of the current page.

        Args:
            name: Descriptive name used in the file name

        Returns:
            Path of the saved file, or None when screenshots are disabled
            or the page is blank
        """
        if not self.config.save_screenshots:
            return None
        if self.page.url == "about:blank":
            logger.warning("screenshot_skipped_blank_page", name=name)
            return None

        screenshots_dir = Path(self.config.screenshots_dir)
        screenshots_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        safe_name = "".join(c if c.isalnum() or c in "-_" else "_" for c in name)
        filepath = screenshots_dir / f"{timestamp}_{safe_name}.png"

        filepath.write_bytes(await self.page.screenshot())
        logger.info("screenshot_captured", name=name, filepath=str(filepath))
        return str(filepath)

    async def inspect(self) -> PageContext:
        """Inspect the current page for error analysis.

        Returns:
            PageContext; url/title are "unknown" if the page cannot be queried
        """
        try:
            page = self.page
            return PageContext(
                url=page.url,
                title=await page.title(),
                has_dialog=await page.evaluate(DIALOG_PROBE),
                has_errors=await page.evaluate(ERROR_PROBE),
                network_status=await page.evaluate(ONLINE_PROBE),
            )
        except Exception as e:
            logger.warning("page_inspection_failed", error=str(e))
            return PageContext()

    async def save_storage_state(self, path: Path) -> None:
        """Write cookies and local storage to a JSON file for later runs."""
        if self._context is None:
            raise RuntimeError("Browser not started. Call start() first.")
        path.parent.mkdir(parents=True, exist_ok=True)
        await self._context.storage_state(path=str(path))
        logger.info("storage_state_saved", path=str(path))

    async def page_text(self, limit: int = 6000) -> str:
        """Visible text of the page body, truncated."""
        try:
            text = await self.page.inner_text("body")
        except Exception as e:
            logger.debug("page_text_unavailable", error=str(e))
            return ""
        return text[:limit]
