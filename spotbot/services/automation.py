"""Browser automation session backed by Playwright.

The session is a plain owned resource: it is created, torn down and
recreated by the automation channel only. Every primitive converts
Playwright failures (including step timeouts) into AutomationFailure so the
channel's retry tiers can act on them.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from playwright.async_api import BrowserContext, Locator, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from spotbot.config import Settings
from spotbot.exceptions import AutomationFailure
from spotbot.logging_config import get_logger, log_with_context
from spotbot.middleware.logging_middleware import redact_sensitive_data

logger = get_logger(__name__)


class AutomationSession:
    """A persistent-profile Chromium session driven one primitive at a time."""

    def __init__(self, settings: Settings):
        self._settings = settings
        self.wait_ms = settings.automation_wait_ms
        self._playwright: Playwright | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    @property
    def is_started(self) -> bool:
        return self._page is not None

    @property
    def page(self) -> Page:
        if self._page is None:
            raise AutomationFailure("Automation session not started")
        return self._page

    async def start(self) -> None:
        """Launch the browser with the persistent profile (no-op if running)."""
        if self.is_started:
            return

        args = [arg for arg in self._settings.browser_args.split() if arg]
        try:
            self._playwright = await async_playwright().start()
            self._context = await self._playwright.chromium.launch_persistent_context(
                user_data_dir=str(self._settings.browser_profile_dir),
                headless=self._settings.browser_headless,
                args=args,
            )
            self._page = self._context.pages[0] if self._context.pages else await self._context.new_page()
            self._page.set_default_timeout(self.wait_ms)
        except PlaywrightError as e:
            await self.quit()
            raise AutomationFailure(
                f"Failed to start automation browser: {e}",
                details={"profile_dir": str(self._settings.browser_profile_dir)},
            ) from e

        log_with_context(
            logger,
            "info",
            "Automation browser started",
            headless=self._settings.browser_headless,
            event_type="automation_started",
        )

    async def quit(self) -> None:
        """Close the browser. Teardown problems are logged, never raised."""
        context, playwright = self._context, self._playwright
        self._page = None
        self._context = None
        self._playwright = None

        try:
            if context is not None:
                await context.close()
            if playwright is not None:
                await playwright.stop()
        except PlaywrightError as e:
            log_with_context(
                logger,
                "warning",
                "Automation browser did not close cleanly",
                error=str(e),
                event_type="automation_quit_error",
            )
            return

        log_with_context(logger, "info", "Automation browser closed", event_type="automation_quit")

    @asynccontextmanager
    async def _step(self, action: str, **context: Any) -> AsyncIterator[None]:
        try:
            yield
        except PlaywrightError as e:
            raise AutomationFailure(
                f"Browser step '{action}' failed: {e.message}",
                details={"action": action, **context},
            ) from e

    async def navigate(self, url: str) -> None:
        async with self._step("navigate", url=redact_sensitive_data(url)):
            await self.page.goto(url, timeout=self.wait_ms)

    async def find_element(self, selector: str) -> Locator | None:
        """Return the first element matching selector, or None when absent."""
        async with self._step("find_element", selector=selector):
            locator = self.page.locator(selector)
            if await locator.count() == 0:
                return None
            return locator.first

    async def click(self, element: Locator) -> None:
        async with self._step("click"):
            await element.click(timeout=self.wait_ms)

    async def type(self, element: Locator, text: str) -> None:
        """Replace the element's value with text."""
        async with self._step("type"):
            await element.fill(text, timeout=self.wait_ms)

    async def wait_until(self, selector: str, state: str = "visible", timeout_ms: int | None = None) -> Locator:
        """Wait until an element matching selector reaches state, then return it."""
        async with self._step("wait_until", selector=selector, state=state):
            locator = self.page.locator(selector).first
            await locator.wait_for(state=state, timeout=timeout_ms or self.wait_ms)  # type: ignore[arg-type]
            return locator

    async def wait_for_url(self, url: str, timeout_ms: int | None = None) -> None:
        async with self._step("wait_for_url", url=redact_sensitive_data(url)):
            await self.page.wait_for_url(url, timeout=timeout_ms or self.wait_ms)

    async def wait_for_detached(self, element: Locator, timeout_ms: int | None = None) -> None:
        """Wait until element leaves the page (e.g. after a submit navigates away)."""
        async with self._step("wait_for_detached"):
            await element.wait_for(state="detached", timeout=timeout_ms or self.wait_ms)

    async def get_cookies(self) -> list[dict[str, Any]]:
        if self._context is None:
            raise AutomationFailure("Automation session not started")
        async with self._step("get_cookies"):
            return [dict(cookie) for cookie in await self._context.cookies()]

    async def save_screenshot(self, path: Path) -> Path:
        async with self._step("screenshot", path=str(path)):
            await self.page.screenshot(path=str(path), full_page=True)
        return path

    async def save_page_source(self, path: Path) -> Path:
        async with self._step("page_source", path=str(path)):
            source = await self.page.content()
        path.write_text(source, encoding="utf-8")
        log_with_context(
            logger,
            "info",
            "Saved page source",
            path=str(path),
            url=redact_sensitive_data(self.page.url),
            event_type="automation_page_source",
        )
        return path
