"""
Playwright browser launcher.

One browser context is shared by all sessions; each session gets its own page
(tab). Closing a page notifies registered callbacks so the coordinator can tear
the session down.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from webpilot.agents.exceptions import BrowserError, BrowserNotInitializedError, SessionNotFoundError
from webpilot.agents.utils import session_extra

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)

# Hide the most obvious automation markers
STEALTH_INIT_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', {
        get: () => undefined
    });
    Object.defineProperty(navigator, 'languages', {
        get: () => ['en-US', 'en']
    });
"""


class BrowserManager:
    """
    Owns the Playwright browser and one page per session.

    Usage:
        manager = await BrowserManager.create(headless=True)
        page = await manager.new_page("session-1", url="https://example.com")
        ...
        await manager.close()
    """

    def __init__(
        self,
        playwright: Playwright,
        browser: Optional[Browser],
        context: BrowserContext,
    ) -> None:
        self.playwright = playwright
        self.browser = browser
        self.context = context
        self._pages: Dict[str, Page] = {}
        self._close_callbacks: List[Callable[[str], None]] = []

    @classmethod
    async def create(
        cls,
        headless: bool = True,
        browser_channel: Optional[str] = None,
        viewport_width: int = 1280,
        viewport_height: int = 720,
        timeout: Optional[int] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        launch_timeout: float = 30.0,
    ) -> "BrowserManager":
        """
        Launch Chromium and create the shared context.

        Parameters:
            headless (bool): Whether to launch the browser in headless mode.
            browser_channel (Optional[str]): Browser channel (e.g. "chrome"); bundled Chromium when None.
            viewport_width (int): Browser viewport width.
            viewport_height (int): Browser viewport height.
            timeout (Optional[int]): Default Playwright action/navigation timeout in milliseconds.
            user_agent (str): User agent for the context.
            launch_timeout (float): Seconds allowed for each launch attempt.

        Returns:
            BrowserManager: A manager with no pages open yet.
        """
        playwright = await async_playwright().start()

        launch_kwargs = {
            "headless": headless,
            "args": [
                "--disable-dev-shm-usage",
                "--disable-blink-features=AutomationControlled",
                "--disable-infobars",
                "--no-first-run",
            ],
            "ignore_default_args": ["--enable-automation"],
        }
        if browser_channel:
            launch_kwargs["channel"] = browser_channel

        browser = None
        for attempt in range(3):
            try:
                browser = await asyncio.wait_for(
                    playwright.chromium.launch(**launch_kwargs), timeout=launch_timeout
                )
                break
            except asyncio.TimeoutError:
                logger.warning(f"Browser launch attempt {attempt + 1} timed out")
        if browser is None:
            await playwright.stop()
            raise BrowserError("Browser launch timed out after 3 attempts")

        context = await browser.new_context(
            viewport={"width": viewport_width, "height": viewport_height},
            user_agent=user_agent,
            locale="en-US",
            java_script_enabled=True,
            bypass_csp=True,
        )
        if timeout:
            context.set_default_navigation_timeout(timeout)
            context.set_default_timeout(timeout)
        await context.add_init_script(STEALTH_INIT_SCRIPT)

        return cls(playwright, browser, context)

    def on_page_closed(self, callback: Callable[[str], None]) -> None:
        """Register ``callback(session_id)`` for pages closed by the user or the site."""
        self._close_callbacks.append(callback)

    async def new_page(self, session_id: str, url: Optional[str] = None) -> Page:
        if self.context is None:
            raise BrowserNotInitializedError()
        if session_id in self._pages:
            return self._pages[session_id]

        page = await self.context.new_page()
        self._pages[session_id] = page

        def on_close(_page):
            if self._pages.pop(session_id, None) is None:
                return
            logger.info("Page closed", extra=session_extra(session_id))
            for callback in self._close_callbacks:
                callback(session_id)

        page.on("close", on_close)

        if url:
            await page.goto(url, wait_until="domcontentloaded")
        logger.debug(f"Opened page for session at {page.url}", extra=session_extra(session_id))
        return page

    def page_for(self, session_id: str) -> Page:
        try:
            return self._pages[session_id]
        except KeyError:
            raise SessionNotFoundError(f"No page is open for session '{session_id}'", session_id=session_id)

    async def close_page(self, session_id: str) -> None:
        page = self._pages.pop(session_id, None)
        if page is not None and not page.is_closed():
            await page.close()

    async def close(self) -> None:
        """Close every page, the context, the browser and Playwright itself."""
        self._pages.clear()
        if self.context is not None:
            await self.context.close()
        if self.browser is not None:
            await self.browser.close()
        await self.playwright.stop()
