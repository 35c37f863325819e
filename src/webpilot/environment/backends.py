"""
Page backends.

The Action Executor, Element Catalog and Modal Detector are written once against
``PageBackend``. A session picks one of two implementations:

- ``PlaywrightPageBackend``: DOM-addressable. In-page scripts, selectors, element
  resolution and the layered click are all available.
- ``CoordinateOnlyBackend``: screenshot-grounded control. Only pointer, wheel and
  keyboard input plus navigation and screenshots; every DOM script is refused.
"""

import base64
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from webpilot.agents.exceptions import NavigationInterruptedError, UnsupportedActionError
from webpilot.environment.page_models import Viewport

logger = logging.getLogger(__name__)

# Messages playwright uses when the document was replaced under a running script
NAVIGATION_ERROR_MARKERS = (
    "Execution context was destroyed",
    "Cannot find context with specified id",
    "frame was detached",
)

VIEWPORT_JS = """() => ({
    width: window.innerWidth,
    height: window.innerHeight,
    scrollX: window.scrollX,
    scrollY: window.scrollY,
    devicePixelRatio: window.devicePixelRatio || 1,
})"""


class PageBackend(ABC):
    """Primitive page operations needed by the executor and the catalog."""

    kind: str = "dom"

    @property
    def supports_dom(self) -> bool:
        return self.kind == "dom"

    @abstractmethod
    async def url(self) -> str:
        pass

    @abstractmethod
    async def title(self) -> str:
        pass

    @abstractmethod
    async def viewport(self) -> Viewport:
        pass

    @abstractmethod
    async def navigate(self, url: str, timeout: float = 30.0) -> None:
        pass

    @abstractmethod
    async def go_back(self, timeout: float = 30.0) -> None:
        pass

    @abstractmethod
    async def mouse_click(self, x: float, y: float) -> None:
        pass

    @abstractmethod
    async def mouse_move(self, x: float, y: float) -> None:
        pass

    @abstractmethod
    async def mouse_wheel(self, delta_x: float, delta_y: float) -> None:
        pass

    @abstractmethod
    async def keyboard_type(self, text: str) -> None:
        pass

    @abstractmethod
    async def keyboard_press(self, key: str) -> None:
        pass

    @abstractmethod
    async def screenshot(self) -> bytes:
        """PNG bytes of the current viewport."""

    @abstractmethod
    async def wait_ready(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for the document; return False if it never got there."""

    @abstractmethod
    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Run an in-page script. Raises NavigationInterruptedError if the page navigated meanwhile."""


class PlaywrightPageBackend(PageBackend):
    """DOM-addressable backend over a Playwright page."""

    kind = "dom"

    def __init__(self, page: Page):
        self.page = page

    async def url(self) -> str:
        return self.page.url

    async def title(self) -> str:
        try:
            return await self.page.title()
        except PlaywrightError as e:
            if _is_navigation_error(e):
                return ""
            raise

    async def viewport(self) -> Viewport:
        try:
            return Viewport.model_validate(await self.page.evaluate(VIEWPORT_JS))
        except PlaywrightError as e:
            if not _is_navigation_error(e):
                raise
            logger.debug(f"Viewport read interrupted by navigation, using configured size: {e}")
            return _configured_viewport(self.page)

    async def navigate(self, url: str, timeout: float = 30.0) -> None:
        await self.page.goto(url, wait_until="domcontentloaded", timeout=timeout * 1000)

    async def go_back(self, timeout: float = 30.0) -> None:
        await self.page.go_back(wait_until="domcontentloaded", timeout=timeout * 1000)

    async def mouse_click(self, x: float, y: float) -> None:
        await self.page.mouse.click(x, y)

    async def mouse_move(self, x: float, y: float) -> None:
        await self.page.mouse.move(x, y)

    async def mouse_wheel(self, delta_x: float, delta_y: float) -> None:
        await self.page.mouse.wheel(delta_x, delta_y)

    async def keyboard_type(self, text: str) -> None:
        await self.page.keyboard.type(text)

    async def keyboard_press(self, key: str) -> None:
        await self.page.keyboard.press(key)

    async def screenshot(self) -> bytes:
        """
        Capture through a CDP session so the capture does not fire blur/focus events
        that close dropdowns and popups. Falls back to ``page.screenshot()``.
        """
        try:
            client = await self.page.context.new_cdp_session(self.page)
            result = await client.send("Page.captureScreenshot", {
                "format": "png",
                "captureBeyondViewport": False,
            })
            await client.detach()
            return base64.b64decode(result["data"])
        except PlaywrightError as e:
            logger.warning(f"CDP screenshot failed, falling back to standard method: {e}")
            return await self.page.screenshot()

    async def wait_ready(self, timeout: float) -> bool:
        try:
            await self.page.wait_for_load_state("domcontentloaded", timeout=timeout * 1000)
            return True
        except PlaywrightTimeoutError:
            return False

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        try:
            return await self.page.evaluate(script, arg)
        except PlaywrightError as e:
            if _is_navigation_error(e):
                raise NavigationInterruptedError(str(e)) from e
            raise


class CoordinateOnlyBackend(PlaywrightPageBackend):
    """
    Screenshot-grounded backend: the model sees pixels on a 0-1000 grid and acts
    with pointer and keyboard input only.
    """

    kind = "coordinate"

    async def viewport(self) -> Viewport:
        return _configured_viewport(self.page)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        raise UnsupportedActionError(
            "In-page scripts are not available on the coordinate-only backend",
            backend=self.kind,
        )


def _is_navigation_error(error: Exception) -> bool:
    message = str(error)
    return any(marker in message for marker in NAVIGATION_ERROR_MARKERS)


def _configured_viewport(page: Page) -> Viewport:
    size: Optional[dict] = page.viewport_size
    if not size:
        return Viewport(width=1280, height=720)
    return Viewport(width=size["width"], height=size["height"])


def create_backend(page: Page, kind: str = "dom") -> PageBackend:
    if kind == "dom":
        return PlaywrightPageBackend(page)
    if kind == "coordinate":
        return CoordinateOnlyBackend(page)
    raise ValueError(f"Unknown backend kind '{kind}'. Expected 'dom' or 'coordinate'")
