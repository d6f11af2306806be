"""Browser drivers for the login state machine.

The state machine only talks to the LoginDriver protocol, so any rendering
agent with a cookie jar can drive the flow. PlaywrightLoginDriver is the
production implementation: headless Chromium, page-load events delivered
through an asyncio queue.
"""

import asyncio
from typing import Protocol

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    async_playwright,
)

from src.scomb.config import ScombConfig
from src.scomb.errors import NetworkError
from src.scomb.logging import get_logger
from src.scomb.login.classifier import PageSnapshot
from src.scomb.utils import configure_page_for_login

logger = get_logger(__name__)

# Mirrors typed input values into the value attribute so the serialized DOM
# shows whether the username field is already filled. Passwords are left out.
_SYNC_INPUT_VALUES_JS = """() => {
    document.querySelectorAll('input:not([type=password])').forEach(
        (el) => el.setAttribute('value', el.value)
    );
}"""

_SUBMIT_FORM_JS = "(el) => { if (el.form) { el.form.submit(); } }"


class LoginDriver(Protocol):
    """What the login state machine needs from a browser.

    Browser failures surface as NetworkError, never as the browser
    library's own exception types.
    """

    async def load_url(self, url: str) -> None: ...

    async def wait_for_page(self, timeout: float) -> PageSnapshot | None:
        """Wait for the next page load; None if none happened within timeout."""
        ...

    async def snapshot(self) -> PageSnapshot: ...

    async def fill(self, selector: str, value: str) -> None: ...

    async def click(self, selector: str) -> bool:
        """Click the first element matching selector; False if none exists."""
        ...

    async def submit_form(self, selector: str) -> None:
        """Submit the form owning the element matching selector."""
        ...

    async def read_cookies(self) -> dict[str, str]: ...

    async def close(self) -> None: ...


class PlaywrightLoginDriver:
    """LoginDriver backed by a Playwright Chromium page."""

    def __init__(
        self,
        page: Page,
        context: BrowserContext,
        base_url: str,
        browser: Browser | None = None,
        playwright: Playwright | None = None,
    ) -> None:
        self.page = page
        self.context = context
        self.base_url = base_url
        self._browser = browser
        self._playwright = playwright
        self._loads: asyncio.Queue[str] = asyncio.Queue()
        self._closed = False
        page.on("load", self._on_load)

    @classmethod
    async def launch(cls, config: ScombConfig) -> "PlaywrightLoginDriver":
        """Start Chromium with a fresh, cookie-less context."""
        playwright = await async_playwright().start()
        browser = await playwright.chromium.launch(headless=config.headless)
        context = await browser.new_context()
        page = await context.new_page()
        await configure_page_for_login(page)
        logger.info("login_browser_launched", headless=config.headless)
        return cls(page, context, config.base_url, browser=browser, playwright=playwright)

    def _on_load(self, page: Page) -> None:
        self._loads.put_nowait(page.url)

    async def load_url(self, url: str) -> None:
        logger.debug("login_navigate", url=url.split("?")[0])
        try:
            await self.page.goto(url, wait_until="load")
        except PlaywrightError as e:
            raise NetworkError(f"Failed to load login page: {e}") from e

    async def wait_for_page(self, timeout: float) -> PageSnapshot | None:
        try:
            await asyncio.wait_for(self._loads.get(), timeout)
        except asyncio.TimeoutError:
            return None
        # Redirect chains fire several loads; only the settled page matters
        while not self._loads.empty():
            self._loads.get_nowait()
        return await self.snapshot()

    async def snapshot(self) -> PageSnapshot:
        url = self.page.url
        try:
            await self.page.evaluate(_SYNC_INPUT_VALUES_JS)
            html = await self.page.content()
        except PlaywrightError as e:
            # Navigation in progress destroyed the execution context
            logger.debug("login_snapshot_incomplete", error=str(e))
            html = ""
        return PageSnapshot(url=url, html=html, cookies=await self.read_cookies())

    async def fill(self, selector: str, value: str) -> None:
        try:
            await self.page.fill(selector, value)
        except PlaywrightError as e:
            raise NetworkError(f"Failed to fill {selector}: {e}") from e

    async def click(self, selector: str) -> bool:
        try:
            element = await self.page.query_selector(selector)
            if element is None:
                return False
            await element.click(no_wait_after=True)
        except PlaywrightError as e:
            raise NetworkError(f"Failed to click {selector}: {e}") from e
        return True

    async def submit_form(self, selector: str) -> None:
        try:
            await self.page.eval_on_selector(selector, _SUBMIT_FORM_JS)
        except PlaywrightError as e:
            raise NetworkError(f"Failed to submit the form of {selector}: {e}") from e

    async def read_cookies(self) -> dict[str, str]:
        try:
            cookies = await self.context.cookies(self.base_url)
        except PlaywrightError as e:
            raise NetworkError(f"Failed to read browser cookies: {e}") from e
        return {c["name"]: c["value"] for c in cookies}

    async def close(self) -> None:
        """Release the browser. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self.page.remove_listener("load", self._on_load)
        try:
            await self.context.close()
            if self._browser is not None:
                await self._browser.close()
        finally:
            if self._playwright is not None:
                await self._playwright.stop()
        logger.info("login_browser_closed")
