"""
Headless browser boundary.

The crawler only needs two capabilities from a browser: ``navigate(url)``
returning a handle to the loaded document, and ``evaluate(handle, script)``
running a script inside that document. ``Browser`` is that contract;
``PlaywrightBrowser`` implements it on Chromium through Playwright's async
API. A browser is an async context manager so every exit path releases it.
"""

import logging
import random
from typing import Any, Optional

from playwright.async_api import async_playwright, Page, TimeoutError as PWTimeout

from mailfinder.config import Config, config as default_config

log = logging.getLogger(__name__)

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
    "--no-zygote",
    "--disable-blink-features=AutomationControlled",
]

# Runs before any page script: hide the usual automation fingerprints.
STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
Object.defineProperty(navigator, 'languages', {get: () => ['en-US', 'en']});
Object.defineProperty(navigator, 'plugins', {get: () => [1, 2, 3, 4, 5]});
window.chrome = window.chrome || {runtime: {}};
"""

VIEWPORT = {"width": 1920, "height": 1080}


class NavigationError(Exception):
    """Raised when a page cannot be loaded."""
    pass


class Browser:
    """Narrow browser contract used by the crawler."""

    async def __aenter__(self) -> "Browser":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def navigate(self, url: str, timeout: float) -> Any:
        raise NotImplementedError

    async def evaluate(self, handle: Any, script: str) -> Any:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class PlaywrightBrowser(Browser):
    """One isolated Chromium instance with a single reusable page."""

    def __init__(self, cfg: Optional[Config] = None, user_agent: Optional[str] = None):
        self.config = cfg or default_config
        self.user_agent = user_agent or random.choice(self.config.user_agents)
        self._playwright = None
        self._browser = None
        self._context = None
        self._page: Optional[Page] = None

    async def __aenter__(self) -> "PlaywrightBrowser":
        try:
            await self.start()
        except BaseException:
            await self.close()
            raise
        return self

    async def start(self) -> None:
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.config.browser_headless,
            args=LAUNCH_ARGS,
        )
        self._context = await self._browser.new_context(
            user_agent=self.user_agent,
            viewport=VIEWPORT,
            ignore_https_errors=True,
            java_script_enabled=True,
        )
        await self._context.add_init_script(STEALTH_SCRIPT)
        self._page = await self._context.new_page()
        log.debug("Browser started (ua=%s)", self.user_agent)

    async def navigate(self, url: str, timeout: float) -> Page:
        if self._page is None:
            raise NavigationError("Browser is not started")
        try:
            response = await self._page.goto(
                url,
                wait_until="networkidle",
                timeout=int(timeout * 1000),
            )
        except PWTimeout as exc:
            raise NavigationError(f"Navigation timeout for {url}") from exc
        if response is not None and response.status >= 400:
            raise NavigationError(f"HTTP {response.status} for {url}")
        return self._page

    async def evaluate(self, handle: Page, script: str) -> Any:
        return await handle.evaluate(script)

    async def close(self) -> None:
        # Each teardown step runs even if an earlier one fails.
        for name, closer in (
            ("page", self._page.close if self._page else None),
            ("context", self._context.close if self._context else None),
            ("browser", self._browser.close if self._browser else None),
            ("playwright", self._playwright.stop if self._playwright else None),
        ):
            if closer is None:
                continue
            try:
                await closer()
            except Exception as exc:
                log.debug("Ignoring %s close error: %s", name, exc)
        self._page = self._context = self._browser = self._playwright = None
        log.debug("Browser released")


def playwright_browser_factory(cfg: Optional[Config] = None):
    """Return a zero-argument factory producing fresh ``PlaywrightBrowser`` instances."""
    def factory() -> PlaywrightBrowser:
        return PlaywrightBrowser(cfg)
    return factory
