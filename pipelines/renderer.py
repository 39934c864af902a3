"""Headless browser rendering for pages that need JavaScript.

Only used as the last extraction tier; the browser is launched lazily and
reused for every page of a crawl run.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from playwright.async_api import async_playwright, Browser, Playwright
from playwright.async_api import TimeoutError as PlaywrightTimeout

logger = logging.getLogger(__name__)

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
]


@dataclass
class RenderedPage:
    """Text and markup of a page after client-side rendering."""
    url: str
    title: str
    text: str
    html: str = ""


class PageRenderer(Protocol):
    async def render(self, url: str) -> RenderedPage: ...

    async def close(self) -> None: ...


class PlaywrightRenderer:
    """Renders pages in headless Chromium via Playwright."""

    def __init__(self,
                 user_agent: str,
                 navigation_timeout: float = 30.0,
                 settle_seconds: float = 2.0):
        """Initialize renderer.

        Args:
            user_agent: User-Agent sent by the browser context
            navigation_timeout: Timeout for navigation and network idle, in seconds
            settle_seconds: Extra wait after network idle for late scripts
        """
        self.user_agent = user_agent
        self.navigation_timeout = navigation_timeout
        self.settle_seconds = settle_seconds
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._lock = asyncio.Lock()

    async def _ensure_browser(self) -> Browser:
        async with self._lock:
            if self._browser is None:
                logger.info("Launching headless Chromium")
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(headless=True, args=BROWSER_ARGS)
        return self._browser

    async def render(self, url: str) -> RenderedPage:
        """Navigate to ``url`` and return the rendered document.

        Raises:
            PlaywrightTimeout: navigation did not finish in time
        """
        browser = await self._ensure_browser()
        context = await browser.new_context(user_agent=self.user_agent)
        page = await context.new_page()
        try:
            await page.goto(url, wait_until="networkidle", timeout=self.navigation_timeout * 1000)
            if self.settle_seconds:
                await page.wait_for_timeout(self.settle_seconds * 1000)
            title = (await page.title()) or ""
            text = await page.evaluate("() => document.body ? document.body.innerText : ''")
            html = await page.content()
            logger.debug(f"Rendered {url}: {len(text or '')} characters")
            return RenderedPage(url=url, title=title.strip(), text=text or "", html=html)
        except PlaywrightTimeout:
            logger.warning(f"Timed out rendering {url}")
            raise
        finally:
            await context.close()

    async def close(self) -> None:
        """Close the browser and stop Playwright."""
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            logger.info("Headless browser closed")
