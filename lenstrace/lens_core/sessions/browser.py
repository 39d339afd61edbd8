from __future__ import annotations

import asyncio
from typing import Any, Protocol

from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from lenstrace.services.logger import logger

DEFAULT_BROWSER_ARGS = ("--no-sandbox", "--disable-setuid-sandbox")


class ContextLauncher(Protocol):
    """What the session pool needs from a browser backend."""

    async def start(self) -> None: ...

    async def new_context(self) -> Any: ...

    async def close_context(self, context: Any) -> None: ...

    def is_alive(self, context: Any) -> bool: ...

    async def stop(self) -> None: ...


class PlaywrightLauncher:
    """One Chromium process shared by many isolated browser contexts."""

    def __init__(
        self,
        *,
        headless: bool = True,
        args: list[str] | tuple[str, ...] = DEFAULT_BROWSER_ARGS,
        viewport: dict[str, int] | None = None,
        locale: str = "en-US",
    ):
        self.headless = bool(headless)
        self.args = list(args)
        self.viewport = viewport or {"width": 1280, "height": 1024}
        self.locale = locale
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._launch_lock = asyncio.Lock()

    async def start(self) -> None:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        await self._ensure_browser()

    async def _ensure_browser(self) -> Browser:
        if self._browser is not None and self._browser.is_connected():
            return self._browser
        async with self._launch_lock:
            # Another caller may have relaunched while we waited.
            if self._browser is not None and self._browser.is_connected():
                return self._browser
            if self._playwright is None:
                raise RuntimeError("PlaywrightLauncher.start() has not been called")
            if self._browser is not None:
                logger.warning("Browser disconnected; relaunching Chromium")
                try:
                    await self._browser.close()
                except PlaywrightError as exc:
                    logger.debug(f"Closing the disconnected browser failed: {exc}")
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=self.args,
            )
            logger.info(f"Launched Chromium (headless={self.headless})")
            return self._browser

    async def new_context(self) -> BrowserContext:
        browser = await self._ensure_browser()
        return await browser.new_context(viewport=self.viewport, locale=self.locale)

    async def close_context(self, context: BrowserContext) -> None:
        try:
            await context.close()
        except PlaywrightError as exc:
            logger.debug(f"Browser context close failed: {exc}")

    def is_alive(self, context: BrowserContext) -> bool:
        browser = context.browser
        return browser is not None and browser.is_connected()

    async def stop(self) -> None:
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as exc:
                logger.warning(f"Browser close failed: {exc}")
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        logger.info("Browser stopped")
