"""Shared Chromium process with one isolated BrowserContext per request."""

import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Optional

from playwright.async_api import Browser, BrowserContext, Error as PlaywrightError, Playwright, async_playwright

from .config import Settings
from .errors import RenderEngineUnavailable

logger = logging.getLogger(__name__)

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--lang=ja,ja-JP,en",
]
LOCALE = "ja-JP"
ACCEPT_LANGUAGE = "ja,ja-JP;q=0.9,en;q=0.8"
FONT_FAMILY = (
    "'Noto Sans CJK JP', 'Noto Sans JP', 'Noto Sans', 'TakaoPGothic', "
    "'IPAPGothic', 'VL PGothic', 'Meiryo', sans-serif"
)

# Runs before any page script in every new document of the context.
JAPANESE_LOCALE_SCRIPT = """
(() => {
  Object.defineProperty(navigator, 'languages', { get: () => ['ja', 'ja-JP', 'en'] });
  Object.defineProperty(navigator, 'language', { get: () => 'ja' });
  const applyFonts = () => {
    const style = document.createElement('style');
    style.textContent = "body, * { font-family: %s !important; }";
    (document.head || document.documentElement).appendChild(style);
  };
  if (document.readyState === 'loading') {
    document.addEventListener('DOMContentLoaded', applyFonts);
  } else {
    applyFonts();
  }
})();
""" % FONT_FAMILY

Launcher = Callable[[], Awaitable[Browser]]


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    ALIVE = "alive"
    DEAD = "dead"


class BrowserSessionManager:
    """Owns at most one live browser and hands out isolated contexts from it.

    The browser is started lazily on the first request and restarted when a
    liveness check finds it disconnected. Concurrent callers that need a start
    all await the same launch instead of starting their own.
    """

    def __init__(self, settings: Settings, launcher: Optional[Launcher] = None):
        self.settings = settings
        self._launcher = launcher or self._launch_chromium
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._start_task: Optional["asyncio.Task[Browser]"] = None
        self.launches = 0
        self.contexts_acquired = 0
        self.contexts_released = 0

    @property
    def state(self) -> SessionState:
        if self._start_task is not None and not self._start_task.done():
            return SessionState.STARTING
        if self._browser is None:
            return SessionState.DEAD if self.launches else SessionState.UNINITIALIZED
        return SessionState.ALIVE if self._browser.is_connected() else SessionState.DEAD

    def is_alive(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "launches": self.launches,
            "open_contexts": self.contexts_acquired - self.contexts_released,
        }

    # --- Lifecycle ---
    async def get_browser(self) -> Browser:
        """Return the live browser, starting or restarting it if needed."""
        if self.is_alive():
            return self._browser
        if self._start_task is None or self._start_task.done():
            self._start_task = asyncio.ensure_future(self._start())
        # Shielded so one cancelled request does not abort the launch for everyone else.
        return await asyncio.shield(self._start_task)

    async def _start(self) -> Browser:
        if self._browser is not None:
            logger.warning("⚠️ Browser disconnected, restarting...")
            await self._discard_browser()
        logger.info("🚀 Starting browser...")
        try:
            browser = await self._launcher()
        except Exception as e:
            logger.error("Browser failed to start: %s", e)
            raise RenderEngineUnavailable("browser could not be started", cause=e) from e
        self._browser = browser
        self.launches += 1
        logger.info("✅ Browser started successfully.")
        return browser

    async def _launch_chromium(self) -> Browser:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        try:
            return await self._playwright.chromium.launch(headless=self.settings.headless, args=LAUNCH_ARGS)
        except PlaywrightError:
            await self._stop_playwright()
            raise

    async def _discard_browser(self) -> None:
        browser, self._browser = self._browser, None
        if browser is None:
            return
        try:
            await browser.close()
        except PlaywrightError as e:
            logger.debug("Ignoring error while closing dead browser: %s", e)

    async def _stop_playwright(self) -> None:
        playwright, self._playwright = self._playwright, None
        if playwright is not None:
            await playwright.stop()

    async def close(self) -> None:
        """Close the browser and the Playwright driver. Used at shutdown."""
        if self._start_task is not None and not self._start_task.done():
            self._start_task.cancel()
        logger.info("🌙 Closing browser...")
        await self._discard_browser()
        await self._stop_playwright()
        logger.info("✅ Browser closed successfully.")

    # --- Contexts ---
    async def acquire_context(self, width: int, height: int) -> BrowserContext:
        """Create a fresh, isolated context with the request's viewport and locale."""
        browser = await self.get_browser()
        try:
            context = await self._new_context(browser, width, height)
        except PlaywrightError as e:
            if browser.is_connected():
                raise RenderEngineUnavailable("could not create a browser context", cause=e) from e
            # The browser died between the liveness check and the call; one retry on a fresh one.
            logger.warning("Browser died while creating a context, retrying once")
            browser = await self.get_browser()
            try:
                context = await self._new_context(browser, width, height)
            except PlaywrightError as retry_error:
                raise RenderEngineUnavailable("could not create a browser context", cause=retry_error) from retry_error
        self.contexts_acquired += 1
        return context

    async def _new_context(self, browser: Browser, width: int, height: int) -> BrowserContext:
        context = await browser.new_context(
            viewport={"width": width, "height": height},
            device_scale_factor=1,
            locale=LOCALE,
            extra_http_headers={"Accept-Language": ACCEPT_LANGUAGE},
        )
        try:
            await context.add_init_script(JAPANESE_LOCALE_SCRIPT)
        except PlaywrightError:
            await context.close()
            raise
        return context

    async def release_context(self, context: BrowserContext) -> None:
        self.contexts_released += 1
        try:
            await context.close()
        except PlaywrightError as e:
            logger.warning("Failed to close browser context: %s", e)

    @asynccontextmanager
    async def context(self, width: int, height: int) -> AsyncIterator[BrowserContext]:
        """Acquire a context for the duration of the block and always release it."""
        ctx = await self.acquire_context(width, height)
        try:
            yield ctx
        finally:
            await self.release_context(ctx)
