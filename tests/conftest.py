"""
Fixtures and in-memory stand-ins for the Playwright objects the service drives.

FakeRenderer.launch is passed to BrowserSessionManager as its launcher, so no
real Chromium is needed. Screenshots are deterministic bytes that encode the
format and viewport, which lets tests check clamping through the HTTP layer.
"""

import asyncio
import base64
from typing import Generator, List, Optional

import pytest
from fastapi.testclient import TestClient
from playwright.async_api import Error as PlaywrightError

from shotcache.browser import BrowserSessionManager
from shotcache.cache import CacheStore
from shotcache.config import Settings
from shotcache.service import ScreenshotService


class FakeCDPSession:
    def __init__(self, page: "FakePage"):
        self.page = page
        self.detached = False

    async def send(self, method: str, params: dict) -> dict:
        assert method == "Page.captureScreenshot"
        data = self.page.image_bytes(params["format"])
        return {"data": base64.b64encode(data).decode("ascii")}

    async def detach(self) -> None:
        self.detached = True


class FakePage:
    def __init__(self, context: "FakeContext"):
        self.context = context
        self.goto_calls: List[dict] = []
        self.screenshot_calls: List[dict] = []

    def image_bytes(self, image_format: str) -> bytes:
        viewport = self.context.options["viewport"]
        return f"{image_format}:{viewport['width']}x{viewport['height']}".encode()

    async def goto(self, url: str, wait_until: Optional[str] = None, timeout: Optional[float] = None):
        self.goto_calls.append({"url": url, "wait_until": wait_until, "timeout": timeout})
        renderer = self.context.browser.renderer
        if renderer.navigation_error is not None:
            raise renderer.navigation_error
        return None

    async def screenshot(self, **kwargs) -> bytes:
        self.screenshot_calls.append(kwargs)
        renderer = self.context.browser.renderer
        if renderer.screenshot_error is not None:
            raise renderer.screenshot_error
        return self.image_bytes(kwargs["type"])


class FakeContext:
    def __init__(self, browser: "FakeBrowser", options: dict):
        self.browser = browser
        self.options = options
        self.init_scripts: List[str] = []
        self.pages: List[FakePage] = []
        self.cdp_sessions: List[FakeCDPSession] = []
        self.closed = False

    async def add_init_script(self, script: str) -> None:
        self.init_scripts.append(script)

    async def new_page(self) -> FakePage:
        page = FakePage(self)
        self.pages.append(page)
        return page

    async def new_cdp_session(self, page: FakePage) -> FakeCDPSession:
        session = FakeCDPSession(page)
        self.cdp_sessions.append(session)
        return session

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self, renderer: "FakeRenderer"):
        self.renderer = renderer
        self.connected = True
        self.closed = False
        self.contexts: List[FakeContext] = []

    def is_connected(self) -> bool:
        return self.connected

    async def new_context(self, **options) -> FakeContext:
        if not self.connected:
            raise PlaywrightError("Target page, context or browser has been closed")
        context = FakeContext(self, options)
        self.contexts.append(context)
        return context

    async def close(self) -> None:
        self.closed = True
        self.connected = False


class FakeRenderer:
    """Launcher that records every browser it starts."""

    def __init__(self):
        self.browsers: List[FakeBrowser] = []
        self.launch_delay = 0.0
        self.launch_error: Optional[Exception] = None
        self.navigation_error: Optional[Exception] = None
        self.screenshot_error: Optional[Exception] = None

    async def launch(self) -> FakeBrowser:
        if self.launch_delay:
            await asyncio.sleep(self.launch_delay)
        if self.launch_error is not None:
            raise self.launch_error
        browser = FakeBrowser(self)
        self.browsers.append(browser)
        return browser

    @property
    def contexts(self) -> List[FakeContext]:
        return [context for browser in self.browsers for context in browser.contexts]


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        cache_dir=tmp_path / "cache",
        settle_ms=0,
        daily_sweep=False,
    )


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def browsers(settings, renderer) -> BrowserSessionManager:
    return BrowserSessionManager(settings, launcher=renderer.launch)


@pytest.fixture
def cache(settings) -> CacheStore:
    return CacheStore(settings.cache_dir)


@pytest.fixture
def service(cache, browsers, settings) -> ScreenshotService:
    return ScreenshotService(cache, browsers, settings)


@pytest.fixture
def client(settings, renderer) -> Generator[TestClient, None, None]:
    """TestClient running the full app lifespan against the fake renderer."""
    from main import create_app

    with TestClient(create_app(settings, launcher=renderer.launch)) as test_client:
        yield test_client
