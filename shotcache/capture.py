import asyncio
import base64
import logging
import time

from playwright.async_api import BrowserContext, Error as PlaywrightError, Page

from .errors import CaptureFailed
from .params import CaptureRequest

logger = logging.getLogger(__name__)

NAVIGATION_TIMEOUT_MS = 30000
SETTLE_MS = 2000
QUALITY = 90


async def capture_screenshot(
    context: BrowserContext,
    request: CaptureRequest,
    *,
    navigation_timeout_ms: int = NAVIGATION_TIMEOUT_MS,
    settle_ms: int = SETTLE_MS,
    quality: int = QUALITY,
) -> bytes:
    """Navigate to the request's URL inside ``context`` and return a viewport-sized image.

    Viewport and locale come from the context itself. The page belongs to the
    context and is closed when the caller releases it.
    """
    start = time.perf_counter()
    logger.info(
        "Capturing %s at %dx%d as %s", request.target_url, request.width, request.height, request.format
    )

    try:
        page = await context.new_page()
        await page.goto(request.target_url, wait_until="networkidle", timeout=navigation_timeout_ms)
    except PlaywrightError as e:
        raise CaptureFailed("navigation failed", cause=e) from e

    # Give late-rendering content a chance to appear.
    if settle_ms > 0:
        await asyncio.sleep(settle_ms / 1000)

    try:
        image = await _take_screenshot(page, request.format, quality)
    except PlaywrightError as e:
        raise CaptureFailed("screenshot failed", cause=e) from e

    logger.info(
        "Captured %s (%d bytes) in %dms",
        request.target_url,
        len(image),
        int((time.perf_counter() - start) * 1000),
    )
    return image


async def _take_screenshot(page: Page, image_format: str, quality: int) -> bytes:
    if image_format == "webp":
        # Playwright's screenshot API only emits png and jpeg.
        cdp = await page.context.new_cdp_session(page)
        try:
            result = await cdp.send(
                "Page.captureScreenshot",
                {"format": "webp", "quality": quality, "captureBeyondViewport": False},
            )
        finally:
            await cdp.detach()
        return base64.b64decode(result["data"])

    screenshot_args = {"type": image_format, "full_page": False}
    if image_format == "jpeg":
        screenshot_args["quality"] = quality
    return await page.screenshot(**screenshot_args)
