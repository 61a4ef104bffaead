import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Literal, Optional

from .browser import BrowserSessionManager
from .cache import CacheStore, current_date, derive_cache_key
from .capture import capture_screenshot
from .config import Settings
from .errors import InternalError, ScreenshotError
from .params import CaptureRequest, parse_capture_request

logger = logging.getLogger(__name__)

CacheStatus = Literal["HIT", "MISS"]


@dataclass(frozen=True)
class ScreenshotResult:
    body: bytes
    format: str
    cache_status: CacheStatus

    @property
    def content_type(self) -> str:
        return f"image/{self.format}"


class ScreenshotService:
    """validate -> derive key -> cache lookup -> (hit) or (capture -> store)."""

    def __init__(
        self,
        cache: CacheStore,
        browsers: BrowserSessionManager,
        settings: Settings,
        today: Callable[[], date] = current_date,
    ):
        self.cache = cache
        self.browsers = browsers
        self.settings = settings
        self._today = today
        self.invocations = 0

    async def handle(
        self,
        url: Optional[str],
        width: Optional[str] = None,
        height: Optional[str] = None,
        format: Optional[str] = None,
    ) -> ScreenshotResult:
        """Serve a screenshot for raw query parameters.

        Raises a ScreenshotError subclass for every failure; anything unexpected
        is logged and re-raised as InternalError.
        """
        try:
            request = parse_capture_request(
                url,
                width,
                height,
                format,
                default_width=self.settings.default_width,
                default_height=self.settings.default_height,
            )
            return await self._serve(request)
        except ScreenshotError as e:
            if e.cause is not None:
                logger.error("%s for %s: %s", e.message, url, e.cause)
            raise
        except Exception as e:
            logger.exception("Unexpected error while serving %s", url)
            raise InternalError("unexpected error", cause=e) from e

    async def _serve(self, request: CaptureRequest) -> ScreenshotResult:
        key = derive_cache_key(request, self._today())

        entry = await self.cache.lookup(key)
        if entry is not None:
            logger.debug("Cache hit %s for %s", key.filename, request.target_url)
            return ScreenshotResult(body=entry.data, format=entry.format, cache_status="HIT")

        logger.debug("Cache miss %s for %s", key.filename, request.target_url)
        image = await self.capture(request)
        await self.cache.store(key, image)
        return ScreenshotResult(body=image, format=request.format, cache_status="MISS")

    async def capture(self, request: CaptureRequest) -> bytes:
        self.invocations += 1
        async with self.browsers.context(request.width, request.height) as context:
            return await capture_screenshot(
                context,
                request,
                navigation_timeout_ms=self.settings.navigation_timeout_ms,
                settle_ms=self.settings.settle_ms,
                quality=self.settings.quality,
            )
