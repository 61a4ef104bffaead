# main.py
#
# To run this application:
# 1. Install dependencies:
#    pip install -e .
#
# 2. Install Playwright's browser binaries (only needs to be done once):
#    playwright install chromium
#
# 3. Start the server:
#    uvicorn main:app --host 0.0.0.0 --port 8000
#
# Settings are read from SCREENSHOT_* environment variables or a .env file
# (see shotcache/config.py).

import asyncio
import contextlib
import logging
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from shotcache import __version__
from shotcache.browser import BrowserSessionManager, Launcher
from shotcache.cache import CacheStore
from shotcache.config import Settings, get_settings
from shotcache.errors import ScreenshotError
from shotcache.service import ScreenshotService

logger = logging.getLogger("shotcache.api")


def create_app(settings: Optional[Settings] = None, launcher: Optional[Launcher] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cache = CacheStore(settings.cache_dir)
        browsers = BrowserSessionManager(settings, launcher=launcher)
        app.state.service = ScreenshotService(cache, browsers, settings)

        # A broken cache directory degrades to "serve uncached", never to a failed startup.
        try:
            cache.ensure_dir()
        except OSError as e:
            logger.error("Cache directory %s is unusable: %s", settings.cache_dir, e)
        await cache.sweep()

        sweeper = asyncio.create_task(cache.sweep_daily()) if settings.daily_sweep else None
        logger.info("📸 Screenshot API ready, cache at %s", settings.cache_dir)
        yield
        if sweeper is not None:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
        await browsers.close()

    app = FastAPI(
        title="Screenshot API 📸",
        description="Captures web pages with a shared Chromium and caches each image for the rest of the day.",
        version=__version__,
        lifespan=lifespan,
    )

    # --- Error Responses ---
    @app.exception_handler(ScreenshotError)
    async def screenshot_error_handler(request: Request, exc: ScreenshotError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        error = "not_found" if exc.status_code == 404 else "http_error"
        message = "Endpoint not found. Check the URL." if exc.status_code == 404 else str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"error": error, "message": message})

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "message": "An unexpected error occurred. Try again later."},
        )

    # --- Routes ---
    @app.get("/health", tags=["Health"])
    async def health(service: ScreenshotService = Depends(get_service)):
        return {
            "status": "OK",
            "message": "Service is running normally.",
            "browser": service.browsers.status(),
            "cache": await service.cache.stats(),
        }

    @app.get(
        "/",
        summary="Take a Screenshot of a URL",
        description="Captures a viewport-sized screenshot. Identical requests on the same UTC day are served from cache.",
        tags=["Screenshot"],
        responses={
            200: {
                "description": "Screenshot image. `X-Cache` tells whether it came from the cache.",
                "content": {"image/jpeg": {}, "image/png": {}, "image/webp": {}},
            },
            400: {"description": "Missing or malformed url."},
            500: {"description": "The page could not be captured."},
        },
    )
    @app.get("/api/screenshot", include_in_schema=False)
    async def take_screenshot(
        url: Optional[str] = Query(None, description="The full URL of the website to capture."),
        width: Optional[str] = Query(None, description="Viewport width, clamped to 100-2000. Default 800."),
        height: Optional[str] = Query(None, description="Viewport height, clamped to 100-2000. Default 600."),
        format: Optional[str] = Query(None, description="jpeg, png or webp. Anything else means jpeg."),
        service: ScreenshotService = Depends(get_service),
    ):
        result = await service.handle(url, width, height, format)
        return Response(
            content=result.body,
            media_type=result.content_type,
            headers={
                "Content-Disposition": f'inline; filename="screenshot.{result.format}"',
                "Cache-Control": f"public, max-age={settings.cache_max_age}",
                "X-Cache": result.cache_status,
            },
        )

    return app


# --- Dependency to Get the Service ---
def get_service(request: Request) -> ScreenshotService:
    """Dependency to provide the screenshot service built in the lifespan."""
    return request.app.state.service


app = create_app()
