import asyncio
from datetime import date

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from shotcache.errors import CaptureFailed, InternalError, InvalidRequest, RenderEngineUnavailable
from shotcache.service import ScreenshotService


@pytest.mark.asyncio
async def test_miss_then_hit(service):
    first = await service.handle("https://example.com", "800", "600", "jpeg")
    second = await service.handle("https://example.com", "800", "600", "jpeg")

    assert first.cache_status == "MISS"
    assert second.cache_status == "HIT"
    assert second.body == first.body
    assert second.content_type == "image/jpeg"
    assert service.invocations == 1


@pytest.mark.asyncio
async def test_hit_never_touches_the_browser(service, renderer):
    await service.handle("https://example.com")
    launches = service.browsers.launches
    acquired = service.browsers.contexts_acquired

    for _ in range(5):
        result = await service.handle("https://example.com")
        assert result.cache_status == "HIT"

    assert service.invocations == 1
    assert service.browsers.launches == launches
    assert service.browsers.contexts_acquired == acquired


@pytest.mark.asyncio
async def test_different_parameters_are_separate_entries(service):
    await service.handle("https://example.com", format="png")
    result = await service.handle("https://example.com", format="jpeg")
    assert result.cache_status == "MISS"
    assert service.invocations == 2


@pytest.mark.asyncio
async def test_new_day_is_a_miss(cache, browsers, settings):
    days = iter([date(2026, 10, 18), date(2026, 10, 19)])
    service = ScreenshotService(cache, browsers, settings, today=lambda: next(days))
    await service.handle("https://example.com")
    result = await service.handle("https://example.com")
    assert result.cache_status == "MISS"


@pytest.mark.asyncio
async def test_invalid_request_never_captures(service):
    with pytest.raises(InvalidRequest):
        await service.handle(None)
    assert service.invocations == 0
    assert service.browsers.launches == 0


@pytest.mark.asyncio
async def test_capture_failure_releases_context_and_caches_nothing(service, renderer, cache):
    renderer.navigation_error = PlaywrightTimeoutError("Timeout 30000ms exceeded.")

    with pytest.raises(CaptureFailed):
        await service.handle("https://example.com")

    assert service.browsers.contexts_acquired == service.browsers.contexts_released == 1
    assert all(context.closed for context in renderer.contexts)
    assert not cache.cache_dir.exists() or list(cache.cache_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_acquire_release_balance_under_concurrency(service, renderer):
    urls = [f"https://example.com/{i}" for i in range(8)]
    renderer.navigation_error = None
    results = await asyncio.gather(*(service.handle(url) for url in urls))

    assert all(result.cache_status == "MISS" for result in results)
    assert len(renderer.browsers) == 1
    assert service.browsers.contexts_acquired == service.browsers.contexts_released == 8


@pytest.mark.asyncio
async def test_browser_start_failure(service, renderer):
    renderer.launch_error = OSError("chromium missing")
    with pytest.raises(RenderEngineUnavailable):
        await service.handle("https://example.com")


@pytest.mark.asyncio
async def test_cache_write_failure_still_serves(service, cache, monkeypatch):
    def broken_write(path, data):
        raise OSError("disk full")

    monkeypatch.setattr(cache, "_write", broken_write)
    result = await service.handle("https://example.com")
    assert result.cache_status == "MISS"
    assert result.body == b"jpeg:800x600"


@pytest.mark.asyncio
async def test_unexpected_error_becomes_internal_error(service, monkeypatch):
    async def explode(key):
        raise KeyError("surprise")

    monkeypatch.setattr(service.cache, "lookup", explode)
    with pytest.raises(InternalError) as exc:
        await service.handle("https://example.com")
    assert exc.value.to_dict()["error"] == "internal_error"
    assert "surprise" not in exc.value.to_dict()["message"]
