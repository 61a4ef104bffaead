"""Daily on-disk screenshot cache.

Every entry is a single file named ``<YYYY-MM-DD>_<sha256>.<format>``. The date
prefix is both part of the entry's identity and the sweep's deletion criterion,
so no separate index is kept. Dates are UTC calendar days.
"""

import asyncio
import hashlib
import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Optional

from .params import CaptureRequest

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".part"

# Entries and their in-progress temp files. Nothing else in the directory is ours.
ENTRY_NAME = re.compile(r"^\d{4}-\d{2}-\d{2}_[0-9a-f]{64}\.(jpeg|png|webp)(\.[^.]+\.part)?$")


def current_date() -> date:
    """The UTC calendar day used for cache keys and sweeps."""
    return datetime.now(timezone.utc).date()


def seconds_until_next_day(now: Optional[datetime] = None) -> float:
    now = now or datetime.now(timezone.utc)
    midnight = datetime.combine(now.date() + timedelta(days=1), time.min, tzinfo=timezone.utc)
    # A second of slack so the sweep never runs just before the date flips.
    return (midnight - now).total_seconds() + 1


@dataclass(frozen=True)
class CacheKey:
    date_stamp: str
    digest: str
    format: str

    @property
    def filename(self) -> str:
        return f"{self.date_stamp}_{self.digest}.{self.format}"


@dataclass(frozen=True)
class CacheEntry:
    key: CacheKey
    data: bytes
    format: str

    @property
    def content_type(self) -> str:
        return f"image/{self.format}"


def derive_cache_key(request: CaptureRequest, today: date) -> CacheKey:
    """Hash the full URL, both dimensions and the format, stamped with ``today``."""
    payload = json.dumps(
        {
            "url": request.target_url,
            "width": request.width,
            "height": request.height,
            "format": request.format,
        },
        sort_keys=True,
    )
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return CacheKey(date_stamp=today.isoformat(), digest=digest, format=request.format)


def entry_date(name: str) -> Optional[date]:
    """Return the date encoded in a cache filename, or None if it is not a cache file."""
    if not ENTRY_NAME.match(name):
        return None
    prefix = name.partition("_")[0]
    try:
        return date.fromisoformat(prefix)
    except ValueError:
        return None


class CacheStore:
    """Owns the cache directory. Reads fail open and writes never raise."""

    def __init__(self, cache_dir: Path):
        self.cache_dir = Path(cache_dir)

    def path_for(self, key: CacheKey) -> Path:
        return self.cache_dir / key.filename

    def ensure_dir(self) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    # --- Lookup ---
    async def lookup(self, key: CacheKey) -> Optional[CacheEntry]:
        try:
            data = await asyncio.to_thread(self._read, self.path_for(key))
        except OSError as e:
            logger.warning("Cache read failed for %s, treating as miss: %s", key.filename, e)
            return None
        if data is None:
            return None
        return CacheEntry(key=key, data=data, format=key.format)

    def _read(self, path: Path) -> Optional[bytes]:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    # --- Store ---
    async def store(self, key: CacheKey, data: bytes) -> bool:
        try:
            await asyncio.to_thread(self._write, self.path_for(key), data)
        except OSError as e:
            logger.warning("Cache write failed for %s, serving uncached: %s", key.filename, e)
            return False
        return True

    def _write(self, path: Path, data: bytes) -> None:
        self.ensure_dir()
        # Readers only ever see complete files: write aside, then rename over.
        fd, tmp_name = tempfile.mkstemp(dir=self.cache_dir, prefix=f"{path.name}.", suffix=TEMP_SUFFIX)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    # --- Sweep ---
    async def sweep(self, today: Optional[date] = None) -> int:
        """Delete every entry not stamped with ``today``. Returns the number removed."""
        today = today or current_date()
        try:
            removed = await asyncio.to_thread(self._sweep, today)
        except OSError as e:
            logger.error("Cache sweep of %s failed: %s", self.cache_dir, e)
            return 0
        logger.info("Cache sweep removed %d stale entr%s", removed, "y" if removed == 1 else "ies")
        return removed

    def _sweep(self, today: date) -> int:
        if not self.cache_dir.is_dir():
            return 0
        removed = 0
        for path in list(self.cache_dir.iterdir()):
            stamped = entry_date(path.name)
            if stamped is None or stamped == today or not path.is_file():
                continue
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Could not delete stale cache entry %s: %s", path.name, e)
                continue
            removed += 1
        return removed

    async def sweep_daily(self) -> None:
        """Sweep again at every UTC midnight until cancelled."""
        while True:
            await asyncio.sleep(seconds_until_next_day())
            await self.sweep()

    async def stats(self, today: Optional[date] = None) -> dict:
        """Number and total size of today's entries."""
        return await asyncio.to_thread(self._stats, today or current_date())

    def _stats(self, today: date) -> dict:
        entries = 0
        total_bytes = 0
        try:
            for path in self.cache_dir.iterdir():
                if path.is_file() and entry_date(path.name) == today and not path.name.endswith(TEMP_SUFFIX):
                    entries += 1
                    total_bytes += path.stat().st_size
        except OSError as e:
            logger.debug("Cache stats unavailable: %s", e)
        return {"entries": entries, "size_bytes": total_bytes}
