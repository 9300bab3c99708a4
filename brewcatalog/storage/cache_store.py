"""
TTL-gated byte cache for raw feed payloads.

Each key maps to one file under the cache directory. Freshness is judged by
the file's modification time; there is no eviction beyond staleness.
"""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Optional

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 6 * 3600


class CacheStore:
    """File-backed cache keyed by source identifier."""

    def __init__(
        self,
        cache_dir: Path,
        ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        invalidated: bool = False,
    ):
        self.cache_dir = Path(cache_dir)
        self.ttl = ttl
        self.clock = clock
        self._invalidated = invalidated

    @property
    def invalidated(self) -> bool:
        return self._invalidated

    def invalidate(self) -> None:
        """Bypass `read` until `reset_invalidation` is called."""
        self._invalidated = True

    def reset_invalidation(self) -> None:
        self._invalidated = False

    def path_for(self, key: str) -> Path:
        return self.cache_dir / key

    async def read(self, key: str) -> Optional[bytes]:
        """
        Return the cached bytes for `key`, or None when absent, stale,
        unreadable, or the store is invalidated.
        """
        if self._invalidated:
            return None

        path = self.path_for(key)
        try:
            stat = await aiofiles.os.stat(path)
        except OSError:
            return None

        if self.clock() - stat.st_mtime >= self.ttl:
            logger.debug(f"Cache entry {key} is stale")
            return None

        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except OSError as e:
            logger.warning(f"Failed to read cache at {path}: {e}")
            return None

    async def write(self, key: str, data: bytes) -> None:
        """Persist `data` under `key`. Failures are logged, never raised."""
        path = self.path_for(key)
        tmp_path = path.with_name(f"{path.name}.tmp")
        try:
            await aiofiles.os.makedirs(self.cache_dir, exist_ok=True)
            # Write to a temp file first to avoid leaving a partial payload behind.
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(data)
            await aiofiles.os.replace(tmp_path, path)
        except OSError as e:
            logger.warning(f"Failed to write to cache at {path}: {e}")
