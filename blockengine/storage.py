"""
storage.py - On-disk cache for downloaded lists and the persisted enabled flag.

Cache files are plain blobs; their modification time is the fetch time used
by the freshness check. Writes go to a temp file first and are moved into
place, so a crash mid-write never leaves a truncated list behind.

Storage failures are logged and reported as "no cache" / "not written".
Losing the cache only costs a download.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Protocol

import aiofiles
import aiofiles.os

from blockengine.models import CacheEntry

logger = logging.getLogger(__name__)

STATE_FILE = "state.json"
ENABLED_KEY = "adBlockEnabled"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class CacheStore(Protocol):
    async def read(self, key: str) -> CacheEntry | None:
        ...

    async def write(self, key: str, payload: bytes) -> bool:
        ...


class FileCacheStore:
    """Cache store keeping one file per key inside ``cache_dir``."""

    def __init__(self, cache_dir: str | Path) -> None:
        self.cache_dir = Path(cache_dir)

    def path_for(self, key: str) -> Path:
        return self.cache_dir / _UNSAFE_CHARS.sub("_", key)

    async def read(self, key: str) -> CacheEntry | None:
        path = self.path_for(key)
        try:
            if not await aiofiles.os.path.exists(path):
                return None
            stat = await aiofiles.os.stat(path)
            async with aiofiles.open(path, "rb") as f:
                payload = await f.read()
        except OSError as e:
            logger.warning("Could not read cache %s: %s", path, e)
            return None
        return CacheEntry(key=key, fetched_at=stat.st_mtime, payload=payload)

    async def write(self, key: str, payload: bytes) -> bool:
        path = self.path_for(key)
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            await aiofiles.os.makedirs(self.cache_dir, exist_ok=True)
            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(payload)
            await aiofiles.os.replace(temp_path, path)
        except OSError as e:
            logger.warning("Could not write cache %s: %s", path, e)
            return False
        logger.info("Cached %s (%dKB)", key, len(payload) // 1024)
        return True


class JsonStateStore:
    """
    Persists the engine's enabled flag in ``state.json``.

    The flag is the only engine state that survives a restart. It is read
    once, synchronously, when the engine is constructed; saves happen from
    the event loop and go through aiofiles.
    """

    def __init__(self, state_dir: str | Path) -> None:
        self.path = Path(state_dir) / STATE_FILE

    def _parse(self, text: str) -> dict:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning("Could not load %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                return self._parse(f.read())
        except OSError as e:
            logger.warning("Could not load %s: %s", self.path, e)
            return {}

    async def _aload(self) -> dict:
        try:
            if not await aiofiles.os.path.exists(self.path):
                return {}
            async with aiofiles.open(self.path, encoding="utf-8") as f:
                return self._parse(await f.read())
        except OSError as e:
            logger.warning("Could not load %s: %s", self.path, e)
            return {}

    def load_enabled(self, default: bool = True) -> bool:
        value = self._load().get(ENABLED_KEY)
        return value if isinstance(value, bool) else default

    async def save_enabled(self, enabled: bool) -> bool:
        """Merge the flag into ``state.json``. Returns False if it could not be written."""
        state = await self._aload()
        state[ENABLED_KEY] = enabled
        temp_path = self.path.with_suffix(".tmp")
        try:
            await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(state, indent=2))
            await aiofiles.os.replace(temp_path, self.path)
        except OSError as e:
            logger.warning("Could not save %s: %s", self.path, e)
            return False
        return True
