"""
downloader.py - HTTP fetch collaborator for supplemental lists.

One GET per call with a hard timeout. Retrying, backoff and falling back to
the cache are the update coordinator's job; this module only turns every way
a download can fail into a DownloadError.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import aiohttp

from blockengine.errors import DownloadError

logger = logging.getLogger(__name__)

USER_AGENT = "blockengine/1.0 (+list refresh)"


class Fetcher(Protocol):
    async def get(self, url: str, timeout: float) -> bytes:
        ...


class AiohttpFetcher:
    """Fetcher backed by aiohttp. A session is opened per download."""

    def __init__(self, headers: dict[str, str] | None = None) -> None:
        self.headers = {"User-Agent": USER_AGENT, **(headers or {})}

    async def get(self, url: str, timeout: float) -> bytes:
        """
        Download ``url``.

        Raises:
            DownloadError: On timeout, transport error or non-200 status
        """
        try:
            async with aiohttp.ClientSession(headers=self.headers) as session:
                async with session.get(
                    url,
                    timeout=aiohttp.ClientTimeout(total=timeout),
                    allow_redirects=True,
                ) as response:
                    if response.status != 200:
                        raise DownloadError(url, f"HTTP {response.status}", response.status)
                    content = await response.read()
        except asyncio.TimeoutError as e:
            raise DownloadError(url, "Timeout") from e
        except aiohttp.ClientError as e:
            raise DownloadError(url, str(e) or type(e).__name__) from e

        logger.debug("Downloaded %s (%d bytes)", url, len(content))
        return content
