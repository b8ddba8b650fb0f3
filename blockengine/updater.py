"""
updater.py - Background refresh of supplemental lists.

One refresh cycle:

    CheckCache
      fresh  -> decode -> Merge/Recompile/Publish
      stale/missing
        -> DownloadAttempt(source 0, attempt 0)

    DownloadAttempt(i, a)
      ok, payload valid    -> Cache -> Merge/Recompile/Publish
      ok, payload invalid  -> DownloadAttempt(i, a+1), no backoff
      failure / timeout    -> backoff(a) -> DownloadAttempt(i, a+1)
      a+1 == max_attempts  -> DownloadAttempt(i+1, 0)

    All sources exhausted
      -> stale cache if present (decoded and merged as usual), else nothing

Whatever happens, the embedded rules stay active; this path can only add.

Only one cycle runs at a time. A refresh requested while one is in flight
returns immediately (coalesced); the next launch or cache expiry retries.
A cycle whose engine session ended (``is_current()`` turned False) keeps
going to completion or cancellation but never publishes.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, NamedTuple, Sequence

from blockengine.builder import RuleSetBuilder
from blockengine.compiler import CompileBackend, CompileResult, RuleCompiler
from blockengine.config import EngineConfig
from blockengine.converter import decode_payload
from blockengine.downloader import Fetcher
from blockengine.embedded import EMBEDDED_FILTER_TEXT
from blockengine.errors import PayloadError
from blockengine.models import CacheEntry, RuleSet
from blockengine.storage import CacheStore

logger = logging.getLogger(__name__)

#: Receives the merged rule set and the compile result of its downloaded
#: chunks; returns True if it was published.
PublishCallback = Callable[[RuleSet, CompileResult], bool]


class RefreshOutcome(NamedTuple):
    """Result of one refresh cycle."""
    success: bool
    source: str | None = None
    from_cache: bool = False
    stale: bool = False
    record_count: int = 0
    error: str | None = None


COALESCED = RefreshOutcome(False, error="refresh already in flight")
CANCELLED = RefreshOutcome(False, error="engine session ended")


def _always_current() -> bool:
    return True


class ListUpdateCoordinator:
    """Owns the cache-freshness policy and the download retry state machine."""

    def __init__(
        self,
        fetcher: Fetcher,
        backend: CompileBackend,
        publish: PublishCallback,
        *,
        config: EngineConfig | None = None,
        builder: RuleSetBuilder | None = None,
        compiler: RuleCompiler | None = None,
        embedded_rule_text: Sequence[str] = EMBEDDED_FILTER_TEXT,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.fetcher = fetcher
        self.backend = backend
        self.publish = publish
        self.config = config or EngineConfig()
        self.builder = builder or RuleSetBuilder(self.config)
        self.compiler = compiler or RuleCompiler()
        self.embedded_rule_text = tuple(embedded_rule_text)
        self._sleep = sleep
        self._clock = clock
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def refresh(
        self,
        sources: Sequence[str],
        cache: CacheStore,
        *,
        is_current: Callable[[], bool] = _always_current,
    ) -> RefreshOutcome:
        """
        Run one refresh cycle.

        Args:
            sources: Mirrors to try, in order
            cache: Cache store collaborator
            is_current: Returns False once the engine session that started
                this cycle is over; results are then discarded

        Returns:
            RefreshOutcome describing what was (or was not) published
        """
        if self._in_flight:
            logger.debug("Refresh already in flight, coalescing")
            return COALESCED

        self._in_flight = True
        try:
            return await self._run(sources, cache, is_current)
        finally:
            self._in_flight = False

    # =========================================================================
    # STATE MACHINE
    # =========================================================================

    async def _run(
        self,
        sources: Sequence[str],
        cache: CacheStore,
        is_current: Callable[[], bool],
    ) -> RefreshOutcome:
        key = self.config.cache_key
        entry = await cache.read(key)

        if entry is not None and entry.is_fresh(self.config.cache_max_age_days, now=self._clock()):
            entries = self._decode(entry.payload, "cache")
            if entries is not None:
                logger.info("Loaded list from cache (%.1f days old)", entry.age_seconds(self._clock()) / 86400)
                return await self._merge(entries, "cache", is_current, from_cache=True)
            entry = None

        last_error: str | None = None

        for url in sources:
            for attempt in range(self.config.max_attempts):
                if not is_current():
                    return CANCELLED

                logger.info("Downloading %s (attempt %d/%d)", url, attempt + 1, self.config.max_attempts)
                try:
                    payload = await self.fetcher.get(url, self.config.fetch_timeout)
                except Exception as e:  # noqa: BLE001
                    last_error = str(e) or type(e).__name__
                    logger.warning("Download of %s failed: %s", url, last_error)
                    if attempt + 1 < self.config.max_attempts:
                        await self._sleep(self.config.backoff_delay(attempt))
                    continue

                entries = self._decode(payload, url)
                if entries is None:
                    last_error = f"invalid payload from {url}"
                    continue

                await cache.write(key, payload)
                return await self._merge(entries, url, is_current)

        return await self._fallback(entry, is_current, last_error)

    async def _fallback(
        self,
        entry: CacheEntry | None,
        is_current: Callable[[], bool],
        last_error: str | None,
    ) -> RefreshOutcome:
        if entry is not None:
            entries = self._decode(entry.payload, "stale cache")
            if entries is not None:
                logger.info("All sources failed, using stale cache")
                return await self._merge(entries, "cache", is_current, from_cache=True, stale=True)

        logger.warning("All sources failed and no cache; embedded rules only")
        return RefreshOutcome(False, error=last_error or "no sources configured")

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _decode(self, payload: bytes, origin: str) -> list[Any] | None:
        try:
            return decode_payload(payload, min_pattern_length=self.config.min_pattern_length)
        except PayloadError as e:
            logger.warning("Rejected list from %s: %s", origin, e)
            return None

    async def _merge(
        self,
        entries: Sequence[Any],
        source: str,
        is_current: Callable[[], bool],
        *,
        from_cache: bool = False,
        stale: bool = False,
    ) -> RefreshOutcome:
        """Merge into a new rule set, compile its downloaded chunks, publish."""
        ruleset = self.builder.build(self.embedded_rule_text, entries)
        if not ruleset.downloaded_chunks:
            return RefreshOutcome(False, source, from_cache, stale, error="list adds no new rules")

        if not is_current():
            return CANCELLED
        result = await self.compiler.compile(ruleset.downloaded_chunks, self.backend)
        if not is_current():
            return CANCELLED

        if result.succeeded == 0:
            return RefreshOutcome(False, source, from_cache, stale, error="no downloaded chunk compiled")

        published = self.publish(ruleset, result)
        if not published:
            return CANCELLED
        return RefreshOutcome(True, source, from_cache, stale, ruleset.downloaded_rule_count)
