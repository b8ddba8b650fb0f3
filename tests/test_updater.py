"""
Unit Tests for the List Update Coordinator

Covers the cache freshness check, the per-source retry loop with backoff,
stale-cache fallback, coalescing and discarding results of ended sessions.
"""

import asyncio
import time

import pytest

from blockengine.builder import RuleSetBuilder
from blockengine.config import EngineConfig
from blockengine.errors import DownloadError
from blockengine.models import CacheEntry, Provenance
from blockengine.updater import CANCELLED, COALESCED, ListUpdateCoordinator

from conftest import SOURCE_A, SOURCE_B, FakeBackend, FakeFetcher, MemoryCacheStore

CONFIG = EngineConfig(sources=(SOURCE_A, SOURCE_B), max_attempts=2, backoff_base=1.0)
KEY = CONFIG.cache_key


class Publisher:
    def __init__(self, accept=True):
        self.accept = accept
        self.calls = []

    def __call__(self, ruleset, result):
        self.calls.append((ruleset, result))
        return self.accept


def make_coordinator(fetcher, backend=None, publish=None, sleep=None, config=CONFIG):
    kwargs = {"config": config, "builder": RuleSetBuilder(config)}
    if sleep is not None:
        kwargs["sleep"] = sleep
    return ListUpdateCoordinator(fetcher, backend or FakeBackend(), publish or Publisher(), **kwargs)


def cache_with(payload, age_days):
    return MemoryCacheStore({KEY: CacheEntry(KEY, time.time() - age_days * 86400, payload)})


class TestCacheFreshness:

    @pytest.mark.asyncio
    async def test_fresh_cache_skips_download(self, downloaded_payload):
        fetcher = FakeFetcher()
        publish = Publisher()
        coordinator = make_coordinator(fetcher, publish=publish)

        outcome = await coordinator.refresh(CONFIG.sources, cache_with(downloaded_payload, 1))

        assert outcome.success
        assert outcome.from_cache
        assert not outcome.stale
        assert outcome.record_count == 3
        assert fetcher.calls == []
        ruleset, result = publish.calls[0]
        assert ruleset.provenance is Provenance.ENHANCED
        assert [h.identifier for h in result.handles] == ["downloaded_0"]

    @pytest.mark.asyncio
    async def test_stale_cache_triggers_download(self, downloaded_payload, sleeps):
        fetcher = FakeFetcher({SOURCE_A: [downloaded_payload]})
        cache = cache_with(b"[Adblock Plus 2.0]\n||old-tracker.example^\n", 8)
        coordinator = make_coordinator(fetcher, sleep=sleeps)

        outcome = await coordinator.refresh(CONFIG.sources, cache)

        assert outcome.success
        assert outcome.source == SOURCE_A
        assert not outcome.from_cache
        assert fetcher.calls == [SOURCE_A]
        assert cache.entries[KEY].payload == downloaded_payload

    @pytest.mark.asyncio
    async def test_corrupt_fresh_cache_is_refetched(self, downloaded_payload, sleeps):
        fetcher = FakeFetcher({SOURCE_A: [downloaded_payload]})
        coordinator = make_coordinator(fetcher, sleep=sleeps)

        outcome = await coordinator.refresh(CONFIG.sources, cache_with(b"[{broken", 1))

        assert outcome.success
        assert fetcher.calls == [SOURCE_A]


class TestRetryLoop:

    @pytest.mark.asyncio
    async def test_retries_then_next_source(self, downloaded_payload, sleeps):
        fetcher = FakeFetcher({
            SOURCE_A: [DownloadError(SOURCE_A, "HTTP 503", 503)],
            SOURCE_B: [asyncio.TimeoutError(), downloaded_payload],
        })
        coordinator = make_coordinator(fetcher, sleep=sleeps)

        outcome = await coordinator.refresh(CONFIG.sources, MemoryCacheStore())

        assert outcome.success
        assert outcome.source == SOURCE_B
        assert fetcher.calls == [SOURCE_A, SOURCE_A, SOURCE_B, SOURCE_B]
        assert sleeps.delays == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_backoff_grows_per_attempt(self, sleeps):
        config = EngineConfig(sources=(SOURCE_A,), max_attempts=4, backoff_base=0.5, backoff_max=1.5)
        fetcher = FakeFetcher()
        coordinator = make_coordinator(fetcher, sleep=sleeps, config=config)

        outcome = await coordinator.refresh(config.sources, MemoryCacheStore())

        assert not outcome.success
        assert sleeps.delays == [0.5, 1.0, 1.5]
        assert len(fetcher.calls) == 4

    @pytest.mark.asyncio
    async def test_invalid_payload_retried_without_backoff(self, downloaded_payload, sleeps):
        fetcher = FakeFetcher({SOURCE_A: [b"{}", downloaded_payload]})
        cache = MemoryCacheStore()
        coordinator = make_coordinator(fetcher, sleep=sleeps)

        outcome = await coordinator.refresh(CONFIG.sources, cache)

        assert outcome.success
        assert fetcher.calls == [SOURCE_A, SOURCE_A]
        assert sleeps.delays == []
        assert cache.writes == [KEY]

    @pytest.mark.asyncio
    async def test_text_list_accepted(self, sleeps):
        fetcher = FakeFetcher({SOURCE_A: [b"! list\n||brand-new-tracker.example^\nnews.example##.promo\n"]})
        coordinator = make_coordinator(fetcher, sleep=sleeps)

        outcome = await coordinator.refresh(CONFIG.sources, MemoryCacheStore())

        assert outcome.success
        assert outcome.record_count == 2

    @pytest.mark.asyncio
    async def test_html_page_rejected(self, sleeps):
        page = b"<!DOCTYPE html>\n<html>\n<body>\nWelcome\n</body>\n</html>\n"
        fetcher = FakeFetcher({SOURCE_A: [page], SOURCE_B: [page]})
        cache = MemoryCacheStore()
        publish = Publisher()
        coordinator = make_coordinator(fetcher, publish=publish, sleep=sleeps)

        outcome = await coordinator.refresh(CONFIG.sources, cache)

        assert not outcome.success
        assert fetcher.calls == [SOURCE_A, SOURCE_A, SOURCE_B, SOURCE_B]
        assert sleeps.delays == []
        assert cache.writes == []
        assert publish.calls == []


class TestFallback:

    @pytest.mark.asyncio
    async def test_stale_cache_used_when_all_sources_fail(self, downloaded_payload, sleeps):
        fetcher = FakeFetcher()
        publish = Publisher()
        coordinator = make_coordinator(fetcher, publish=publish, sleep=sleeps)

        outcome = await coordinator.refresh(CONFIG.sources, cache_with(downloaded_payload, 30))

        assert outcome.success
        assert outcome.from_cache
        assert outcome.stale
        assert len(fetcher.calls) == 4
        ruleset, _ = publish.calls[0]
        assert ruleset.downloaded_rule_count == 3

    @pytest.mark.asyncio
    async def test_nothing_published_without_cache(self, sleeps):
        publish = Publisher()
        coordinator = make_coordinator(FakeFetcher(), publish=publish, sleep=sleeps)

        outcome = await coordinator.refresh(CONFIG.sources, MemoryCacheStore())

        assert not outcome.success
        assert "unreachable" in outcome.error
        assert publish.calls == []

    @pytest.mark.asyncio
    async def test_all_downloaded_chunks_rejected(self, downloaded_payload, sleeps):
        publish = Publisher()
        coordinator = make_coordinator(
            FakeFetcher({SOURCE_A: [downloaded_payload]}),
            backend=FakeBackend(fail_ids={"downloaded_0"}),
            publish=publish,
            sleep=sleeps,
        )

        outcome = await coordinator.refresh(CONFIG.sources, MemoryCacheStore())

        assert not outcome.success
        assert publish.calls == []

    @pytest.mark.asyncio
    async def test_list_with_only_known_rules(self, sleeps):
        publish = Publisher()
        coordinator = make_coordinator(
            FakeFetcher({SOURCE_A: [b"! list\n||doubleclick.net^\n"]}), publish=publish, sleep=sleeps
        )

        outcome = await coordinator.refresh(CONFIG.sources, MemoryCacheStore())

        assert not outcome.success
        assert outcome.error == "list adds no new rules"
        assert publish.calls == []


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_second_refresh_coalesced(self, downloaded_payload):
        gate = asyncio.Event()
        fetcher = FakeFetcher({SOURCE_A: [downloaded_payload]}, gate=gate)
        coordinator = make_coordinator(fetcher)
        cache = MemoryCacheStore()

        first = asyncio.ensure_future(coordinator.refresh(CONFIG.sources, cache))
        await fetcher.started.wait()

        assert coordinator.in_flight
        assert await coordinator.refresh(CONFIG.sources, cache) is COALESCED

        gate.set()
        outcome = await first
        assert outcome.success
        assert not coordinator.in_flight
        assert fetcher.calls == [SOURCE_A]

    @pytest.mark.asyncio
    async def test_ended_session_never_publishes(self, downloaded_payload):
        gate = asyncio.Event()
        fetcher = FakeFetcher({SOURCE_A: [downloaded_payload]}, gate=gate)
        backend = FakeBackend()
        publish = Publisher()
        coordinator = make_coordinator(fetcher, backend=backend, publish=publish)
        session = {"current": True}

        task = asyncio.ensure_future(coordinator.refresh(
            CONFIG.sources, MemoryCacheStore(), is_current=lambda: session["current"]
        ))
        await fetcher.started.wait()
        session["current"] = False
        gate.set()

        assert await task is CANCELLED
        assert backend.calls == []
        assert publish.calls == []

    @pytest.mark.asyncio
    async def test_rejected_publish_reported_cancelled(self, downloaded_payload):
        coordinator = make_coordinator(
            FakeFetcher({SOURCE_A: [downloaded_payload]}), publish=Publisher(accept=False)
        )

        assert await coordinator.refresh(CONFIG.sources, MemoryCacheStore()) is CANCELLED
