"""
Shared fixtures and in-memory collaborators for the engine tests.
"""

import asyncio
import json
import time
from typing import NamedTuple

import pytest

from blockengine.errors import DownloadError, RuleCompileError
from blockengine.models import CacheEntry

SOURCE_A = "https://lists.example/a.json"
SOURCE_B = "https://lists.example/b.json"


class FakeHandle(NamedTuple):
    identifier: str
    rule_count: int


class FakeBackend:
    """Compile backend that rejects chosen identifiers and can be held on a gate."""

    def __init__(self, fail_ids=(), gate=None):
        self.fail_ids = set(fail_ids)
        self.gate = gate
        self.calls = []
        self.started = asyncio.Event()

    async def compile(self, identifier, rule_list_json):
        self.calls.append(identifier)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if identifier in self.fail_ids:
            raise RuleCompileError(identifier, "rejected by backend")
        return FakeHandle(identifier, len(json.loads(rule_list_json)))


class FakeFetcher:
    """
    Fetcher with scripted responses per URL.

    Each URL maps to a list of bytes or exceptions, consumed in order; the
    last item repeats. Unknown URLs always fail.
    """

    def __init__(self, responses=None, gate=None):
        self.responses = {url: list(items) for url, items in (responses or {}).items()}
        self.gate = gate
        self.calls = []
        self.started = asyncio.Event()

    async def get(self, url, timeout):
        self.calls.append(url)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        queue = self.responses.get(url) or [DownloadError(url, "unreachable")]
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item


class MemoryCacheStore:
    def __init__(self, entries=None):
        self.entries = dict(entries or {})
        self.writes = []

    async def read(self, key):
        return self.entries.get(key)

    async def write(self, key, payload):
        self.entries[key] = CacheEntry(key, time.time(), payload)
        self.writes.append(key)
        return True


class RecordingSink:
    def __init__(self):
        self.calls = []

    def apply(self, handles, scripts):
        self.calls.append((tuple(handles), tuple(scripts)))


DOWNLOADED_RULES = [
    {
        "trigger": {"url-filter": "^https?://([^/]+\\.)?tracker-one\\.example[/:?]"},
        "action": {"type": "block"},
    },
    {
        "trigger": {"url-filter": "/promo-banner/", "load-type": ["third-party"]},
        "action": {"type": "block"},
    },
    {
        "trigger": {"url-filter": ".*", "if-domain": ["*news.example"]},
        "action": {"type": "css-display-none", "selector": ".promo"},
    },
]


@pytest.fixture
def downloaded_payload():
    """A valid content-blocker JSON list with three rules not shipped embedded."""
    return json.dumps(DOWNLOADED_RULES).encode()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def memory_cache():
    return MemoryCacheStore()


@pytest.fixture
def sleeps():
    """Records backoff delays instead of sleeping."""
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    fake_sleep.delays = delays
    return fake_sleep
