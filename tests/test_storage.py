"""
Unit Tests for the Cache Store and Persisted State
"""

import json
import time

import pytest

from blockengine.storage import ENABLED_KEY, STATE_FILE, FileCacheStore, JsonStateStore


class TestFileCacheStore:

    @pytest.mark.asyncio
    async def test_missing_key(self, tmp_path):
        assert await FileCacheStore(tmp_path).read("list.json") is None

    @pytest.mark.asyncio
    async def test_write_then_read(self, tmp_path):
        store = FileCacheStore(tmp_path / "cache")
        before = time.time()

        assert await store.write("list.json", b"[]")
        entry = await store.read("list.json")

        assert entry.key == "list.json"
        assert entry.payload == b"[]"
        assert entry.fetched_at >= before - 2
        assert entry.is_fresh(7)
        assert not (tmp_path / "cache" / "list.json.tmp").exists()

    @pytest.mark.asyncio
    async def test_overwrite(self, tmp_path):
        store = FileCacheStore(tmp_path)
        await store.write("list.json", b"old")
        await store.write("list.json", b"new")

        assert (await store.read("list.json")).payload == b"new"

    def test_key_sanitised(self, tmp_path):
        path = FileCacheStore(tmp_path).path_for("../lists/a:b.json")

        assert path.parent == tmp_path
        assert path.name == ".._lists_a_b.json"

    @pytest.mark.asyncio
    async def test_unwritable_dir(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")

        assert not await FileCacheStore(blocker).write("list.json", b"[]")


class TestJsonStateStore:

    def test_default_enabled(self, tmp_path):
        assert JsonStateStore(tmp_path).load_enabled()
        assert not JsonStateStore(tmp_path).load_enabled(default=False)

    @pytest.mark.asyncio
    async def test_round_trip(self, tmp_path):
        assert await JsonStateStore(tmp_path).save_enabled(False)

        assert not JsonStateStore(tmp_path).load_enabled()
        assert json.loads((tmp_path / STATE_FILE).read_text()) == {ENABLED_KEY: False}

    @pytest.mark.asyncio
    async def test_keeps_other_keys(self, tmp_path):
        (tmp_path / STATE_FILE).write_text(json.dumps({"theme": "dark"}))

        await JsonStateStore(tmp_path).save_enabled(True)

        assert json.loads((tmp_path / STATE_FILE).read_text()) == {"theme": "dark", ENABLED_KEY: True}

    @pytest.mark.asyncio
    async def test_save_creates_dir_and_replaces_corrupt_file(self, tmp_path):
        state_dir = tmp_path / "state"
        store = JsonStateStore(state_dir)
        assert await store.save_enabled(True)
        (state_dir / STATE_FILE).write_text("{not json")

        assert await store.save_enabled(False)

        assert json.loads((state_dir / STATE_FILE).read_text()) == {ENABLED_KEY: False}
        assert not (state_dir / "state.tmp").exists()

    @pytest.mark.asyncio
    async def test_unwritable_dir(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")

        assert not await JsonStateStore(blocker).save_enabled(False)

    def test_corrupt_file_uses_default(self, tmp_path):
        (tmp_path / STATE_FILE).write_text("{not json")
        assert JsonStateStore(tmp_path).load_enabled()

    def test_non_bool_value_ignored(self, tmp_path):
        (tmp_path / STATE_FILE).write_text(json.dumps({ENABLED_KEY: "no"}))
        assert JsonStateStore(tmp_path).load_enabled()
