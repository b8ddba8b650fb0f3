"""
Unit Tests for Concurrent Chunk Compilation
"""

import asyncio

import pytest

from blockengine.builder import chunk_records
from blockengine.compiler import EMPTY_RESULT, RuleCompiler
from blockengine.models import Action, ActionKind, CompiledRuleRecord, Trigger

from conftest import FakeBackend


def make_chunks(count, per_chunk=2):
    records = [
        CompiledRuleRecord(Trigger(f"/ad{i}/"), Action(ActionKind.BLOCK))
        for i in range(count * per_chunk)
    ]
    return chunk_records(records, per_chunk, "c")


class SyncBackend:
    """Backend whose compile() is a plain function."""

    def compile(self, identifier, rule_list_json):
        return identifier.upper()


class NullBackend:
    async def compile(self, identifier, rule_list_json):
        return None


class TestRuleCompiler:

    @pytest.mark.asyncio
    async def test_all_succeed_in_chunk_order(self, backend):
        result = await RuleCompiler().compile(make_chunks(3), backend)

        assert [h.identifier for h in result.handles] == ["c_0", "c_1", "c_2"]
        assert all(h.rule_count == 2 for h in result.handles)
        assert result.succeeded == 3
        assert result.failed == 0

    @pytest.mark.asyncio
    async def test_partial_failure(self):
        backend = FakeBackend(fail_ids={"c_1"})
        result = await RuleCompiler().compile(make_chunks(3), backend)

        assert [h.identifier for h in result.handles] == ["c_0", "c_2"]
        assert result.succeeded == 2
        assert result.failed == 1
        assert result.failures[0][0] == "c_1"

    @pytest.mark.asyncio
    async def test_total_failure_is_still_a_result(self):
        backend = FakeBackend(fail_ids={"c_0", "c_1"})
        result = await RuleCompiler().compile(make_chunks(2), backend)

        assert result.handles == ()
        assert result.failed == 2

    @pytest.mark.asyncio
    async def test_chunks_submitted_concurrently(self):
        gate = asyncio.Event()
        backend = FakeBackend(gate=gate)
        task = asyncio.ensure_future(RuleCompiler().compile(make_chunks(3), backend))

        await backend.started.wait()
        for _ in range(5):
            await asyncio.sleep(0)
        assert sorted(backend.calls) == ["c_0", "c_1", "c_2"]
        assert not task.done()

        gate.set()
        result = await task
        assert result.succeeded == 3

    @pytest.mark.asyncio
    async def test_sync_backend(self):
        result = await RuleCompiler().compile(make_chunks(2), SyncBackend())
        assert result.handles == ("C_0", "C_1")

    @pytest.mark.asyncio
    async def test_missing_handle_counts_as_failure(self):
        result = await RuleCompiler().compile(make_chunks(1), NullBackend())

        assert result.succeeded == 0
        assert result.failed == 1

    @pytest.mark.asyncio
    async def test_no_chunks(self, backend):
        result = await RuleCompiler().compile((), backend)

        assert result is EMPTY_RESULT
        assert backend.calls == []
