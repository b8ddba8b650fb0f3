"""
Unit Tests for the Rule Set Builder
"""

import json
import math

import pytest

from blockengine.builder import (
    DOWNLOADED_PREFIX,
    EMBEDDED_PREFIX,
    RuleSetBuilder,
    chunk_records,
    domain_block_record,
)
from blockengine.config import EngineConfig
from blockengine.converter import to_record
from blockengine.models import Action, ActionKind, CompiledRuleRecord, Provenance, Trigger
from blockengine.parser import parse_line

TEXT = """\
! test list
||aaa-ads.com^
||bbb-ads.com^
||aaa-ads.com^
##.ad
||ccc-ads.com^
"""


def make_records(count):
    return [CompiledRuleRecord(Trigger(f"/p{i}/"), Action(ActionKind.BLOCK)) for i in range(count)]


@pytest.fixture
def bare_builder():
    """Builder with no embedded tables, only the text passed to build()."""
    return RuleSetBuilder(
        EngineConfig(embedded_chunk_size=2, downloaded_chunk_size=2),
        blocked_domains=(),
        path_records=(),
        css_records=(),
    )


class TestChunking:

    @pytest.mark.parametrize("count,size", [(0, 3), (1, 3), (6, 3), (7, 3), (200, 50), (201, 50)])
    def test_chunk_bound(self, count, size):
        records = make_records(count)
        chunks = chunk_records(records, size, "x")

        assert len(chunks) == math.ceil(count / size)
        assert all(len(c) <= size for c in chunks)
        assert [r for c in chunks for r in c.records] == records

    def test_identifiers(self):
        chunks = chunk_records(make_records(5), 2, "embedded")
        assert [c.identifier for c in chunks] == ["embedded_0", "embedded_1", "embedded_2"]

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            chunk_records(make_records(1), 0, "x")


class TestBuild:

    def test_dedup_and_order(self, bare_builder):
        ruleset = bare_builder.build((TEXT,))
        expected = [
            to_record(parse_line(line))
            for line in ("||aaa-ads.com^", "||bbb-ads.com^", "##.ad", "||ccc-ads.com^")
        ]

        flat = [r for c in ruleset.embedded_chunks for r in c.records]
        assert flat == expected
        assert ruleset.total_rule_count == 4
        assert len(ruleset.embedded_chunks) == 2
        assert ruleset.stats.duplicate_pruned == 1
        assert ruleset.stats.parse_skipped == 1
        assert ruleset.provenance is Provenance.EMBEDDED_ONLY

    def test_build_is_idempotent(self):
        builder = RuleSetBuilder()
        first = builder.build()
        second = builder.build()

        assert first.total_rule_count == second.total_rule_count
        assert first.embedded_chunks == second.embedded_chunks

    def test_embedded_chunks_within_default_bound(self):
        ruleset = RuleSetBuilder().build()

        assert ruleset.total_rule_count > 100
        assert all(len(c) <= 200 for c in ruleset.embedded_chunks)
        assert all(c.identifier.startswith(EMBEDDED_PREFIX) for c in ruleset.embedded_chunks)

    def test_redundant_subdomains_pruned(self):
        builder = RuleSetBuilder(
            blocked_domains=("doubleclick.net", "ads.doubleclick.net", "criteo.com"),
            path_records=(),
            css_records=(),
        )
        ruleset = builder.build(())

        assert ruleset.stats.subdomain_pruned == 1
        assert ruleset.total_rule_count == 2
        assert domain_block_record("doubleclick.net") in ruleset.embedded_chunks[0].records

    def test_downloaded_records_appended(self, bare_builder, downloaded_payload):
        entries = json.loads(downloaded_payload)
        entries.append({"trigger": {"url-filter": ""}, "action": {"type": "block"}})
        entries.append(to_record(parse_line("||aaa-ads.com^")).to_dict())

        ruleset = bare_builder.build((TEXT,), entries)

        assert ruleset.provenance is Provenance.ENHANCED
        assert ruleset.embedded_rule_count == 4
        assert ruleset.downloaded_rule_count == 3
        assert ruleset.total_rule_count == 7
        assert ruleset.stats.downloaded_dropped == 1
        assert ruleset.stats.duplicate_pruned == 2
        assert [c.identifier for c in ruleset.downloaded_chunks] == [
            f"{DOWNLOADED_PREFIX}_0", f"{DOWNLOADED_PREFIX}_1",
        ]

    def test_downloaded_never_touches_embedded(self, bare_builder, downloaded_payload):
        plain = bare_builder.build((TEXT,))
        enhanced = bare_builder.build((TEXT,), json.loads(downloaded_payload))

        assert enhanced.embedded_chunks == plain.embedded_chunks
