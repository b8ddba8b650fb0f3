"""
builder.py - Rule Set Builder with Deduplication and Chunking

Third stage of the engine. Merges every rule source into one immutable
RuleSet of size-bounded chunks the compile backend can swallow.

SOURCES (in output order):
    1. Embedded filter text      parsed + converted
    2. Embedded domain table     one domain-anchored third-party block record
                                 per domain, redundant subdomains pruned
    3. Embedded path records     already in record form
    4. Embedded CSS records      already in record form
    5. Downloaded records        validated, appended in their own chunks

DEDUPLICATION:
    Records are frozen dataclasses, so structural equality (trigger + action)
    is plain set membership. The first occurrence wins and keeps its
    position; later repeats, across or within sources, are dropped. Building
    twice from the same input gives the same rule set.

CHUNKING:
    The backend has an undocumented per-list limit. Embedded records are cut
    into small chunks (compiled synchronously at launch), downloaded records
    into large ones (compiled in the background). Chunks hold whole records
    only; concatenating every chunk in order gives back the deduplicated
    record list exactly once.

PROVENANCE:
    Embedded chunks are never replaced by downloaded ones. A set with any
    downloaded chunk is ENHANCED, otherwise EMBEDDED_ONLY.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence

from blockengine.config import EngineConfig
from blockengine.converter import record_from_dict, to_record
from blockengine.domains import prune_redundant_subdomains
from blockengine.embedded import (
    BLOCKED_DOMAINS,
    CSS_HIDE_RECORDS,
    EMBEDDED_FILTER_TEXT,
    PATH_RECORDS,
)
from blockengine.models import (
    BuildStats,
    CompiledRuleRecord,
    NetworkRule,
    PartyConstraint,
    Provenance,
    RuleChunk,
    RuleSet,
)
from blockengine.parser import parse_lines

logger = logging.getLogger(__name__)

EMBEDDED_PREFIX = "embedded"
DOWNLOADED_PREFIX = "downloaded"


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def chunk_records(
    records: Sequence[CompiledRuleRecord],
    max_size: int,
    prefix: str,
) -> tuple[RuleChunk, ...]:
    """
    Cut records into consecutive chunks of at most ``max_size``.

    Example:
        >>> [len(c) for c in chunk_records(records_of_len_5, 2, "x")]
        [2, 2, 1]
    """
    if max_size < 1:
        raise ValueError(f"max_size must be >= 1, got {max_size}")
    return tuple(
        RuleChunk(f"{prefix}_{i}", tuple(records[start:start + max_size]))
        for i, start in enumerate(range(0, len(records), max_size))
    )


def is_valid_record(record: Any) -> bool:
    """A record is trusted only with a url pattern and an action kind."""
    return (
        isinstance(record, CompiledRuleRecord)
        and bool(record.trigger.url_pattern)
        and record.action.kind is not None
    )


def domain_block_record(domain: str) -> CompiledRuleRecord | None:
    """||domain^$third-party as a record."""
    rule = NetworkRule(domain, party=PartyConstraint.THIRD_PARTY, domain_anchor=True, separator=True)
    return to_record(rule)


# ============================================================================
# BUILDER
# ============================================================================

class RuleSetBuilder:
    """
    Assembles embedded and downloaded rules into a RuleSet.

    The embedded tables default to the ones shipped in ``embedded.py``; tests
    and embedders can pass their own.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        blocked_domains: Sequence[str] = BLOCKED_DOMAINS,
        path_records: Sequence[CompiledRuleRecord] = PATH_RECORDS,
        css_records: Sequence[CompiledRuleRecord] = CSS_HIDE_RECORDS,
    ) -> None:
        self.config = config or EngineConfig()
        self.blocked_domains = tuple(blocked_domains)
        self.path_records = tuple(path_records)
        self.css_records = tuple(css_records)

    def build(
        self,
        embedded_rule_text: Sequence[str] = EMBEDDED_FILTER_TEXT,
        downloaded_records: Iterable[CompiledRuleRecord | Mapping[str, Any]] = (),
    ) -> RuleSet:
        """
        Build a fresh RuleSet.

        Args:
            embedded_rule_text: Filter-list texts shipped with the engine
            downloaded_records: Records from a downloaded list; JSON-style
                dicts are decoded, invalid entries are dropped and counted

        Returns:
            New RuleSet; nothing is shared with previous builds
        """
        lines_parsed = parse_skipped = convert_skipped = 0
        candidates: list[CompiledRuleRecord] = []

        # =====================================================================
        # Embedded filter text
        # =====================================================================
        for text in embedded_rule_text:
            rules, parse_stats = parse_lines(
                text.splitlines(), min_pattern_length=self.config.min_pattern_length
            )
            lines_parsed += parse_stats.total_lines
            parse_skipped += parse_stats.total_lines - len(rules)
            for rule in rules:
                record = to_record(rule, min_pattern_length=self.config.min_pattern_length)
                if record is None:
                    convert_skipped += 1
                else:
                    candidates.append(record)

        # =====================================================================
        # Embedded record tables
        # =====================================================================
        domains, subdomain_pruned = prune_redundant_subdomains(self.blocked_domains)
        for domain in domains:
            record = domain_block_record(domain)
            if record is None:
                convert_skipped += 1
            else:
                candidates.append(record)

        candidates.extend(self.path_records)
        candidates.extend(self.css_records)

        seen: set[CompiledRuleRecord] = set()
        embedded: list[CompiledRuleRecord] = []
        duplicates = 0
        for record in candidates:
            if record in seen:
                duplicates += 1
                continue
            seen.add(record)
            embedded.append(record)

        # =====================================================================
        # Downloaded records
        # =====================================================================
        downloaded: list[CompiledRuleRecord] = []
        dropped = 0
        for entry in downloaded_records:
            record = record_from_dict(entry) if isinstance(entry, Mapping) else entry
            if not is_valid_record(record):
                dropped += 1
                continue
            if record in seen:
                duplicates += 1
                continue
            seen.add(record)
            downloaded.append(record)

        embedded_chunks = chunk_records(embedded, self.config.embedded_chunk_size, EMBEDDED_PREFIX)
        downloaded_chunks = chunk_records(downloaded, self.config.downloaded_chunk_size, DOWNLOADED_PREFIX)

        if dropped:
            logger.info("Dropped %d invalid downloaded records", dropped)
        logger.debug(
            "Built rule set: %d embedded in %d chunks, %d downloaded in %d chunks, %d duplicates",
            len(embedded), len(embedded_chunks), len(downloaded), len(downloaded_chunks), duplicates,
        )

        return RuleSet(
            embedded_chunks=embedded_chunks,
            downloaded_chunks=downloaded_chunks,
            total_rule_count=len(embedded) + len(downloaded),
            provenance=Provenance.ENHANCED if downloaded_chunks else Provenance.EMBEDDED_ONLY,
            stats=BuildStats(
                lines_parsed=lines_parsed,
                parse_skipped=parse_skipped,
                convert_skipped=convert_skipped,
                duplicate_pruned=duplicates,
                subdomain_pruned=subdomain_pruned,
                downloaded_dropped=dropped,
            ),
        )
