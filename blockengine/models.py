"""
models.py - Rule model shared by every stage of the engine.

Three layers of representation:

    filter text      ||ads.example.com^$third-party
         |  parser
    FilterRule       NetworkRule(pattern="ads.example.com", domain_anchor=True, ...)
         |  converter
    CompiledRuleRecord  Trigger(url_pattern=r"^https?://([^/]+\\.)?ads\\.example\\.com[/:?]", ...)
         |  builder
    RuleChunk / RuleSet

Everything below the parser is immutable and hashable, so records can be
deduplicated by structural equality and snapshots can be swapped whole.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


# =============================================================================
# ENUMS
# =============================================================================

class ResourceType(str, Enum):
    """Resource types understood by the declarative backend."""
    DOCUMENT = "document"
    IMAGE = "image"
    STYLE_SHEET = "style-sheet"
    SCRIPT = "script"
    FONT = "font"
    RAW = "raw"
    SVG_DOCUMENT = "svg-document"
    MEDIA = "media"
    POPUP = "popup"


class PartyConstraint(str, Enum):
    ANY = "any"
    FIRST_PARTY = "first-party"
    THIRD_PARTY = "third-party"


class ActionKind(str, Enum):
    """What the backend does when a trigger matches."""
    BLOCK = "block"
    IGNORE = "ignore-previous-rules"
    HIDE_SELECTOR = "css-display-none"


class Provenance(str, Enum):
    EMBEDDED_ONLY = "embedded-only"
    ENHANCED = "enhanced"


class EngineState(str, Enum):
    """
    Engine lifecycle.

    DISABLED -> COMPILING -> READY_EMBEDDED -> ENHANCING -> READY_ENHANCED

    Disabling from any state returns to DISABLED; enabling restarts at
    COMPILING.
    """
    DISABLED = "disabled"
    COMPILING = "compiling"
    READY_EMBEDDED = "ready-embedded"
    ENHANCING = "enhancing"
    READY_ENHANCED = "ready-enhanced"

    @property
    def is_ready(self) -> bool:
        return self in (EngineState.READY_EMBEDDED, EngineState.ENHANCING, EngineState.READY_ENHANCED)


# =============================================================================
# PARSED RULES
# =============================================================================

@dataclass(frozen=True)
class NetworkRule:
    """
    A request-blocking (or, with ``is_exception``, request-allowing) rule.

    ``pattern`` has all anchors stripped; the anchor flags remember them so the
    converter can rebuild an anchored regex.
    """
    pattern: str
    is_exception: bool = False
    resource_types: frozenset[ResourceType] = frozenset()
    party: PartyConstraint = PartyConstraint.ANY
    include_domains: frozenset[str] = frozenset()
    exclude_domains: frozenset[str] = frozenset()
    domain_anchor: bool = False   # ||
    start_anchor: bool = False    # leading |
    end_anchor: bool = False      # trailing |
    separator: bool = False       # trailing ^


@dataclass(frozen=True)
class CosmeticRule:
    """Element-hiding rule: ``domains##selector``."""
    selector: str
    include_domains: frozenset[str] = frozenset()
    exclude_domains: frozenset[str] = frozenset()


@dataclass(frozen=True)
class UnsupportedRule:
    """Parsed but not convertible (cosmetic exceptions, scriptlets, regex rules)."""
    raw_text: str


FilterRule = Union[NetworkRule, CosmeticRule, UnsupportedRule]


# =============================================================================
# COMPILED RECORDS
# =============================================================================

@dataclass(frozen=True)
class Trigger:
    url_pattern: str
    resource_types: frozenset[ResourceType] = frozenset()
    party: PartyConstraint = PartyConstraint.ANY
    if_domains: frozenset[str] = frozenset()
    unless_domains: frozenset[str] = frozenset()


@dataclass(frozen=True)
class Action:
    kind: ActionKind
    selector: str | None = None


@dataclass(frozen=True)
class CompiledRuleRecord:
    """One trigger/action pair in the backend's declarative format."""
    trigger: Trigger
    action: Action

    def to_dict(self) -> dict[str, Any]:
        """
        Serialise to the content-blocker JSON dialect.

        Sets are emitted sorted so equal records always serialise identically.

        Example:
            >>> CompiledRuleRecord(Trigger(".*"), Action(ActionKind.HIDE_SELECTOR, ".ad")).to_dict()
            {'trigger': {'url-filter': '.*'}, 'action': {'type': 'css-display-none', 'selector': '.ad'}}
        """
        trigger: dict[str, Any] = {"url-filter": self.trigger.url_pattern}
        if self.trigger.resource_types:
            trigger["resource-type"] = sorted(t.value for t in self.trigger.resource_types)
        if self.trigger.party is not PartyConstraint.ANY:
            trigger["load-type"] = [self.trigger.party.value]
        if self.trigger.if_domains:
            trigger["if-domain"] = sorted(self.trigger.if_domains)
        if self.trigger.unless_domains:
            trigger["unless-domain"] = sorted(self.trigger.unless_domains)

        action: dict[str, Any] = {"type": self.action.kind.value}
        if self.action.selector is not None:
            action["selector"] = self.action.selector

        return {"trigger": trigger, "action": action}


# =============================================================================
# CHUNKS AND RULE SETS
# =============================================================================

@dataclass(frozen=True)
class RuleChunk:
    """An ordered, size-bounded slice of records with a stable identifier."""
    identifier: str
    records: tuple[CompiledRuleRecord, ...]

    def __len__(self) -> int:
        return len(self.records)

    def to_json(self) -> str:
        return json.dumps([r.to_dict() for r in self.records], separators=(",", ":"))


@dataclass(frozen=True)
class BuildStats:
    """Counters collected while building a rule set (diagnostics only)."""
    lines_parsed: int = 0
    parse_skipped: int = 0
    convert_skipped: int = 0
    duplicate_pruned: int = 0
    subdomain_pruned: int = 0
    downloaded_dropped: int = 0


@dataclass(frozen=True)
class RuleSet:
    """Aggregate of embedded and downloaded chunks. Replaced, never edited."""
    embedded_chunks: tuple[RuleChunk, ...] = ()
    downloaded_chunks: tuple[RuleChunk, ...] = ()
    total_rule_count: int = 0
    provenance: Provenance = Provenance.EMBEDDED_ONLY
    stats: BuildStats = field(default_factory=BuildStats)

    @property
    def embedded_rule_count(self) -> int:
        return sum(len(c) for c in self.embedded_chunks)

    @property
    def downloaded_rule_count(self) -> int:
        return sum(len(c) for c in self.downloaded_chunks)

    @property
    def chunks(self) -> tuple[RuleChunk, ...]:
        return self.embedded_chunks + self.downloaded_chunks


EMPTY_RULESET = RuleSet()


@dataclass(frozen=True)
class CacheEntry:
    """A cached payload and when it was fetched (epoch seconds)."""
    key: str
    fetched_at: float
    payload: bytes

    def age_seconds(self, now: float | None = None) -> float:
        return (time.time() if now is None else now) - self.fetched_at

    def is_fresh(self, max_age_days: float, now: float | None = None) -> bool:
        return self.age_seconds(now) < max_age_days * 86400
