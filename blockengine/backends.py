"""
backends.py - In-process reference compile backend.

Embedders hand the engine whatever native declarative backend their renderer
has. This one compiles a chunk with Python's ``re`` and enforces the same kind
of per-list size limit a native backend has, so the chunking policy and the
partial-failure handling can be exercised without a renderer.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Sequence

from blockengine.converter import records_from_json
from blockengine.errors import PayloadError, RuleCompileError
from blockengine.models import ActionKind, Action, PartyConstraint, ResourceType, Trigger

DEFAULT_MAX_RULES = 50_000


def domain_matches(domain: str, markers: Iterable[str]) -> bool:
    """
    Match a page domain against if-domain/unless-domain entries.

    "*example.com" covers example.com and its subdomains; a bare entry is exact.
    """
    domain = domain.lower()
    for marker in markers:
        marker = marker.lower()
        if marker.startswith("*"):
            base = marker[1:].lstrip(".")
            if domain == base or domain.endswith("." + base):
                return True
        elif domain == marker:
            return True
    return False


@dataclass(frozen=True)
class _CompiledRule:
    regex: re.Pattern[str]
    trigger: Trigger
    action: Action

    def applies(
        self,
        url: str,
        resource_type: ResourceType | None,
        third_party: bool | None,
        top_domain: str | None,
    ) -> bool:
        t = self.trigger
        if t.resource_types and resource_type is not None and resource_type not in t.resource_types:
            return False
        if third_party is not None:
            if t.party is PartyConstraint.THIRD_PARTY and not third_party:
                return False
            if t.party is PartyConstraint.FIRST_PARTY and third_party:
                return False
        if t.if_domains and (top_domain is None or not domain_matches(top_domain, t.if_domains)):
            return False
        if t.unless_domains and top_domain is not None and domain_matches(top_domain, t.unless_domains):
            return False
        return self.regex.search(url) is not None


class RegexRuleList:
    """Compiled handle returned by RegexCompileBackend."""

    def __init__(self, identifier: str, rules: Sequence[_CompiledRule]) -> None:
        self.identifier = identifier
        self._rules = tuple(rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return f"RegexRuleList({self.identifier!r}, {len(self._rules)} rules)"

    def evaluate(
        self,
        url: str,
        *,
        resource_type: ResourceType | None = None,
        third_party: bool | None = None,
        top_domain: str | None = None,
    ) -> ActionKind | None:
        """
        Final network action for a request: BLOCK, or None when nothing
        blocks it or a later ignore-previous-rules rule cancelled the block.
        """
        decision: ActionKind | None = None
        for rule in self._rules:
            if rule.action.kind is ActionKind.HIDE_SELECTOR:
                continue
            if rule.applies(url, resource_type, third_party, top_domain):
                decision = ActionKind.BLOCK if rule.action.kind is ActionKind.BLOCK else None
        return decision

    def hide_selectors(self, page_url: str, *, top_domain: str | None = None) -> list[str]:
        return [
            rule.action.selector
            for rule in self._rules
            if rule.action.kind is ActionKind.HIDE_SELECTOR
            and rule.action.selector
            and rule.applies(page_url, None, None, top_domain)
        ]


def evaluate_request(
    handles: Iterable[RegexRuleList],
    url: str,
    *,
    resource_type: ResourceType | None = None,
    third_party: bool | None = None,
    top_domain: str | None = None,
) -> bool:
    """True if any active list blocks the request."""
    return any(
        h.evaluate(url, resource_type=resource_type, third_party=third_party, top_domain=top_domain)
        is ActionKind.BLOCK
        for h in handles
    )


class RegexCompileBackend:
    """Compile backend backed by ``re``; rejects lists over ``max_rules``."""

    def __init__(self, max_rules: int = DEFAULT_MAX_RULES) -> None:
        self.max_rules = max_rules
        self.compiled_identifiers: list[str] = []

    async def compile(self, identifier: str, rule_list_json: str) -> RegexRuleList:
        try:
            records, dropped = records_from_json(rule_list_json)
        except PayloadError as e:
            raise RuleCompileError(identifier, str(e)) from e
        if dropped:
            raise RuleCompileError(identifier, f"{dropped} malformed rules")
        if len(records) > self.max_rules:
            raise RuleCompileError(identifier, f"{len(records)} rules exceeds limit of {self.max_rules}")

        rules: list[_CompiledRule] = []
        for i, record in enumerate(records):
            try:
                regex = re.compile(record.trigger.url_pattern, re.IGNORECASE)
            except re.error as e:
                raise RuleCompileError(identifier, f"rule {i}: bad url-filter: {e}") from e
            rules.append(_CompiledRule(regex, record.trigger, record.action))

        self.compiled_identifiers.append(identifier)
        return RegexRuleList(identifier, rules)
