"""
converter.py - FilterRule -> declarative record conversion and JSON codec

Second stage of the engine. Turns parsed rules into trigger/action records
the declarative backend executes natively, and reads such records back from
downloaded JSON lists.

Pattern translation:
    ||ads.example.com^   ->  ^https?://([^/]+\\.)?ads\\.example\\.com[/:?]
    |https://x.com/ad|   ->  ^https://x\\.com/ad$
    /banner/*/img        ->  /banner/.*/img          (substring search)

Cosmetic rules always match every URL (".*"); their domain restriction goes
into if-domain / unless-domain with a "*" wildcard-subdomain marker, never
into the URL pattern.

Exception rules (@@) become "ignore-previous-rules": they cancel earlier
block rules for the matching request.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Final, Iterable

from blockengine.config import DEFAULT_MIN_PATTERN_LENGTH
from blockengine.errors import PayloadError
from blockengine.models import (
    Action,
    ActionKind,
    CompiledRuleRecord,
    CosmeticRule,
    FilterRule,
    NetworkRule,
    PartyConstraint,
    ResourceType,
    Trigger,
)
from blockengine.parser import parse_lines

logger = logging.getLogger(__name__)


# =============================================================================
# REGEX CONSTRUCTION
# =============================================================================

#: Scheme plus any number of subdomain labels in front of the anchored domain
DOMAIN_ANCHOR_PREFIX: Final[str] = r"^https?://([^/]+\.)?"

#: What "^" stands for. The backend dialect has no alternation, so end-of-URL
#: is not expressible; URLs always carry at least a "/" path.
SEPARATOR_CLASS: Final[str] = "[/:?]"

MATCH_ALL: Final[str] = ".*"

WILDCARD_SUBDOMAIN: Final[str] = "*"

_REGEX_SPECIAL: Final[frozenset[str]] = frozenset(".?+[](){}|$")

#: Lower-cased start of the header line of ABP-style lists
FILTER_LIST_HEADER: Final[str] = "[adblock"


def pattern_to_regex(pattern: str) -> str:
    """
    Escape regex metacharacters and expand "*" wildcards.

    A "^" inside the pattern is a separator placeholder; a backslash escapes
    the character after it.

    Example:
        >>> pattern_to_regex("ads.example.com/*.js")
        'ads\\\\.example\\\\.com/.*\\\\.js'
    """
    out: list[str] = []
    i = 0
    while i < len(pattern):
        c = pattern[i]
        if c == "\\" and i + 1 < len(pattern):
            nxt = pattern[i + 1]
            out.append("\\" + nxt if not nxt.isalnum() else nxt)
            i += 2
            continue
        if c == "*":
            out.append(".*")
        elif c == "^":
            out.append(SEPARATOR_CLASS)
        elif c in _REGEX_SPECIAL:
            out.append("\\" + c)
        else:
            out.append(c)
        i += 1
    return "".join(out)


def network_url_pattern(rule: NetworkRule) -> str:
    """Build the anchored url-filter regex for a network rule."""
    body = pattern_to_regex(rule.pattern)

    if rule.domain_anchor:
        regex = DOMAIN_ANCHOR_PREFIX + body
    elif rule.start_anchor:
        regex = "^" + body
    else:
        regex = body

    if rule.separator:
        regex += SEPARATOR_CLASS
    if rule.end_anchor:
        regex += "$"
    return regex


def _domain_markers(domains: frozenset[str]) -> frozenset[str]:
    return frozenset(WILDCARD_SUBDOMAIN + d for d in domains)


# =============================================================================
# CONVERSION
# =============================================================================

def to_record(
    rule: FilterRule,
    *,
    min_pattern_length: int = DEFAULT_MIN_PATTERN_LENGTH,
) -> CompiledRuleRecord | None:
    """
    Convert one parsed rule to a declarative record.

    Returns None for UnsupportedRule and for rules that fail re-validation
    (empty selector, pattern under the length floor). Never raises.
    """
    if isinstance(rule, NetworkRule):
        if len(rule.pattern.strip("*")) < min_pattern_length:
            return None
        trigger = Trigger(
            url_pattern=network_url_pattern(rule),
            resource_types=rule.resource_types,
            party=rule.party,
            if_domains=_domain_markers(rule.include_domains),
            unless_domains=_domain_markers(rule.exclude_domains),
        )
        kind = ActionKind.IGNORE if rule.is_exception else ActionKind.BLOCK
        return CompiledRuleRecord(trigger, Action(kind))

    if isinstance(rule, CosmeticRule):
        selector = rule.selector.strip()
        if not selector:
            return None
        trigger = Trigger(
            url_pattern=MATCH_ALL,
            if_domains=_domain_markers(rule.include_domains),
            unless_domains=_domain_markers(rule.exclude_domains),
        )
        return CompiledRuleRecord(trigger, Action(ActionKind.HIDE_SELECTOR, selector))

    return None


def convert_filter_text(
    text: str,
    *,
    min_pattern_length: int = DEFAULT_MIN_PATTERN_LENGTH,
) -> tuple[list[CompiledRuleRecord], int]:
    """
    Parse and convert a whole filter list.

    Returns:
        Tuple of (records, convert_skipped)
    """
    rules, _ = parse_lines(text.splitlines(), min_pattern_length=min_pattern_length)
    records: list[CompiledRuleRecord] = []
    skipped = 0
    for rule in rules:
        record = to_record(rule, min_pattern_length=min_pattern_length)
        if record is None:
            skipped += 1
        else:
            records.append(record)
    return records, skipped


# =============================================================================
# JSON CODEC
# =============================================================================

_ACTION_KINDS: Final[dict[str, ActionKind]] = {k.value: k for k in ActionKind}
_RESOURCE_TYPES: Final[dict[str, ResourceType]] = {t.value: t for t in ResourceType}
_PARTIES: Final[dict[str, PartyConstraint]] = {
    PartyConstraint.FIRST_PARTY.value: PartyConstraint.FIRST_PARTY,
    PartyConstraint.THIRD_PARTY.value: PartyConstraint.THIRD_PARTY,
}


def _string_set(value: Any) -> frozenset[str]:
    if not isinstance(value, list):
        return frozenset()
    return frozenset(v for v in value if isinstance(v, str) and v)


def record_from_dict(obj: Any) -> CompiledRuleRecord | None:
    """
    Decode one content-blocker JSON rule.

    Returns None when the entry lacks a url-filter or a known action type.
    Unknown trigger keys and resource types are ignored.
    """
    if not isinstance(obj, dict):
        return None
    trigger = obj.get("trigger")
    action = obj.get("action")
    if not isinstance(trigger, dict) or not isinstance(action, dict):
        return None

    url_pattern = trigger.get("url-filter")
    kind_name = action.get("type")
    kind = _ACTION_KINDS.get(kind_name) if isinstance(kind_name, str) else None
    if not isinstance(url_pattern, str) or not url_pattern or kind is None:
        return None

    selector = action.get("selector")
    if kind is ActionKind.HIDE_SELECTOR:
        if not isinstance(selector, str) or not selector.strip():
            return None
    else:
        selector = None

    load_types = trigger.get("load-type")
    party = PartyConstraint.ANY
    if isinstance(load_types, list) and len(load_types) == 1 and isinstance(load_types[0], str):
        party = _PARTIES.get(load_types[0], PartyConstraint.ANY)

    resource_types = frozenset(
        _RESOURCE_TYPES[t] for t in _string_set(trigger.get("resource-type")) if t in _RESOURCE_TYPES
    )

    return CompiledRuleRecord(
        Trigger(
            url_pattern=url_pattern,
            resource_types=resource_types,
            party=party,
            if_domains=_string_set(trigger.get("if-domain")),
            unless_domains=_string_set(trigger.get("unless-domain")),
        ),
        Action(kind, selector),
    )


def records_from_json(text: str) -> tuple[list[CompiledRuleRecord], int]:
    """
    Decode a JSON rule array.

    Returns:
        Tuple of (valid_records, dropped_count)

    Raises:
        PayloadError: If the text is not JSON or not an array
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise PayloadError(f"Not valid JSON: {e}") from e
    if not isinstance(data, list):
        raise PayloadError(f"Expected a JSON array, got {type(data).__name__}")

    records: list[CompiledRuleRecord] = []
    dropped = 0
    for entry in data:
        record = record_from_dict(entry)
        if record is None:
            dropped += 1
        else:
            records.append(record)
    return records, dropped


def records_to_json(records: Iterable[CompiledRuleRecord]) -> str:
    return json.dumps([r.to_dict() for r in records], separators=(",", ":"))


def validate_rule_array(data: Any) -> list[dict[str, Any]]:
    """
    Structural check of a decoded JSON list before it is trusted.

    Every entry must be an object with "trigger" and "action" objects. The
    content of each entry (known action type, non-empty url-filter) is
    checked later, per record, by the rule-set builder.

    Raises:
        PayloadError: If the list is empty or any entry is malformed
    """
    if not isinstance(data, list):
        raise PayloadError(f"Expected a JSON array, got {type(data).__name__}")
    if not data:
        raise PayloadError("Rule array is empty")
    for i, entry in enumerate(data):
        if not (
            isinstance(entry, dict)
            and isinstance(entry.get("trigger"), dict)
            and isinstance(entry.get("action"), dict)
        ):
            raise PayloadError(f"Entry {i} is not a trigger/action object")
    return data


def is_filter_list_text(text: str) -> bool:
    """
    True if the first non-blank line is an "[Adblock ...]" header or a "!"
    comment, the way every published filter list starts.

    Example:
        >>> is_filter_list_text("[Adblock Plus 2.0]\\n||ads.example.com^")
        True
        >>> is_filter_list_text("<!DOCTYPE html>\\n<html>")
        False
    """
    for line in text.splitlines():
        line = line.strip()
        if line:
            return line.startswith("!") or line.lower().startswith(FILTER_LIST_HEADER)
    return False


def decode_payload(
    payload: bytes,
    *,
    min_pattern_length: int = DEFAULT_MIN_PATTERN_LENGTH,
) -> list[CompiledRuleRecord | dict[str, Any]]:
    """
    Decode a downloaded or cached list.

    A payload starting with "[{" or "[]" (whitespace aside) is a JSON rule
    array and comes back as validated raw entries. A payload opening with an
    "[Adblock ...]" header or a "!" comment is filter-list text and comes
    back as converted records. Anything else (an HTML error page, a captive
    portal) is rejected before it can be cached.

    Raises:
        PayloadError: If the payload is undecodable, malformed or yields no rules
    """
    try:
        text = payload.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise PayloadError(f"Not UTF-8: {e}") from e

    stripped = text.lstrip()
    if stripped.startswith("[") and stripped[1:].lstrip()[:1] in ("{", "]"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise PayloadError(f"Not valid JSON: {e}") from e
        return list(validate_rule_array(data))

    if not is_filter_list_text(text):
        raise PayloadError("Payload is neither a JSON rule array nor a filter list")

    records, _ = convert_filter_text(text, min_pattern_length=min_pattern_length)
    if not records:
        raise PayloadError("Payload contains no usable rules")
    return list(records)
