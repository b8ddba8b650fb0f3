"""
parser.py - EasyList/AdGuard Filter Syntax Parser

First stage of the engine: one line of filter-list text in, one canonical
FilterRule (or nothing) out. Pure functions, no I/O.

Line classification, in order:
    1. Blank, "!" comment, "[Adblock Plus 2.0]" header, "# " comment -> no rule
    2. "@@..."                      -> NetworkRule(is_exception=True)
    3. "domains##selector"          -> CosmeticRule
    4. "#@#", "#?#", "#$#", "#%#"   -> UnsupportedRule (exceptions, extended
                                       CSS and scriptlets have no equivalent
                                       in the declarative format)
    5. "0.0.0.0 host" hosts entry   -> domain-anchored NetworkRule
    6. "/regex/"                    -> UnsupportedRule
    7. anything else                -> NetworkRule

Rejection vs. Skipping:
    Comments and headers are skipped. Network rules whose pattern is shorter
    than the length floor once anchors and wildcards are stripped are
    REJECTED: "||ab^" would block every URL containing "ab". Both return
    None; only the stats distinguish them.

Options:
    Options after the last unescaped "$" are matched against a finite table
    (party, resource types, domain=). Unknown options are ignored, not fatal,
    so newer list syntax never breaks parsing of the rest of the list.
"""

from __future__ import annotations

import logging
import re
from typing import Final, Iterable, NamedTuple

from blockengine.config import DEFAULT_MIN_PATTERN_LENGTH
from blockengine.domains import LOCAL_HOSTNAMES, is_plain_domain, normalize_domain
from blockengine.models import (
    CosmeticRule,
    FilterRule,
    NetworkRule,
    PartyConstraint,
    ResourceType,
    UnsupportedRule,
)

logger = logging.getLogger(__name__)


# =============================================================================
# OPTION TABLES
# =============================================================================

PARTY_OPTIONS: Final[dict[str, PartyConstraint]] = {
    "third-party": PartyConstraint.THIRD_PARTY,
    "3p": PartyConstraint.THIRD_PARTY,
    "~first-party": PartyConstraint.THIRD_PARTY,
    "~1p": PartyConstraint.THIRD_PARTY,
    "first-party": PartyConstraint.FIRST_PARTY,
    "1p": PartyConstraint.FIRST_PARTY,
    "~third-party": PartyConstraint.FIRST_PARTY,
    "~3p": PartyConstraint.FIRST_PARTY,
}

RESOURCE_TYPE_OPTIONS: Final[dict[str, ResourceType]] = {
    "script": ResourceType.SCRIPT,
    "image": ResourceType.IMAGE,
    "stylesheet": ResourceType.STYLE_SHEET,
    "css": ResourceType.STYLE_SHEET,
    "xmlhttprequest": ResourceType.RAW,
    "xhr": ResourceType.RAW,
    "websocket": ResourceType.RAW,
    "ping": ResourceType.RAW,
    "other": ResourceType.RAW,
    "media": ResourceType.MEDIA,
    "font": ResourceType.FONT,
    "document": ResourceType.DOCUMENT,
    "subdocument": ResourceType.DOCUMENT,
    "popup": ResourceType.POPUP,
}

DOMAIN_OPTION_PREFIX: Final[str] = "domain="


# =============================================================================
# REGEX PATTERNS
# =============================================================================

#: Element-hiding separators. Group 1 is empty for plain "##" and holds the
#: marker characters otherwise (#@#, #?#, #$#, #%#, #@$#, ...).
COSMETIC_PATTERN: Final[re.Pattern[str]] = re.compile(r"#([@$?%]*)#")

#: Hosts format: IP domain [domain2 ...]
HOSTS_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^([\d.:a-fA-F]+)\s+"   # IP address (IPv4 or IPv6)
    r"(.+)$"                 # Rest of line (domains)
)

#: Local/blocking IPs in hosts format
BLOCKING_IPS: Final[frozenset[str]] = frozenset({
    "0.0.0.0", "127.0.0.1", "::1", "::0", "::", "0:0:0:0:0:0:0:0", "0:0:0:0:0:0:0:1",
})


# =============================================================================
# DATA STRUCTURES
# =============================================================================

class ParseResult(NamedTuple):
    """
    Result of parsing a single line.

    Attributes:
        rule: Parsed rule, or None if the line produced none
        reason: "network", "cosmetic", "unsupported", "comment", "empty",
            "metadata" or "rejected"
        ignored_options: Number of unknown options skipped on this line
        extra_rules: Further rules from the same line (hosts entries listing
            several hostnames)
    """
    rule: FilterRule | None
    reason: str
    ignored_options: int = 0
    extra_rules: tuple[FilterRule, ...] = ()


class ParseStats(NamedTuple):
    """Statistics from parsing a list."""
    total_lines: int
    network: int
    cosmetic: int
    unsupported: int
    comments: int
    empty: int
    metadata: int
    rejected: int
    ignored_options: int


# =============================================================================
# HELPERS
# =============================================================================

def _split_domains(text: str, sep: str) -> tuple[frozenset[str], frozenset[str]]:
    """Split "a.com,~b.a.com" into (include, exclude)."""
    include: set[str] = set()
    exclude: set[str] = set()
    for part in text.split(sep):
        part = part.strip()
        if part.startswith("~"):
            domain = normalize_domain(part[1:])
            if domain:
                exclude.add(domain)
        else:
            domain = normalize_domain(part)
            if domain:
                include.add(domain)
    return frozenset(include), frozenset(exclude)


def split_options(text: str) -> tuple[str, str | None]:
    """
    Split a network rule on its last unescaped "$".

    Example:
        >>> split_options("||ads.example.com^$script,third-party")
        ('||ads.example.com^', 'script,third-party')
        >>> split_options(r"/price\\$10")
        ('/price\\\\$10', None)
    """
    idx = text.rfind("$")
    while idx > 0 and text[idx - 1] == "\\":
        idx = text.rfind("$", 0, idx - 1)
    if idx < 0:
        return text, None
    return text[:idx], text[idx + 1:]


def _parse_cosmetic(line: str, match: re.Match[str]) -> ParseResult:
    if match.group(1):
        return ParseResult(UnsupportedRule(line), "unsupported")

    selector = line[match.end():].strip()
    if not selector:
        return ParseResult(None, "rejected")

    include, exclude = _split_domains(line[:match.start()], ",")
    return ParseResult(CosmeticRule(selector, include, exclude), "cosmetic")


def _parse_hosts(line: str, min_length: int) -> ParseResult | None:
    """
    Hosts entry -> one ||host^ per hostname. Returns None if the line is not
    a hosts entry. The first rule goes in ``rule``, the rest in ``extra_rules``.
    """
    match = HOSTS_PATTERN.match(line)
    if not match:
        return None

    ip = match.group(1)
    if ip not in BLOCKING_IPS and not ip.startswith("0.") and not ip.startswith("127."):
        return None

    rules: list[FilterRule] = []
    for part in match.group(2).split():
        if part.startswith("#"):
            break
        domain = normalize_domain(part)
        if domain in LOCAL_HOSTNAMES or not is_plain_domain(domain) or len(domain) < min_length:
            continue
        rules.append(NetworkRule(domain, domain_anchor=True, separator=True))

    if not rules:
        return ParseResult(None, "rejected")
    return ParseResult(rules[0], "network", extra_rules=tuple(rules[1:]))


def _parse_network(text: str, is_exception: bool, min_length: int) -> ParseResult:
    pattern, options = split_options(text)

    resource_types: set[ResourceType] = set()
    party = PartyConstraint.ANY
    include: frozenset[str] = frozenset()
    exclude: frozenset[str] = frozenset()
    ignored = 0

    if options is not None:
        for option in options.split(","):
            opt = option.strip().lower()
            if not opt:
                continue
            if opt.startswith(DOMAIN_OPTION_PREFIX):
                include, exclude = _split_domains(opt[len(DOMAIN_OPTION_PREFIX):], "|")
            elif opt in PARTY_OPTIONS:
                party = PARTY_OPTIONS[opt]
            elif opt in RESOURCE_TYPE_OPTIONS:
                resource_types.add(RESOURCE_TYPE_OPTIONS[opt])
            else:
                ignored += 1

    domain_anchor = start_anchor = end_anchor = separator = False

    if pattern.startswith("||"):
        domain_anchor = True
        pattern = pattern[2:]
        if pattern.startswith("*."):
            pattern = pattern[2:]
    elif pattern.startswith("|"):
        start_anchor = True
        pattern = pattern[1:]

    if pattern.endswith("|"):
        end_anchor = True
        pattern = pattern[:-1]

    if pattern.endswith("^"):
        separator = True
        pattern = pattern[:-1]

    if len(pattern.strip("*")) < min_length:
        return ParseResult(None, "rejected", ignored)

    rule = NetworkRule(
        pattern=pattern,
        is_exception=is_exception,
        resource_types=frozenset(resource_types),
        party=party,
        include_domains=include,
        exclude_domains=exclude,
        domain_anchor=domain_anchor,
        start_anchor=start_anchor,
        end_anchor=end_anchor,
        separator=separator,
    )
    return ParseResult(rule, "network", ignored)


# =============================================================================
# PARSING FUNCTIONS
# =============================================================================

def classify_line(line: str, *, min_pattern_length: int = DEFAULT_MIN_PATTERN_LENGTH) -> ParseResult:
    """
    Parse one line and report why it did or did not produce a rule.

    Args:
        line: Raw filter-list line
        min_pattern_length: Length floor for network patterns

    Returns:
        ParseResult with the rule (or None) and the classification reason
    """
    line = line.strip()

    if not line:
        return ParseResult(None, "empty")
    if line.startswith("!") or line == "#" or line.startswith("# "):
        return ParseResult(None, "comment")
    if line.startswith("["):
        return ParseResult(None, "metadata")

    if line.startswith("@@"):
        return _parse_network(line[2:], True, min_pattern_length)

    cosmetic = COSMETIC_PATTERN.search(line)
    if cosmetic:
        return _parse_cosmetic(line, cosmetic)

    hosts = _parse_hosts(line, min_pattern_length)
    if hosts is not None:
        return hosts

    pattern, _ = split_options(line)
    if len(pattern) > 2 and pattern.startswith("/") and pattern.endswith("/"):
        return ParseResult(UnsupportedRule(line), "unsupported")

    return _parse_network(line, False, min_pattern_length)


def parse_line(line: str, *, min_pattern_length: int = DEFAULT_MIN_PATTERN_LENGTH) -> FilterRule | None:
    """
    Parse one line of filter-list text into a FilterRule.

    Returns None for blank lines, comments, headers and rejected patterns.
    A hosts line naming several hostnames yields its first rule only; use
    classify_line or parse_lines to get all of them.

    Example:
        >>> parse_line("||doubleclick.net^")
        NetworkRule(pattern='doubleclick.net', ...)
        >>> parse_line("! comment") is None
        True
    """
    return classify_line(line, min_pattern_length=min_pattern_length).rule


def parse_lines(
    lines: Iterable[str],
    *,
    min_pattern_length: int = DEFAULT_MIN_PATTERN_LENGTH,
) -> tuple[list[FilterRule], ParseStats]:
    """
    Parse a whole list.

    Args:
        lines: Raw lines (a file object works)
        min_pattern_length: Length floor for network patterns

    Returns:
        Tuple of (rules, stats)
    """
    rules: list[FilterRule] = []
    counts = {
        "total": 0,
        "network": 0,
        "cosmetic": 0,
        "unsupported": 0,
        "comment": 0,
        "empty": 0,
        "metadata": 0,
        "rejected": 0,
        "ignored_options": 0,
    }

    for line in lines:
        counts["total"] += 1
        result = classify_line(line, min_pattern_length=min_pattern_length)
        counts[result.reason] += 1
        counts["ignored_options"] += result.ignored_options
        if result.rule is not None:
            rules.append(result.rule)
            rules.extend(result.extra_rules)
            counts[result.reason] += len(result.extra_rules)
        elif result.reason == "rejected":
            logger.debug("Rejected filter line: %r", line.strip())

    return rules, ParseStats(
        total_lines=counts["total"],
        network=counts["network"],
        cosmetic=counts["cosmetic"],
        unsupported=counts["unsupported"],
        comments=counts["comment"],
        empty=counts["empty"],
        metadata=counts["metadata"],
        rejected=counts["rejected"],
        ignored_options=counts["ignored_options"],
    )
