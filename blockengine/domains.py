"""
domains.py - Domain normalisation and hierarchy helpers.

Both the fallback matcher and the rule-set builder reason about "is this host
covered by a listed domain", in two different ways:

    matching    every label suffix of the host counts, so a listed
                ``co.uk`` covers ``ads.co.uk`` exactly as ``||co.uk^`` would
    pruning     only parents down to the registered domain count, so a
                listed suffix never swallows unrelated sites' entries
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable

import tldextract

# Bundled public suffix snapshot only, no update check over the network
_tld_extract = tldextract.TLDExtract(suffix_list_urls=None)

# Plain domain (letters, digits, hyphens, dots)
PLAIN_DOMAIN_PATTERN = re.compile(
    r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?"
    r"(\.[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?)*$"
)

# Local hostnames that never make sense in a block list
LOCAL_HOSTNAMES = frozenset({
    "localhost", "localhost.localdomain", "local", "broadcasthost",
    "ip6-localhost", "ip6-loopback", "ip6-localnet",
    "ip6-mcastprefix", "ip6-allnodes", "ip6-allrouters", "ip6-allhosts",
})


def normalize_domain(domain: str) -> str:
    """Normalize domain to lowercase, stripped."""
    return domain.lower().strip().rstrip(".")


def is_plain_domain(domain: str) -> bool:
    return bool(PLAIN_DOMAIN_PATTERN.match(domain))


@lru_cache(maxsize=65536)
def _extract_domain_parts(domain: str) -> tuple[str, str, str]:
    """Cached tldextract extraction. Returns (subdomain, domain, suffix)."""
    ext = _tld_extract(domain)
    return ext.subdomain, ext.domain, ext.suffix


def registered_domain(domain: str) -> str | None:
    """
    Registered domain (domain.tld) of a host, or None for IPs and bare suffixes.

    Example:
        >>> registered_domain("pagead2.googlesyndication.com")
        'googlesyndication.com'
    """
    _, dom, suffix = _extract_domain_parts(domain)
    if suffix and dom:
        return f"{dom}.{suffix}"
    return None


@lru_cache(maxsize=65536)
def walk_parent_domains(domain: str) -> tuple[str, ...]:
    """
    Walk up the domain hierarchy to find all parent domains.

    Stops at the registered domain. Hosts with no recognised public suffix
    are walked label by label down to their last two labels.

    Example: "a.b.example.com" -> ("b.example.com", "example.com")

    Returns tuple for hashability (caching).
    """
    labels = domain.split(".")
    registered = registered_domain(domain)
    if registered is None and domain.replace(".", "").isdigit():
        return ()
    floor = len(registered.split(".")) if registered else 2

    return tuple(".".join(labels[i:]) for i in range(1, len(labels) - floor + 1))


@lru_cache(maxsize=65536)
def label_suffixes(domain: str) -> tuple[str, ...]:
    """
    Every dot-separated suffix of a domain, longest first.

    IP addresses only match themselves.

    Example:
        >>> label_suffixes("ads.example.co.uk")
        ('ads.example.co.uk', 'example.co.uk', 'co.uk', 'uk')
    """
    if domain.replace(".", "").isdigit():
        return (domain,)
    labels = domain.split(".")
    return tuple(".".join(labels[i:]) for i in range(len(labels)))


def candidate_domains(host: str) -> tuple[str, ...]:
    """
    Every listed domain that would cover ``host``: the host, then each suffix.

    A host matches a listed domain ``d`` iff ``host == d`` or
    ``host.endswith("." + d)``, and these are exactly those ``d``.
    """
    host = normalize_domain(host)
    if not host:
        return ()
    return label_suffixes(host)


def prune_redundant_subdomains(domains: Iterable[str]) -> tuple[list[str], int]:
    """
    Drop domains already covered by a listed parent domain.

    Order of first appearance is kept so the output is stable.

    Returns:
        Tuple of (kept_domains, pruned_count)

    Example:
        >>> prune_redundant_subdomains(["doubleclick.net", "ads.doubleclick.net", "x.com"])
        (['doubleclick.net', 'x.com'], 1)
    """
    unique: dict[str, None] = {}
    for d in domains:
        d = normalize_domain(d)
        if d and d not in LOCAL_HOSTNAMES:
            unique.setdefault(d, None)

    kept: list[str] = []
    pruned = 0
    for domain in unique:
        if any(parent in unique for parent in walk_parent_domains(domain)):
            pruned += 1
        else:
            kept.append(domain)
    return kept, pruned
