"""
matcher.py - Fallback matcher for the navigation-decision path.

The declarative backend may fail to compile, and it never sees some request
kinds (WebSocket upgrades, non-HTTP schemes). This matcher has no compile
dependency at all and is evaluated synchronously for every navigation and
frame load.

A request is blocked if either check hits:
    - its host is, or is a subdomain of, a listed domain
    - its path contains one of a few ad/sponsor/gambling keywords

The domain lookup walks every label suffix of the host and looks each up
in a frozenset, so its cost does not grow with the list.
"""

from __future__ import annotations

from typing import Iterable
from urllib.parse import urlsplit

from blockengine.domains import candidate_domains, prune_redundant_subdomains
from blockengine.embedded import BLOCKED_DOMAINS, FALLBACK_PATH_KEYWORDS


class FallbackMatcher:
    """Immutable domain-suffix + path-keyword matcher."""

    __slots__ = ("domains", "path_keywords")

    def __init__(
        self,
        domains: Iterable[str] = BLOCKED_DOMAINS,
        path_keywords: Iterable[str] = FALLBACK_PATH_KEYWORDS,
    ) -> None:
        kept, _ = prune_redundant_subdomains(domains)
        self.domains: frozenset[str] = frozenset(kept)
        self.path_keywords: tuple[str, ...] = tuple(k.lower() for k in path_keywords if k)

    def matches_domain(self, host: str) -> bool:
        return any(candidate in self.domains for candidate in candidate_domains(host))

    def matches_path(self, path: str) -> bool:
        path = path.lower()
        return any(keyword in path for keyword in self.path_keywords)

    def should_block(self, host: str, path: str) -> bool:
        """
        Example:
            >>> FallbackMatcher().should_block("ads.doubleclick.net", "/x")
            True
        """
        return self.matches_domain(host) or self.matches_path(path)

    def should_block_url(self, url: str) -> bool:
        """Split a URL and check it; URLs without a host are never blocked."""
        try:
            parts = urlsplit(url)
        except ValueError:
            return False
        host = parts.hostname
        if not host:
            return False
        return self.should_block(host, parts.path or "/")
