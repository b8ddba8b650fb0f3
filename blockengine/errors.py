"""
errors.py - Exception hierarchy for the rule engine.

Only ``ConfigError`` ever reaches a caller. Everything else is raised by a
collaborator (backend, fetcher) or by payload decoding and is recovered
inside the engine, degrading to the embedded baseline.
"""

from __future__ import annotations


class BlockEngineError(Exception):
    """Base class for all engine errors."""


class ConfigError(BlockEngineError, ValueError):
    """Invalid engine configuration."""


class RuleCompileError(BlockEngineError):
    """A compile backend rejected a rule chunk."""

    def __init__(self, identifier: str, reason: str) -> None:
        super().__init__(f"{identifier}: {reason}")
        self.identifier = identifier
        self.reason = reason


class DownloadError(BlockEngineError):
    """A list download failed (transport error or non-200 status)."""

    def __init__(self, url: str, reason: str, status: int | None = None) -> None:
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason
        self.status = status


class PayloadError(BlockEngineError):
    """A downloaded or cached payload is not a usable rule list."""
