"""
config.py - Engine policy parameters.

Chunk sizes, retry counts and cache lifetime are policy, not contract. They
were tuned empirically against the declarative backend and the list mirrors,
so they live here instead of being scattered through the modules.

Every field can be overridden from the environment:

    BLOCKENGINE_EMBEDDED_CHUNK_SIZE=150
    BLOCKENGINE_SOURCES=https://a.example/list.json,https://b.example/list.txt
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Final, Mapping

from blockengine.errors import ConfigError


# =============================================================================
# DEFAULTS
# =============================================================================

# Small enough for the backend to compile synchronously at launch
DEFAULT_EMBEDDED_CHUNK_SIZE: Final[int] = 200
# Large downloaded lists are compiled asynchronously in big slices
DEFAULT_DOWNLOADED_CHUNK_SIZE: Final[int] = 50_000

DEFAULT_MIN_PATTERN_LENGTH: Final[int] = 3

DEFAULT_TIMEOUT: Final[float] = 30.0
DEFAULT_RETRIES: Final[int] = 3
DEFAULT_BACKOFF_BASE: Final[float] = 1.0
DEFAULT_BACKOFF_MAX: Final[float] = 30.0

DEFAULT_CACHE_MAX_AGE_DAYS: Final[float] = 7.0
DEFAULT_CACHE_KEY: Final[str] = "easylist_content_blocker.json"

DEFAULT_SOURCES: Final[tuple[str, ...]] = (
    "https://easylist-downloads.adblockplus.org/easylist_content_blocker.json",
)

ENV_PREFIX: Final[str] = "BLOCKENGINE_"


@dataclass(frozen=True)
class EngineConfig:
    """
    Tunable policy for one engine instance.

    Attributes:
        embedded_chunk_size: Max records per embedded chunk
        downloaded_chunk_size: Max records per downloaded chunk
        min_pattern_length: Network patterns shorter than this are rejected
        fetch_timeout: Seconds per download attempt
        max_attempts: Download attempts per source before moving on
        backoff_base: First retry delay in seconds
        backoff_max: Upper bound for any retry delay
        cache_max_age_days: Age after which the cached list is refreshed
        cache_key: Fixed key of the cached list in the cache store
        sources: Download mirrors, tried in order
    """
    embedded_chunk_size: int = DEFAULT_EMBEDDED_CHUNK_SIZE
    downloaded_chunk_size: int = DEFAULT_DOWNLOADED_CHUNK_SIZE
    min_pattern_length: int = DEFAULT_MIN_PATTERN_LENGTH
    fetch_timeout: float = DEFAULT_TIMEOUT
    max_attempts: int = DEFAULT_RETRIES
    backoff_base: float = DEFAULT_BACKOFF_BASE
    backoff_max: float = DEFAULT_BACKOFF_MAX
    cache_max_age_days: float = DEFAULT_CACHE_MAX_AGE_DAYS
    cache_key: str = DEFAULT_CACHE_KEY
    sources: tuple[str, ...] = DEFAULT_SOURCES

    def __post_init__(self) -> None:
        for name in ("embedded_chunk_size", "downloaded_chunk_size", "max_attempts", "min_pattern_length"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be >= 1, got {getattr(self, name)}")
        for name in ("fetch_timeout", "cache_max_age_days"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be > 0, got {getattr(self, name)}")
        if self.backoff_base < 0 or self.backoff_max < 0:
            raise ConfigError("backoff delays must be >= 0")
        if not self.cache_key:
            raise ConfigError("cache_key must not be empty")

    @property
    def cache_max_age_seconds(self) -> float:
        return self.cache_max_age_days * 86400

    def backoff_delay(self, attempt: int) -> float:
        """
        Delay before retrying after failed attempt number ``attempt`` (0-based).

        Example:
            >>> EngineConfig(backoff_base=1.0, backoff_max=30.0).backoff_delay(2)
            4.0
        """
        return min(self.backoff_max, self.backoff_base * (2 ** attempt))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EngineConfig:
        """Build a config from ``BLOCKENGINE_*`` variables, defaults elsewhere."""
        env = os.environ if environ is None else environ
        overrides: dict[str, object] = {}

        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or not raw.strip():
                continue
            raw = raw.strip()
            if f.name == "sources":
                overrides[f.name] = tuple(s.strip() for s in raw.split(",") if s.strip())
            elif f.name == "cache_key":
                overrides[f.name] = raw
            else:
                caster = int if isinstance(getattr(cls, f.name), int) else float
                try:
                    overrides[f.name] = caster(raw)
                except ValueError as e:
                    raise ConfigError(f"{ENV_PREFIX}{f.name.upper()}: {e}") from e

        return cls(**overrides)  # type: ignore[arg-type]
