"""
blockengine package - Embedded Ad/Tracker Blocking Rule Engine

Modules:
    parser: Filter-list text to FilterRule
    converter: FilterRule to declarative records, JSON codec
    builder: Dedup, subdomain pruning and chunking into a RuleSet
    compiler: Concurrent chunk compilation with partial-failure handling
    matcher: Compile-independent domain/path fallback check
    updater: Cached, retried background download of supplemental lists
    engine: Public facade (lifecycle, snapshots, counters)
"""

from blockengine.backends import RegexCompileBackend, evaluate_request
from blockengine.builder import RuleSetBuilder
from blockengine.compiler import CompileResult, RuleCompiler
from blockengine.config import EngineConfig
from blockengine.downloader import AiohttpFetcher
from blockengine.engine import EngineFacade, EngineSnapshot, RequestFilterSink
from blockengine.errors import (
    BlockEngineError,
    ConfigError,
    DownloadError,
    PayloadError,
    RuleCompileError,
)
from blockengine.matcher import FallbackMatcher
from blockengine.models import (
    CompiledRuleRecord,
    EngineState,
    Provenance,
    RuleChunk,
    RuleSet,
)
from blockengine.parser import parse_line, parse_lines
from blockengine.storage import FileCacheStore, JsonStateStore
from blockengine.updater import ListUpdateCoordinator, RefreshOutcome

__version__ = "1.0.0"

__all__ = [
    "AiohttpFetcher",
    "BlockEngineError",
    "CompileResult",
    "CompiledRuleRecord",
    "ConfigError",
    "DownloadError",
    "EngineConfig",
    "EngineFacade",
    "EngineSnapshot",
    "EngineState",
    "FallbackMatcher",
    "FileCacheStore",
    "JsonStateStore",
    "ListUpdateCoordinator",
    "PayloadError",
    "Provenance",
    "RefreshOutcome",
    "RegexCompileBackend",
    "RequestFilterSink",
    "RuleChunk",
    "RuleCompileError",
    "RuleCompiler",
    "RuleSet",
    "RuleSetBuilder",
    "evaluate_request",
    "parse_line",
    "parse_lines",
]
