"""
engine.py - Public surface of the rule engine.

Protection layers, from strongest to always-available:

    1. Compiled rule lists    declarative backend, every request type
         embedded chunks      compiled at launch, no network needed
         downloaded chunks    appended later by the update coordinator
    2. Fallback matcher       domain + path check in the navigation hook
    3. Injected scripts       cosmetic cleanup after load

``compile()`` returns as soon as the embedded chunks have settled; the list
download runs in a background task and never delays it. Each compile starts
a new session; disabling ends it. Work from an ended session is discarded.

What consumers read (handles, state, rule counts) lives in one immutable
EngineSnapshot that is replaced in a single assignment, so a reader sees
either the embedded-only or the enhanced configuration, never a mix.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Protocol, Sequence
from urllib.parse import urlsplit

from blockengine.builder import RuleSetBuilder
from blockengine.compiler import CompileBackend, CompileResult, RuleCompiler
from blockengine.config import EngineConfig
from blockengine.domains import normalize_domain, registered_domain
from blockengine.downloader import AiohttpFetcher, Fetcher
from blockengine.embedded import EMBEDDED_FILTER_TEXT
from blockengine.matcher import FallbackMatcher
from blockengine.models import EMPTY_RULESET, EngineState, Provenance, RuleSet
from blockengine.payloads import ALWAYS_ON_SCRIPTS, InjectedScript
from blockengine.storage import CacheStore, JsonStateStore
from blockengine.updater import ListUpdateCoordinator, RefreshOutcome

logger = logging.getLogger(__name__)


class RequestFilterSink(Protocol):
    """Renderer injection points; ``apply`` replaces whatever was active."""

    def apply(self, handles: Sequence[Any], scripts: Sequence[InjectedScript]) -> None:
        ...


@dataclass(frozen=True)
class EngineSnapshot:
    """Everything a consumer may read about the active configuration."""
    state: EngineState
    ruleset: RuleSet = EMPTY_RULESET
    handles: tuple[Any, ...] = ()
    embedded_handle_count: int = 0

    @property
    def downloaded_handles(self) -> tuple[Any, ...]:
        return self.handles[self.embedded_handle_count:]


DISABLED_SNAPSHOT = EngineSnapshot(EngineState.DISABLED)

Listener = Callable[[EngineSnapshot], None]


class EngineFacade:
    """
    Single entry point for the browsing session.

    Construct once per session and inject it into the navigation hook and the
    renderer setup. Only the enabled flag is persisted (via ``state_store``);
    handles and counters are rebuilt on every start.
    """

    def __init__(
        self,
        backend: CompileBackend,
        *,
        fetcher: Fetcher | None = None,
        cache: CacheStore | None = None,
        state_store: JsonStateStore | None = None,
        config: EngineConfig | None = None,
        embedded_rule_text: Sequence[str] = EMBEDDED_FILTER_TEXT,
        builder: RuleSetBuilder | None = None,
        matcher: FallbackMatcher | None = None,
        scripts: Sequence[InjectedScript] = ALWAYS_ON_SCRIPTS,
    ) -> None:
        self.backend = backend
        self.cache = cache
        self.state_store = state_store
        self.config = config or EngineConfig()
        self.embedded_rule_text = tuple(embedded_rule_text)
        self.builder = builder or RuleSetBuilder(self.config)
        self.compiler = RuleCompiler()
        self.matcher = matcher or FallbackMatcher()
        self.scripts = tuple(scripts)
        self.coordinator = ListUpdateCoordinator(
            fetcher or AiohttpFetcher(),
            backend,
            self._publish_enhanced,
            config=self.config,
            builder=self.builder,
            compiler=self.compiler,
            embedded_rule_text=self.embedded_rule_text,
        )

        self._enabled = state_store.load_enabled() if state_store else True
        self._snapshot = DISABLED_SNAPSHOT
        self._generation = 0
        self._compiling = False
        self._refresh_task: asyncio.Task[RefreshOutcome | None] | None = None
        self._listeners: list[Listener] = []

        self.last_refresh: RefreshOutcome | None = None
        self.blocked_count = 0
        self.last_blocked_domain = ""

    # =========================================================================
    # READ SIDE
    # =========================================================================

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def snapshot(self) -> EngineSnapshot:
        return self._snapshot

    @property
    def state(self) -> EngineState:
        return self._snapshot.state

    @property
    def active_handles(self) -> tuple[Any, ...]:
        return self._snapshot.handles

    @property
    def refresh_task(self) -> asyncio.Task[RefreshOutcome | None] | None:
        return self._refresh_task

    @property
    def status(self) -> str:
        """Passive status line for the UI."""
        snap = self._snapshot
        if not self._enabled or snap.state is EngineState.DISABLED:
            return "Disabled"
        if snap.state is EngineState.COMPILING:
            return "Compiling rules..."
        if snap.ruleset.provenance is Provenance.ENHANCED:
            return f"{snap.ruleset.total_rule_count} rules active ({len(snap.handles)} groups)"
        return f"{len(snap.handles)} rule groups active"

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with every published snapshot. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def set_enabled(self, enabled: bool) -> None:
        """Persist the flag; disabling clears everything, enabling recompiles."""
        if self.state_store is not None:
            await self.state_store.save_enabled(enabled)
        if enabled == self._enabled:
            return

        self._enabled = enabled
        if enabled:
            logger.info("Ad blocking enabled")
            await self.compile()
        else:
            logger.info("Ad blocking disabled")
            self._end_session()
            self._publish(DISABLED_SNAPSHOT)

    async def compile(self, on_ready: Callable[[], None] | None = None) -> EngineSnapshot:
        """
        Compile the embedded rules and start the background enhancement.

        ``on_ready`` fires once the embedded chunks have settled (or right
        away if the engine is disabled or already compiling). Never waits on
        the network.
        """
        if not self._enabled:
            self._end_session()
            self._publish(DISABLED_SNAPSHOT)
            return self._finish(on_ready)
        if self._compiling:
            return self._finish(on_ready)

        self._compiling = True
        self._end_session()
        token = self._generation
        self._publish(replace(self._snapshot, state=EngineState.COMPILING))

        try:
            ruleset = self.builder.build(self.embedded_rule_text)
            result = await self.compiler.compile(ruleset.embedded_chunks, self.backend)
        finally:
            self._compiling = False

        if token != self._generation:
            # Re-enabled while this run was in flight: its session is gone
            if self._enabled:
                return await self.compile(on_ready)
            return self._finish(on_ready)

        logger.info(
            "Embedded compilation: %d/%d chunks compiled", result.succeeded, len(ruleset.embedded_chunks)
        )
        self._publish(EngineSnapshot(
            EngineState.READY_EMBEDDED, ruleset, result.handles, len(result.handles)
        ))
        self._schedule_refresh(token)
        return self._finish(on_ready)

    async def aclose(self) -> None:
        """Cancel any background refresh and wait for it to unwind."""
        task = self._refresh_task
        self._end_session()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _finish(self, on_ready: Callable[[], None] | None) -> EngineSnapshot:
        if on_ready is not None:
            on_ready()
        return self._snapshot

    def _end_session(self) -> None:
        self._generation += 1
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        self._refresh_task = None

    def _publish(self, snapshot: EngineSnapshot) -> None:
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:  # noqa: BLE001
                logger.warning("Snapshot listener failed", exc_info=True)

    # =========================================================================
    # ENHANCEMENT
    # =========================================================================

    def _schedule_refresh(self, token: int) -> None:
        if self.cache is None or not self.config.sources:
            return
        if self.coordinator.in_flight:
            logger.debug("Refresh already in flight, not scheduling another")
            return
        self._refresh_task = asyncio.get_running_loop().create_task(self._enhance(token, self.cache))

    async def _enhance(self, token: int, cache: CacheStore) -> RefreshOutcome | None:
        def is_current() -> bool:
            return self._enabled and self._generation == token

        self._publish(replace(self._snapshot, state=EngineState.ENHANCING))
        try:
            outcome = await self.coordinator.refresh(self.config.sources, cache, is_current=is_current)
        except Exception:  # noqa: BLE001
            logger.warning("List refresh failed unexpectedly", exc_info=True)
            outcome = None

        if is_current():
            self.last_refresh = outcome
            if self._snapshot.state is EngineState.ENHANCING:
                self._publish(replace(self._snapshot, state=EngineState.READY_EMBEDDED))
        return outcome

    def _publish_enhanced(self, ruleset: RuleSet, result: CompileResult) -> bool:
        """Append downloaded handles to the current embedded ones, atomically."""
        if not self._enabled or not self._snapshot.state.is_ready:
            return False

        current = self._snapshot
        embedded = current.handles[:current.embedded_handle_count]
        self._publish(EngineSnapshot(
            EngineState.READY_ENHANCED,
            ruleset,
            embedded + result.handles,
            current.embedded_handle_count,
        ))
        logger.info(
            "Downloaded list added: %d chunks -> %d groups total", result.succeeded, len(self._snapshot.handles)
        )
        return True

    # =========================================================================
    # COLLABORATOR HOOKS
    # =========================================================================

    def apply_to(self, sink: RequestFilterSink) -> None:
        """Push the active handles and always-on scripts to the renderer."""
        if not self._enabled:
            sink.apply((), ())
            return
        snap = self._snapshot
        sink.apply(snap.handles, self.scripts)
        logger.debug("Applied %d rule list(s)", len(snap.handles))

    def should_block(self, url: str) -> bool:
        """Navigation-hook check; works even if nothing ever compiled."""
        if not self._enabled:
            return False
        return self.matcher.should_block_url(url)

    def record_blocked_event(self, count: int, domain: str = "") -> None:
        """Add ``count`` blocked items; negative counts are ignored."""
        if count > 0:
            self.blocked_count += count
        if domain:
            host = urlsplit(domain).hostname if "://" in domain else normalize_domain(domain)
            if host:
                self.last_blocked_domain = registered_domain(host) or host

    def reset_counters(self) -> None:
        self.blocked_count = 0
        self.last_blocked_domain = ""
