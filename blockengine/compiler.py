"""
compiler.py - Fan-out chunk compilation against the declarative backend.

Every chunk is submitted at once and the join waits for all of them to
settle. A rejected chunk is logged and left out; it never cancels or taints
the others, and zero successes is still a result. Retrying is the update
coordinator's business, not this module's.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Protocol, Sequence, Union

from blockengine.models import RuleChunk

logger = logging.getLogger(__name__)


class CompileBackend(Protocol):
    """
    The declarative rule backend.

    ``compile`` returns an opaque handle for the compiled list, or raises
    (typically ``RuleCompileError``) when the list is rejected. It may be a
    coroutine function or a plain function.
    """

    def compile(self, identifier: str, rule_list_json: str) -> Union[Any, Awaitable[Any]]:
        ...


@dataclass(frozen=True)
class CompileResult:
    """
    Joined outcome of one compilation round.

    ``handles`` follow chunk order, successful chunks only.
    """
    handles: tuple[Any, ...] = ()
    succeeded: int = 0
    failed: int = 0
    failures: tuple[tuple[str, str], ...] = ()


EMPTY_RESULT = CompileResult()


async def _compile_chunk(backend: CompileBackend, chunk: RuleChunk) -> Any:
    result = backend.compile(chunk.identifier, chunk.to_json())
    if inspect.isawaitable(result):
        result = await result
    if result is None:
        raise ValueError("backend returned no handle")
    return result


class RuleCompiler:
    """Submits chunks to a backend and joins the results."""

    async def compile(self, chunks: Sequence[RuleChunk], backend: CompileBackend) -> CompileResult:
        """
        Compile all chunks concurrently.

        Args:
            chunks: Chunks to compile, in order
            backend: Compile backend collaborator

        Returns:
            CompileResult with handles of the chunks that compiled
        """
        if not chunks:
            return EMPTY_RESULT

        results = await asyncio.gather(
            *(_compile_chunk(backend, chunk) for chunk in chunks),
            return_exceptions=True,
        )

        handles: list[Any] = []
        failures: list[tuple[str, str]] = []
        for chunk, result in zip(chunks, results):
            if isinstance(result, BaseException):
                logger.warning("Chunk %s failed to compile: %s", chunk.identifier, result)
                failures.append((chunk.identifier, str(result) or type(result).__name__))
            else:
                logger.debug("Chunk %s compiled: %d rules", chunk.identifier, len(chunk))
                handles.append(result)

        logger.info("Compiled %d/%d chunks", len(handles), len(chunks))
        return CompileResult(
            handles=tuple(handles),
            succeeded=len(handles),
            failed=len(failures),
            failures=tuple(failures),
        )
