"""Cooperative generation producer.

Wraps a backend's raw stream into a lazy sequence of fragments, polling the
run's session flag between fragments so a stop request ends the run at the
next yield boundary. Backend failures never escape: they become a single
``GenerationFailed`` fragment that ends the sequence.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator, Iterable, Union

if TYPE_CHECKING:
    from .backends.base import GenerationBackend, GenerationRequest
    from .sessions import SessionRegistry, SessionState

logger = logging.getLogger(__name__)

INTERRUPTION_MARKER = "\n\n[Generation stopped]"


@dataclass(frozen=True, slots=True)
class TextFragment:
    text: str


@dataclass(frozen=True, slots=True)
class ToolStarted:
    name: str
    params: dict[str, Any] = field(default_factory=dict)
    call_id: str | None = None


@dataclass(frozen=True, slots=True)
class ToolCompleted:
    name: str
    output: Any = None
    call_id: str | None = None


@dataclass(frozen=True, slots=True)
class ToolFailed:
    name: str
    error: str
    call_id: str | None = None


@dataclass(frozen=True, slots=True)
class Interrupted:
    marker: str = INTERRUPTION_MARKER


@dataclass(frozen=True, slots=True)
class GenerationFailed:
    message: str


ToolFragment = Union[ToolStarted, ToolCompleted, ToolFailed]
BackendChunk = Union[str, ToolStarted, ToolCompleted, ToolFailed]
Fragment = Union[TextFragment, ToolStarted, ToolCompleted, ToolFailed, Interrupted, GenerationFailed]


def describe_exception(exc: BaseException) -> str:
    detail = str(exc).strip() or exc.__class__.__name__
    return f"Generation failed: {detail}"


def collect_text(fragments: Iterable[Fragment]) -> str:
    """Concatenate the text of a fragment sequence into the full reply."""

    parts: list[str] = []
    for fragment in fragments:
        if isinstance(fragment, TextFragment):
            parts.append(fragment.text)
        elif isinstance(fragment, Interrupted):
            parts.append(fragment.marker)
    return "".join(parts)


def split_text(text: str, chunk_size: int) -> list[str]:
    if chunk_size <= 0 or len(text) <= chunk_size:
        return [text]
    return [text[i : i + chunk_size] for i in range(0, len(text), chunk_size)]


class GenerationProducer:
    def __init__(
        self,
        registry: SessionRegistry,
        *,
        token_delay: float = 0.0,
        chunk_size: int = 0,
    ) -> None:
        self._registry = registry
        self._token_delay = token_delay
        self._chunk_size = chunk_size

    def _fragments(self, chunk: BackendChunk) -> list[Fragment]:
        if isinstance(chunk, str):
            return [TextFragment(piece) for piece in split_text(chunk, self._chunk_size) if piece]
        return [chunk]

    async def generate(
        self,
        backend: GenerationBackend,
        request: GenerationRequest,
        session: SessionState | None = None,
        *,
        paced: bool = True,
    ) -> AsyncIterator[Fragment]:
        """Yield fragments until the backend is done or the run is stopped.

        ``session`` is the run's own state; without it the registry entry for
        the thread is consulted. ``paced=False`` skips the inter-token delay.
        """

        thread_id = request.thread_id
        if session is None:
            is_active = functools.partial(self._registry.is_active, thread_id)
        else:
            is_active = session.is_active
        delay = self._token_delay if paced else 0.0
        stream = backend.stream(request)
        try:
            async for chunk in stream:
                for fragment in self._fragments(chunk):
                    if not is_active():
                        logger.info("[PRODUCER] Thread %s stopped, interrupting generation", thread_id)
                        yield Interrupted()
                        return
                    yield fragment
                    if delay and isinstance(fragment, TextFragment):
                        await asyncio.sleep(delay)
        except Exception as exc:
            logger.exception("[PRODUCER] Generation failed for thread %s", thread_id)
            yield GenerationFailed(describe_exception(exc))
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
