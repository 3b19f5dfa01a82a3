"""Serialises producer fragments into ``event:``/``data:`` frames."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterable, AsyncIterator

from .events import (
    TERMINAL_EVENTS,
    StreamEnd,
    StreamError,
    StreamEvent,
    StreamStart,
    StreamToken,
    ToolExecutionComplete,
    ToolExecutionError,
    ToolExecutionStart,
)
from .producer import (
    Fragment,
    GenerationFailed,
    Interrupted,
    TextFragment,
    ToolCompleted,
    ToolFailed,
    ToolStarted,
)

logger = logging.getLogger(__name__)

FRAME_DELIMITER = "\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_frame(event_name: str, data: Any = None) -> str:
    """Render one frame. ``data`` is omitted when None."""

    lines = [f"event: {event_name}"]
    if data is not None:
        lines.append(f"data: {json.dumps(data, ensure_ascii=False, default=str)}")
    return "\n".join(lines) + FRAME_DELIMITER


def encode_event(event: StreamEvent) -> str:
    return format_frame(event.event_name, event.payload())


def fragment_to_event(fragment: Fragment) -> StreamEvent | None:
    """Map a non-terminal fragment to its wire event."""

    if isinstance(fragment, TextFragment):
        return StreamToken(content=fragment.text)
    if isinstance(fragment, Interrupted):
        return StreamToken(content=fragment.marker)
    if isinstance(fragment, ToolStarted):
        return ToolExecutionStart(tool_name=fragment.name, params=fragment.params, tool_call_id=fragment.call_id)
    if isinstance(fragment, ToolCompleted):
        return ToolExecutionComplete(tool_name=fragment.name, output=fragment.output, tool_call_id=fragment.call_id)
    if isinstance(fragment, ToolFailed):
        return ToolExecutionError(tool_name=fragment.name, error=fragment.error, tool_call_id=fragment.call_id)
    return None


class StreamEncoder:
    """Encodes exactly one generation.

    Emits one ``stream_start`` first and one terminal frame (``stream_end``
    or ``error``) last. Anything after the terminal frame is a bug in the
    caller and raises ``RuntimeError``.
    """

    def __init__(self, thread_id: str, run_id: str | None = None, agent_id: str | None = None) -> None:
        self.thread_id = thread_id
        self.run_id = run_id
        self.agent_id = agent_id
        self.started = False
        self.terminated = False
        self.interrupted = False

    def _emit(self, event: StreamEvent) -> str:
        if self.terminated:
            raise RuntimeError(f"Stream for thread {self.thread_id} already terminated")
        if not self.started and not isinstance(event, StreamStart):
            raise RuntimeError("stream_start must be the first frame")
        if event.event_name in TERMINAL_EVENTS:
            self.terminated = True
        return encode_event(event)

    def start(self) -> str:
        if self.started:
            raise RuntimeError("stream_start already emitted")
        frame = self._emit(StreamStart(thread_id=self.thread_id, run_id=self.run_id, agent_id=self.agent_id))
        self.started = True
        return frame

    def encode(self, fragment: Fragment) -> str:
        if isinstance(fragment, GenerationFailed):
            return self.fail(fragment.message)
        if isinstance(fragment, Interrupted):
            self.interrupted = True
        event = fragment_to_event(fragment)
        if event is None:
            raise TypeError(f"Unsupported fragment: {fragment!r}")
        return self._emit(event)

    def finish(self) -> str:
        return self._emit(StreamEnd(thread_id=self.thread_id, run_id=self.run_id, interrupted=self.interrupted))

    def fail(self, message: str) -> str:
        logger.warning("[STREAM] Thread %s ends with error: %s", self.thread_id, message)
        return self._emit(StreamError(message=message, thread_id=self.thread_id))

    async def iter_frames(self, fragments: AsyncIterable[Fragment]) -> AsyncIterator[str]:
        """Yield one frame per fragment, bracketed by start and terminal frames."""

        yield self.start()
        async for fragment in fragments:
            yield self.encode(fragment)
            if self.terminated:
                return
        yield self.finish()
