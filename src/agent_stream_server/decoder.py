"""Consumer-side reassembler for the ``event:``/``data:`` frame stream.

Transports deliver bytes in arbitrary chunks: a frame, a line, or a single
multi-byte character can be split anywhere. The decoder keeps an
incremental UTF-8 decoder and a text buffer, and only parses text up to the
last complete frame delimiter. Feeding the same bytes split at any offset
produces the same events.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Callable, Iterable, NamedTuple

from .errors import ProtocolError
from .events import StreamEvent, parse_event
from .schemas import THREAD_ID_KEYS

logger = logging.getLogger(__name__)

FRAME_DELIMITER = "\n\n"
DONE_SENTINEL = "[DONE]"

EventHandler = Callable[[str, dict[str, Any]], None]


class DecodedEvent(NamedTuple):
    event_type: str
    payload: dict[str, Any]

    def to_event(self) -> StreamEvent:
        return parse_event(self.event_type, self.payload)


class StreamDecoder:
    """Reassembles frames for one request. Create a new instance per request."""

    def __init__(self, handler: EventHandler | None = None, *, session_id: str | None = None) -> None:
        self._handler = handler
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.session_id = session_id
        self.done = False
        self.skipped_frames = 0

    @property
    def pending(self) -> str:
        """Text received after the last complete frame."""
        return self._buffer

    def feed(self, chunk: bytes) -> list[DecodedEvent]:
        """Decode ``chunk`` and return the events of every frame it completes."""

        return self._consume(self._decoder.decode(chunk))

    def close(self) -> list[DecodedEvent]:
        """Flush the byte decoder and parse an unterminated trailing frame, if any."""

        events = self._consume(self._decoder.decode(b"", final=True))
        remainder, self._buffer = self._buffer, ""
        if remainder.strip():
            event = self._process_frame(remainder)
            if event is not None:
                events.append(event)
        return events

    def _consume(self, text: str) -> list[DecodedEvent]:
        if not text:
            return []
        # A "\r" left at the tail pairs with a "\n" from the next chunk.
        self._buffer = (self._buffer + text).replace("\r\n", "\n")
        *frames, self._buffer = self._buffer.split(FRAME_DELIMITER)
        events = []
        for frame in frames:
            event = self._process_frame(frame)
            if event is not None:
                events.append(event)
        return events

    def _process_frame(self, frame: str) -> DecodedEvent | None:
        event_type: str | None = None
        data_lines: list[str] = []
        for line in frame.split("\n"):
            if not line or line.startswith(":"):
                continue
            field, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if field == "event":
                event_type = value.strip()
            elif field == "data":
                data_lines.append(value)
        if event_type is None and not data_lines:
            return None

        raw = "\n".join(data_lines)
        if raw.strip() == DONE_SENTINEL:
            self.done = True
            return None
        try:
            payload = self._parse_payload(raw)
        except ProtocolError as exc:
            self.skipped_frames += 1
            logger.warning("[DECODER] Skipping malformed frame (%s): %r", exc, frame[:200])
            return None

        if event_type is None:
            event_type = str(payload.get("type") or "message")
        self._adopt_session_id(payload)
        if self._handler is not None:
            self._handler(event_type, payload)
        return DecodedEvent(event_type, payload)

    @staticmethod
    def _parse_payload(raw: str) -> dict[str, Any]:
        if not raw.strip():
            return {}
        try:
            value = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ProtocolError(f"invalid JSON in data line: {exc.msg}", frame=raw) from exc
        if isinstance(value, dict):
            return value
        return {"value": value}

    def _adopt_session_id(self, payload: dict[str, Any]) -> None:
        if self.session_id is not None:
            return
        for key in THREAD_ID_KEYS:
            value = payload.get(key)
            if isinstance(value, str) and value:
                self.session_id = value
                logger.debug("[DECODER] Adopted session id %s from '%s'", value, key)
                return


def decode_chunks(chunks: Iterable[bytes], handler: EventHandler | None = None) -> list[DecodedEvent]:
    decoder = StreamDecoder(handler)
    events: list[DecodedEvent] = []
    for chunk in chunks:
        events.extend(decoder.feed(chunk))
    events.extend(decoder.close())
    return events


def events_from_bytes(chunks: Iterable[bytes]) -> list[StreamEvent]:
    """Decode raw chunks into typed events, dropping frames outside the vocabulary."""

    events: list[StreamEvent] = []
    for decoded in decode_chunks(chunks):
        try:
            events.append(decoded.to_event())
        except ProtocolError as exc:
            logger.warning("[DECODER] Dropping unknown event %s: %s", decoded.event_type, exc)
    return events


async def aiter_events(
    byte_stream: AsyncIterable[bytes],
    decoder: StreamDecoder | None = None,
) -> AsyncIterator[DecodedEvent]:
    """Yield decoded events from an async byte stream as frames complete."""

    decoder = decoder or StreamDecoder()
    async for chunk in byte_stream:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.close():
        yield event
