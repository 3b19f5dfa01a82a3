"""Tests for stream reassembly on the consumer side."""

from __future__ import annotations

import pytest

from agent_stream_server.decoder import StreamDecoder, aiter_events, decode_chunks, events_from_bytes
from agent_stream_server.encoder import StreamEncoder
from agent_stream_server.errors import ProtocolError
from agent_stream_server.events import StreamEnd, StreamStart, StreamToken, ToolExecutionComplete
from agent_stream_server.producer import Interrupted, TextFragment, ToolCompleted, ToolStarted


def _sample_stream() -> bytes:
    encoder = StreamEncoder("t1", "run-1", "assistant")
    frames = [
        encoder.start(),
        encoder.encode(TextFragment("Héllo ")),
        encoder.encode(ToolStarted("calculate", {"expression": "2+3"}, "call_0")),
        encoder.encode(ToolCompleted("calculate", "5", "call_0")),
        encoder.encode(TextFragment("wörld ✓ 🚀")),
        encoder.encode(Interrupted()),
        encoder.finish(),
    ]
    return "".join(frames).encode("utf-8")


class TestReassembly:
    def test_whole_stream_in_one_chunk(self):
        events = decode_chunks([_sample_stream()])
        assert [event.event_type for event in events] == [
            "stream_start",
            "stream_token",
            "tool_execution_start",
            "tool_execution_complete",
            "stream_token",
            "stream_token",
            "stream_end",
        ]

    def test_every_split_offset_yields_same_events(self):
        """Splitting anywhere, including inside multi-byte characters, is invisible."""
        data = _sample_stream()
        expected = decode_chunks([data])
        for offset in range(1, len(data)):
            assert decode_chunks([data[:offset], data[offset:]]) == expected, offset

    def test_byte_at_a_time(self):
        data = _sample_stream()
        expected = decode_chunks([data])
        assert decode_chunks(data[i : i + 1] for i in range(len(data))) == expected

    def test_partial_frame_is_buffered(self):
        decoder = StreamDecoder()
        assert decoder.feed(b'event: stream_token\ndata: {"content": "a"}') == []
        assert decoder.pending.startswith("event: stream_token")
        events = decoder.feed(b"\n\n")
        assert [event.payload["content"] for event in events] == ["a"]
        assert decoder.pending == ""

    def test_crlf_line_endings(self):
        data = b'event: stream_token\r\ndata: {"content": "a"}\r\n\r\nevent: stream_end\r\ndata: {}\r\n\r\n'
        for offset in range(1, len(data)):
            events = decode_chunks([data[:offset], data[offset:]])
            assert [event.event_type for event in events] == ["stream_token", "stream_end"], offset

    def test_unterminated_trailing_frame_flushed_on_close(self):
        decoder = StreamDecoder()
        assert decoder.feed(b'event: stream_end\ndata: {"interrupted": false}') == []
        events = decoder.close()
        assert [event.event_type for event in events] == ["stream_end"]


class TestFrameParsing:
    def test_malformed_json_is_skipped(self):
        data = b'event: stream_token\ndata: {not json\n\nevent: stream_token\ndata: {"content": "ok"}\n\n'
        decoder = StreamDecoder()
        events = decoder.feed(data)
        assert [event.payload for event in events] == [{"content": "ok"}]
        assert decoder.skipped_frames == 1

    def test_comment_lines_ignored(self):
        events = decode_chunks([b": keep-alive\n\nevent: stream_token\n: note\ndata: {\"content\": \"x\"}\n\n"])
        assert len(events) == 1
        assert events[0].payload == {"content": "x"}

    def test_type_falls_back_to_payload(self):
        events = decode_chunks([b'data: {"type": "stream_token", "content": "x"}\n\n'])
        assert events[0].event_type == "stream_token"

    def test_type_defaults_to_message(self):
        events = decode_chunks([b'data: {"content": "x"}\n\n'])
        assert events[0].event_type == "message"

    def test_event_without_data_has_empty_payload(self):
        events = decode_chunks([b"event: stream_end\n\n"])
        assert events[0].event_type == "stream_end"
        assert events[0].payload == {}

    def test_non_object_payload_is_wrapped(self):
        events = decode_chunks([b"event: message\ndata: [1, 2]\n\n"])
        assert events[0].payload == {"value": [1, 2]}

    def test_multiple_data_lines_are_joined(self):
        events = decode_chunks([b'event: stream_token\ndata: {"content":\ndata: "x"}\n\n'])
        assert events[0].payload == {"content": "x"}

    def test_done_sentinel(self):
        decoder = StreamDecoder()
        events = decoder.feed(b'event: stream_token\ndata: {"content": "a"}\n\ndata: [DONE]\n\n')
        assert len(events) == 1
        assert decoder.done is True

    def test_handler_called_in_order(self):
        seen = []
        decoder = StreamDecoder(lambda event_type, payload: seen.append(event_type))
        decoder.feed(_sample_stream())
        assert seen[0] == "stream_start"
        assert seen[-1] == "stream_end"


class TestSessionIdAdoption:
    @pytest.mark.parametrize(
        "payload, expected",
        [
            (b'{"id": "d", "chat_id": "c", "conversation_id": "b", "thread_id": "a"}', "a"),
            (b'{"id": "d", "chat_id": "c", "conversation_id": "b"}', "b"),
            (b'{"id": "d", "chat_id": "c"}', "c"),
            (b'{"id": "d"}', "d"),
            (b'{"thread_id": "", "id": "d"}', "d"),
        ],
    )
    def test_priority(self, payload, expected):
        decoder = StreamDecoder()
        decoder.feed(b"event: stream_start\ndata: " + payload + b"\n\n")
        assert decoder.session_id == expected

    def test_first_id_wins(self):
        decoder = StreamDecoder()
        decoder.feed(b'event: stream_start\ndata: {"thread_id": "first"}\n\n')
        decoder.feed(b'event: stream_end\ndata: {"thread_id": "second"}\n\n')
        assert decoder.session_id == "first"

    def test_explicit_session_id_kept(self):
        decoder = StreamDecoder(session_id="mine")
        decoder.feed(b'event: stream_start\ndata: {"thread_id": "theirs"}\n\n')
        assert decoder.session_id == "mine"


class TestTypedEvents:
    def test_round_trip_to_models(self):
        events = events_from_bytes([_sample_stream()])
        assert isinstance(events[0], StreamStart)
        assert events[0].thread_id == "t1"
        assert isinstance(events[1], StreamToken)
        assert events[1].content == "Héllo "
        assert isinstance(events[3], ToolExecutionComplete)
        assert events[3].output == "5"
        assert isinstance(events[-1], StreamEnd)
        assert events[-1].interrupted is True

    def test_unknown_events_dropped(self):
        events = events_from_bytes([b'event: custom\ndata: {"x": 1}\n\nevent: stream_end\ndata: {}\n\n'])
        assert len(events) == 1
        assert isinstance(events[0], StreamEnd)

    def test_invalid_payload_raises_protocol_error(self):
        decoded = decode_chunks([b'event: stream_token\ndata: {"wrong": 1}\n\n'])[0]
        with pytest.raises(ProtocolError):
            decoded.to_event()


class TestAsyncIteration:
    @pytest.mark.asyncio
    async def test_aiter_events(self):
        data = _sample_stream()

        async def byte_stream():
            for i in range(0, len(data), 7):
                yield data[i : i + 7]

        events = [event async for event in aiter_events(byte_stream())]
        assert events == decode_chunks([data])
