"""Tests for the cooperative generation producer."""

from __future__ import annotations

import asyncio

import pytest

from agent_stream_server.backends import ScriptedBackend
from agent_stream_server.producer import (
    INTERRUPTION_MARKER,
    GenerationFailed,
    GenerationProducer,
    Interrupted,
    TextFragment,
    ToolCompleted,
    ToolStarted,
    collect_text,
    split_text,
)
from agent_stream_server.sessions import SessionRegistry


async def _drain(iterator):
    return [item async for item in iterator]


class TestGenerate:
    @pytest.mark.asyncio
    async def test_yields_full_reply_for_active_session(self, make_request):
        registry = SessionRegistry()
        registry.begin("t1")
        producer = GenerationProducer(registry)

        fragments = await _drain(producer.generate(ScriptedBackend(), make_request("Hello")))

        assert all(isinstance(fragment, TextFragment) for fragment in fragments)
        assert collect_text(fragments) == 'You said: "Hello". This is the Assistant agent.'

    @pytest.mark.asyncio
    async def test_inactive_session_interrupts_immediately(self, make_request):
        registry = SessionRegistry()
        producer = GenerationProducer(registry)

        fragments = await _drain(producer.generate(ScriptedBackend(), make_request("Hello")))

        assert fragments == [Interrupted()]
        assert collect_text(fragments) == INTERRUPTION_MARKER

    @pytest.mark.asyncio
    async def test_stop_between_fragments(self, make_request, long_reply):
        registry = SessionRegistry()
        registry.begin("t1")
        producer = GenerationProducer(registry)
        backend = ScriptedBackend({"Tell me a long story": long_reply})

        received = []
        async for fragment in producer.generate(backend, make_request("Tell me a long story")):
            received.append(fragment)
            if len(received) == 5:
                registry.stop("t1")

        assert len(received) == 6
        assert isinstance(received[-1], Interrupted)
        text = collect_text(received)
        assert text.startswith("word0 word1 word2 word3 word4")
        assert text.endswith(INTERRUPTION_MARKER)
        assert len(text) < len(long_reply)

    @pytest.mark.asyncio
    async def test_run_state_outlives_thread_restart(self, make_request, long_reply):
        """A stopped run keeps its own flag when the thread is started again."""
        registry = SessionRegistry(grace_seconds=0.05)
        session = registry.begin("t1")
        producer = GenerationProducer(registry)
        backend = ScriptedBackend({"Tell me a long story": long_reply})

        received = []
        async for fragment in producer.generate(backend, make_request("Tell me a long story"), session):
            received.append(fragment)
            if len(received) == 3:
                registry.stop("t1")
                registry.begin("t1")

        assert len(received) == 4
        assert isinstance(received[-1], Interrupted)
        assert registry.is_active("t1") is True

    @pytest.mark.asyncio
    async def test_unpaced_generation_skips_delay(self, make_request, long_reply):
        registry = SessionRegistry()
        session = registry.begin("t1")
        producer = GenerationProducer(registry, token_delay=10.0)
        backend = ScriptedBackend({"Tell me a long story": long_reply})

        generation = producer.generate(backend, make_request("Tell me a long story"), session, paced=False)
        fragments = await asyncio.wait_for(_drain(generation), timeout=1.0)

        assert collect_text(fragments) == long_reply

    @pytest.mark.asyncio
    async def test_backend_failure_becomes_fragment(self, make_request):
        registry = SessionRegistry()
        registry.begin("t1")
        producer = GenerationProducer(registry)
        backend = ScriptedBackend({"Please fail": "partial reply"}, fail_on={"Please fail"})

        fragments = await _drain(producer.generate(backend, make_request("Please fail")))

        assert fragments[0] == TextFragment("partial ")
        assert isinstance(fragments[-1], GenerationFailed)
        assert fragments[-1].message.startswith("Generation failed: Scripted failure")

    @pytest.mark.asyncio
    async def test_tool_fragments_pass_through(self, make_request):
        registry = SessionRegistry()
        registry.begin("t1")
        producer = GenerationProducer(registry)

        fragments = await _drain(producer.generate(ScriptedBackend(), make_request("What is 2 + 3?")))

        assert fragments[0] == ToolStarted(name="calculate", params={"expression": "2 + 3"}, call_id="call_0")
        assert fragments[1] == ToolCompleted(name="calculate", output="5", call_id="call_0")
        assert collect_text(fragments) == "The result is 5."

    @pytest.mark.asyncio
    async def test_chunk_size_splits_text(self, make_request):
        registry = SessionRegistry()
        registry.begin("t1")
        producer = GenerationProducer(registry, chunk_size=3)
        backend = ScriptedBackend({"Hello": ["abcdefgh"]})

        fragments = await _drain(producer.generate(backend, make_request("Hello")))

        assert [fragment.text for fragment in fragments] == ["abc", "def", "gh"]


class TestSplitText:
    @pytest.mark.parametrize(
        "text, size, expected",
        [
            ("hello", 0, ["hello"]),
            ("hello", 10, ["hello"]),
            ("hello", 2, ["he", "ll", "o"]),
            ("héllo wörld", 4, ["héll", "o wö", "rld"]),
        ],
    )
    def test_split(self, text, size, expected):
        assert split_text(text, size) == expected
