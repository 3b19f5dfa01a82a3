"""Deterministic backend used for local runs and tests.

Replies are computed from the message alone: arithmetic and time questions
go through the agent's real tools, anything else is echoed back. Canned
scripts and injected failures make streaming behaviour reproducible.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import AsyncIterator, Collection, Mapping, Sequence, Union

from ..errors import GenerationError
from ..producer import BackendChunk, ToolCompleted, ToolFailed, ToolStarted
from .base import GenerationBackend, GenerationRequest

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\S+\s*|\s+")
_EXPRESSION_RE = re.compile(r"[-+(]*\d[\d.\s()+\-*/%]*[+\-*/%][\d.\s()+\-*/%]*\d\)*")
_TIME_RE = re.compile(r"\b(time|clock)\b", re.IGNORECASE)

Script = Union[str, Sequence[BackendChunk]]


def tokenize(text: str) -> list[str]:
    """Split text into word tokens that keep their trailing whitespace."""

    return _TOKEN_RE.findall(text)


class ScriptedBackend(GenerationBackend):
    name = "scripted"

    def __init__(
        self,
        scripts: Mapping[str, Script] | None = None,
        *,
        fail_on: Collection[str] = (),
        chunk_delay: float = 0.0,
    ) -> None:
        self._scripts = dict(scripts or {})
        self._fail_on = set(fail_on)
        self._chunk_delay = chunk_delay

    def _tool_calls(self, request: GenerationRequest) -> list[tuple[str, dict]]:
        calls: list[tuple[str, dict]] = []
        tool_names = request.agent.tool_names
        expression = _EXPRESSION_RE.search(request.message)
        if "calculate" in tool_names and expression:
            calls.append(("calculate", {"expression": expression.group(0).strip()}))
        if "get_current_time" in tool_names and _TIME_RE.search(request.message):
            calls.append(("get_current_time", {}))
        return calls

    def _run_tools(self, request: GenerationRequest) -> list[BackendChunk]:
        tools = {tool.name: tool for tool in request.agent.tools()}
        chunks: list[BackendChunk] = []
        for index, (name, args) in enumerate(self._tool_calls(request)):
            call_id = f"call_{index}"
            chunks.append(ToolStarted(name=name, params=args, call_id=call_id))
            try:
                output = tools[name].invoke(args)
            except Exception as exc:
                logger.warning("[SCRIPTED] Tool %s failed: %s", name, exc)
                chunks.append(ToolFailed(name=name, error=str(exc), call_id=call_id))
                continue
            chunks.append(ToolCompleted(name=name, output=output, call_id=call_id))
        return chunks

    def _reply(self, request: GenerationRequest, tool_chunks: Sequence[BackendChunk]) -> str:
        sentences: list[str] = []
        for chunk in tool_chunks:
            if isinstance(chunk, ToolCompleted) and chunk.name == "calculate":
                sentences.append(f"The result is {chunk.output}.")
            elif isinstance(chunk, ToolCompleted) and chunk.name == "get_current_time":
                sentences.append(f"The current time is {chunk.output}.")
            elif isinstance(chunk, ToolFailed):
                sentences.append(f"I could not use {chunk.name}: {chunk.error}.")
        if not sentences:
            sentences.append(f'You said: "{request.message}". This is the {request.agent.name} agent.')
        return " ".join(sentences)

    def plan(self, request: GenerationRequest) -> list[BackendChunk]:
        """Return every chunk this backend will emit for ``request``."""

        script = self._scripts.get(request.message)
        if isinstance(script, str):
            return list(tokenize(script))
        if script is not None:
            return list(script)
        tool_chunks = self._run_tools(request)
        return [*tool_chunks, *tokenize(self._reply(request, tool_chunks))]

    async def invoke(self, request: GenerationRequest) -> str:
        if request.message in self._fail_on:
            raise GenerationError(f"Scripted failure for message {request.message!r}")
        return "".join(chunk for chunk in self.plan(request) if isinstance(chunk, str))

    async def stream(self, request: GenerationRequest) -> AsyncIterator[BackendChunk]:
        # Failing messages emit their first chunk, then raise mid-stream.
        failing = request.message in self._fail_on
        for chunk in self.plan(request):
            await asyncio.sleep(self._chunk_delay)
            yield chunk
            if failing:
                break
        if failing:
            raise GenerationError(f"Scripted failure for message {request.message!r}")
