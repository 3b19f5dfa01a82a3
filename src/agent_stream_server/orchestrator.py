"""Per-request glue between the registry, producer, encoder and conversation log."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable

from .agents import AgentDefinition
from .backends import GenerationRequest
from .encoder import StreamEncoder
from .errors import GenerationError, SessionBusyError
from .producer import (
    INTERRUPTION_MARKER,
    Fragment,
    GenerationFailed,
    GenerationProducer,
    Interrupted,
    TextFragment,
    ToolCompleted,
    ToolFailed,
    ToolStarted,
    collect_text,
)
from .schemas import (
    AIChatMessage,
    HumanChatMessage,
    InvokeRequest,
    InvokeResponse,
    StopResponse,
    ToolCall,
    ToolChatMessage,
    generate_thread_id,
)
from .sessions import SessionState
from .state import ServerState

logger = logging.getLogger(__name__)

DisconnectCheck = Callable[[], Awaitable[bool]]


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


@dataclass
class GenerationRun:
    """Book-keeping for one generation, from begin to the final conversation append."""

    agent: AgentDefinition
    thread_id: str
    session: SessionState
    request: GenerationRequest
    text_parts: list[str] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    interrupted: bool = False
    error: str | None = None

    @property
    def run_id(self) -> str:
        return self.session.run_id

    @property
    def content(self) -> str:
        return "".join(self.text_parts)


class SessionOrchestrator:
    def __init__(self, state: ServerState) -> None:
        self._state = state
        settings = state.settings
        self._producer = GenerationProducer(
            state.registry,
            token_delay=settings.stream_token_delay,
            chunk_size=settings.stream_chunk_size,
        )

    @staticmethod
    def resolve_thread_id(request: InvokeRequest) -> str:
        return request.requested_thread_id() or generate_thread_id()

    def _begin(self, agent_id: str, request: InvokeRequest) -> GenerationRun:
        agent = self._state.catalog.get(agent_id)
        thread_id = self.resolve_thread_id(request)
        session = self._state.registry.try_begin(thread_id)
        if session is None:
            raise SessionBusyError(thread_id)
        conversations = self._state.conversations
        conversations.get_or_create(thread_id, agent.id)
        conversations.append(thread_id, HumanChatMessage(content=request.message))
        generation_request = GenerationRequest(
            agent=agent,
            message=request.message,
            thread_id=thread_id,
            run_id=session.run_id,
            context=dict(request.context or {}),
        )
        return GenerationRun(agent=agent, thread_id=thread_id, session=session, request=generation_request)

    def _finish(self, run: GenerationRun) -> None:
        if run.text_parts or run.tool_calls:
            self._state.conversations.append(
                run.thread_id,
                AIChatMessage(content=run.content, tool_calls=tuple(run.tool_calls)),
            )
        self._state.registry.end(run.thread_id, run.session)
        logger.info(
            "[ORCHESTRATOR] Finished thread %s (run=%s, interrupted=%s, error=%s)",
            run.thread_id,
            run.run_id,
            run.interrupted,
            run.error is not None,
        )

    def _record(self, run: GenerationRun, fragment: Fragment) -> None:
        if isinstance(fragment, TextFragment):
            run.text_parts.append(fragment.text)
        elif isinstance(fragment, Interrupted):
            run.text_parts.append(fragment.marker)
            run.interrupted = True
        elif isinstance(fragment, ToolStarted):
            call_id = fragment.call_id or f"call_{len(run.tool_calls)}"
            run.tool_calls.append(ToolCall(id=call_id, name=fragment.name, args=fragment.params))
        elif isinstance(fragment, ToolCompleted):
            self._state.conversations.append(
                run.thread_id,
                ToolChatMessage(
                    content=_stringify(fragment.output),
                    tool_call_id=fragment.call_id or "",
                    name=fragment.name,
                ),
            )
        elif isinstance(fragment, ToolFailed):
            self._state.conversations.append(
                run.thread_id,
                ToolChatMessage(
                    content=f"Error: {fragment.error}",
                    tool_call_id=fragment.call_id or "",
                    name=fragment.name,
                ),
            )
        elif isinstance(fragment, GenerationFailed):
            run.error = fragment.message

    async def invoke(self, agent_id: str, request: InvokeRequest) -> InvokeResponse:
        """Run a generation to completion and return the full reply.

        Fragments go through the same recording as a stream, so tool messages
        and interruption land in the conversation log the same way.
        """

        run = self._begin(agent_id, request)
        fragments: list[Fragment] = []
        generation = self._producer.generate(self._state.backend, run.request, run.session, paced=False)
        try:
            async for fragment in generation:
                self._record(run, fragment)
                fragments.append(fragment)
        finally:
            await generation.aclose()
            self._finish(run)
        if run.error is not None:
            raise GenerationError(run.error)
        return InvokeResponse(content=collect_text(fragments), thread_id=run.thread_id, run_id=run.run_id)

    def open_stream(
        self,
        agent_id: str,
        request: InvokeRequest,
        is_disconnected: DisconnectCheck | None = None,
    ) -> tuple[GenerationRun, AsyncIterator[str]]:
        """Validate and register a streaming generation.

        Unknown agents and busy threads raise here, before any frame is sent.
        The returned iterator yields encoded frames and finalises the run on
        every exit path.
        """

        run = self._begin(agent_id, request)
        return run, self._frames(run, is_disconnected)

    async def stream(
        self,
        agent_id: str,
        request: InvokeRequest,
        is_disconnected: DisconnectCheck | None = None,
    ) -> AsyncIterator[str]:
        _, frames = self.open_stream(agent_id, request, is_disconnected)
        try:
            async for frame in frames:
                yield frame
        finally:
            await frames.aclose()

    async def _frames(self, run: GenerationRun, is_disconnected: DisconnectCheck | None) -> AsyncIterator[str]:
        thread_id = run.thread_id
        registry = self._state.registry
        encoder = StreamEncoder(thread_id, run.run_id, run.agent.id)
        fragments = self._producer.generate(self._state.backend, run.request, run.session)
        disconnected = False
        try:
            yield encoder.start()
            async for fragment in fragments:
                if is_disconnected is not None and await is_disconnected():
                    disconnected = True
                    break
                self._record(run, fragment)
                yield encoder.encode(fragment)
                if encoder.terminated:
                    break
            if not disconnected and not encoder.terminated:
                yield encoder.finish()
        finally:
            await fragments.aclose()
            if disconnected or not encoder.terminated:
                # Client went away (or the response task was cancelled): implicit stop.
                logger.info("[ORCHESTRATOR] Client disconnected from thread %s, stopping", thread_id)
                registry.stop(thread_id, run.session)
                if not run.interrupted:
                    run.text_parts.append(INTERRUPTION_MARKER)
                    run.interrupted = True
            self._finish(run)

    def stop(self, thread_id: str) -> StopResponse:
        was_active = self._state.registry.stop(thread_id)
        return StopResponse(
            thread_id=thread_id,
            was_active=was_active,
            message="Generation stop requested" if was_active else "No active generation",
        )
