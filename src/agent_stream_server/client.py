"""Async HTTP client for the agent stream server.

``stream`` is the consumer side of the protocol: it holds the response
open only inside ``async with`` so the connection is released on normal
completion, on early exit and on errors, and feeds the raw bytes to a
fresh ``StreamDecoder`` per request.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable

import httpx

from .decoder import DecodedEvent, StreamDecoder
from .errors import TransportError
from .schemas import AgentInfo, ConversationDetail, ConversationSummary, InvokeResponse, StopResponse

logger = logging.getLogger(__name__)

_TOOL_REQUEST_BLOCK = re.compile(r"\[TOOL_REQUEST\].*?\[END_TOOL_REQUEST\]", re.DOTALL)
_DANGLING_TOOL_REQUEST = re.compile(r"\[TOOL_REQUEST\].*$", re.DOTALL)

TOOL_EVENT_TYPES = frozenset({"tool_execution_start", "tool_execution_complete", "tool_execution_error"})


def clean_agent_response(content: str) -> str:
    """Strip ``[TOOL_REQUEST]...[END_TOOL_REQUEST]`` blocks some agents leak into text."""
    cleaned = _TOOL_REQUEST_BLOCK.sub("", content)
    cleaned = _DANGLING_TOOL_REQUEST.sub("", cleaned)
    return cleaned.strip()


@dataclass
class StreamResult:
    thread_id: str | None = None
    content: str = ""
    events: list[DecodedEvent] = field(default_factory=list)
    tool_events: list[DecodedEvent] = field(default_factory=list)
    interrupted: bool = False
    completed: bool = False
    error: str | None = None

    @property
    def event_types(self) -> list[str]:
        return [event.event_type for event in self.events]

    def apply(self, event_type: str, payload: dict[str, Any]) -> None:
        event = DecodedEvent(event_type, payload)
        self.events.append(event)
        if event_type == "stream_token":
            self.content += str(payload.get("content", ""))
        elif event_type in TOOL_EVENT_TYPES:
            self.tool_events.append(event)
        elif event_type == "stream_end":
            self.completed = True
            self.interrupted = bool(payload.get("interrupted"))
        elif event_type == "error":
            self.completed = True
            self.error = str(payload.get("message", "Unknown error"))


class AgentStreamClient:
    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        *,
        timeout: float | None = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token
        self._client = httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)

    async def __aenter__(self) -> AgentStreamClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    @staticmethod
    def _body(message: str, thread_id: str | None, context: dict[str, Any] | None) -> dict[str, Any]:
        body: dict[str, Any] = {"message": message}
        if thread_id:
            body["thread_id"] = thread_id
        if context:
            body["context"] = context
        return body

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            payload = None
        detail = payload.get("detail") if isinstance(payload, dict) else None
        return str(detail or response.reason_phrase or "request failed")

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc
        if response.is_error:
            raise TransportError(
                f"HTTP {response.status_code}: {self._error_detail(response)}",
                status_code=response.status_code,
            )
        return response

    async def health(self) -> dict[str, Any]:
        return (await self._request("GET", "/health")).json()

    async def list_agents(self) -> list[AgentInfo]:
        response = await self._request("GET", "/agents")
        return [AgentInfo.model_validate(item) for item in response.json()]

    async def invoke(
        self,
        agent_id: str,
        message: str,
        thread_id: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> InvokeResponse:
        response = await self._request("POST", f"/{agent_id}/invoke", json=self._body(message, thread_id, context))
        return InvokeResponse.model_validate(response.json())

    async def stop(self, agent_id: str, thread_id: str) -> StopResponse:
        response = await self._request("POST", f"/{agent_id}/stop", json={"thread_id": thread_id})
        return StopResponse.model_validate(response.json())

    async def list_conversations(self) -> list[ConversationSummary]:
        response = await self._request("GET", "/conversations")
        return [ConversationSummary.model_validate(item) for item in response.json()]

    async def get_conversation(self, thread_id: str) -> ConversationDetail:
        response = await self._request("GET", f"/conversations/{thread_id}")
        return ConversationDetail.model_validate(response.json())

    async def iter_events(
        self,
        agent_id: str,
        message: str,
        thread_id: str | None = None,
        context: dict[str, Any] | None = None,
        decoder: StreamDecoder | None = None,
    ) -> AsyncIterator[DecodedEvent]:
        """Yield events as frames complete. Breaking out early closes the response."""

        decoder = decoder or StreamDecoder(session_id=thread_id)
        path = f"/{agent_id}/stream"
        try:
            async with self._client.stream(
                "POST",
                path,
                json=self._body(message, thread_id, context),
                headers={**self._headers(), "Accept": "text/event-stream"},
            ) as response:
                if response.is_error:
                    await response.aread()
                    raise TransportError(
                        f"HTTP {response.status_code}: {self._error_detail(response)}",
                        status_code=response.status_code,
                    )
                async for chunk in response.aiter_bytes():
                    for event in decoder.feed(chunk):
                        yield event
                    if decoder.done:
                        break
                for event in decoder.close():
                    yield event
        except httpx.HTTPError as exc:
            raise TransportError(f"POST {path} failed: {exc}") from exc

    async def stream(
        self,
        agent_id: str,
        message: str,
        thread_id: str | None = None,
        on_event: Callable[[str, dict[str, Any]], None] | None = None,
        context: dict[str, Any] | None = None,
    ) -> StreamResult:
        """Run a streaming generation to its terminal frame and collect the result.

        ``on_event`` is called synchronously for every event in arrival order.
        """

        result = StreamResult(thread_id=thread_id)

        def handle(event_type: str, payload: dict[str, Any]) -> None:
            result.apply(event_type, payload)
            if on_event is not None:
                on_event(event_type, payload)

        decoder = StreamDecoder(handle, session_id=thread_id)
        async for _ in self.iter_events(agent_id, message, thread_id, context, decoder=decoder):
            pass
        result.thread_id = decoder.session_id
        if decoder.skipped_frames:
            logger.warning("Stream for thread %s skipped %d malformed frame(s)", result.thread_id, decoder.skipped_frames)
        return result
