"""Event vocabulary carried by the stream.

Every event serialises to a JSON object whose ``type`` equals the frame's
``event:`` name, so consumers that only read ``data:`` lines still see it.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import ProtocolError


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    @property
    def event_name(self) -> str:
        return self.type  # type: ignore[attr-defined]

    def payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class StreamStart(_Event):
    type: Literal["stream_start"] = "stream_start"
    thread_id: str | None = None
    run_id: str | None = None
    agent_id: str | None = None


class StreamToken(_Event):
    type: Literal["stream_token"] = "stream_token"
    content: str


class ToolExecutionStart(_Event):
    type: Literal["tool_execution_start"] = "tool_execution_start"
    tool_name: str
    params: dict[str, Any] = Field(default_factory=dict)
    tool_call_id: str | None = None


class ToolExecutionComplete(_Event):
    type: Literal["tool_execution_complete"] = "tool_execution_complete"
    tool_name: str
    output: Any = None
    tool_call_id: str | None = None


class ToolExecutionError(_Event):
    type: Literal["tool_execution_error"] = "tool_execution_error"
    tool_name: str
    error: str
    tool_call_id: str | None = None


class StreamEnd(_Event):
    type: Literal["stream_end"] = "stream_end"
    thread_id: str | None = None
    run_id: str | None = None
    interrupted: bool = False


class StreamError(_Event):
    type: Literal["error"] = "error"
    message: str
    thread_id: str | None = None


StreamEvent = Annotated[
    Union[
        StreamStart,
        StreamToken,
        ToolExecutionStart,
        ToolExecutionComplete,
        ToolExecutionError,
        StreamEnd,
        StreamError,
    ],
    Field(discriminator="type"),
]

TERMINAL_EVENTS = frozenset({"stream_end", "error"})

_event_adapter: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)


def parse_event(event_type: str, payload: dict[str, Any]) -> StreamEvent:
    """Build a typed event from a decoded ``(event_type, payload)`` pair.

    The frame's ``event:`` name wins over a conflicting ``type`` in the payload.
    """

    try:
        return _event_adapter.validate_python({**payload, "type": event_type})
    except ValidationError as exc:
        raise ProtocolError(f"Invalid '{event_type}' payload: {exc.errors()[0]['msg']}") from exc
