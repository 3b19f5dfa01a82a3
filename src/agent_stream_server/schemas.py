from __future__ import annotations

import random
import string
import time
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

# Inbound keys that may carry the session id, highest priority first.
THREAD_ID_KEYS: tuple[str, ...] = ("thread_id", "conversation_id", "chat_id", "id")

_BASE36 = string.digits + string.ascii_lowercase


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_thread_id() -> str:
    """Return a fresh id of the form ``thread_<epoch-ms>_<9 base-36 chars>``."""
    suffix = "".join(random.choices(_BASE36, k=9))
    return f"thread_{int(time.time() * 1000)}_{suffix}"


class _ChatMessageBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class HumanChatMessage(_ChatMessageBase):
    type: Literal["human"] = "human"


class ToolCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class AIChatMessage(_ChatMessageBase):
    type: Literal["ai"] = "ai"
    tool_calls: tuple[ToolCall, ...] = ()


class ToolChatMessage(_ChatMessageBase):
    type: Literal["tool"] = "tool"
    tool_call_id: str
    name: str | None = None


ChatMessage = Annotated[
    Union[HumanChatMessage, AIChatMessage, ToolChatMessage],
    Field(discriminator="type"),
]

chat_message_adapter: TypeAdapter[ChatMessage] = TypeAdapter(ChatMessage)


class InvokeRequest(BaseModel):
    """Body of the invoke and stream endpoints."""

    message: str = Field(..., min_length=1)
    thread_id: str | None = None
    conversation_id: str | None = None
    chat_id: str | None = None
    id: str | None = None
    context: dict[str, Any] | None = None

    def requested_thread_id(self) -> str | None:
        """Return the first non-empty alias in priority order, if any."""

        for key in THREAD_ID_KEYS:
            value = getattr(self, key)
            if value:
                return value
        return None


class InvokeResponse(BaseModel):
    content: str
    thread_id: str
    run_id: str


class StopRequest(BaseModel):
    thread_id: str | None = None
    conversation_id: str | None = None
    chat_id: str | None = None
    id: str | None = None

    def requested_thread_id(self) -> str | None:
        for key in THREAD_ID_KEYS:
            value = getattr(self, key)
            if value:
                return value
        return None


class StopResponse(BaseModel):
    success: bool = True
    thread_id: str
    was_active: bool = False
    message: str = "Stop requested"


class AgentInfo(BaseModel):
    id: str
    name: str
    description: str


class HealthResponse(BaseModel):
    status: str = "ok"
    backend: str
    active_sessions: int = 0
    conversations: int = 0


class ConversationSummary(BaseModel):
    thread_id: str
    agent_id: str | None = None
    message_count: int
    created_at: datetime
    updated_at: datetime
    last_message_preview: str = ""


class ConversationDetail(BaseModel):
    thread_id: str
    agent_id: str | None = None
    messages: list[ChatMessage]
    created_at: datetime
    updated_at: datetime
