"""In-memory, append-only conversation log keyed by thread id.

History lives only as long as the server process. Every mutation touches a
single thread id, so the store only needs safe map access, not a global
ordering between threads.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime

from .errors import ConversationNotFoundError
from .schemas import ChatMessage, ConversationDetail, ConversationSummary, utcnow

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 100


@dataclass
class ConversationState:
    thread_id: str
    agent_id: str | None = None
    messages: list[ChatMessage] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def message_count(self) -> int:
        return len(self.messages)

    def summary(self) -> ConversationSummary:
        preview = ""
        if self.messages:
            content = self.messages[-1].content
            preview = content[:PREVIEW_LENGTH] + ("..." if len(content) > PREVIEW_LENGTH else "")
        return ConversationSummary(
            thread_id=self.thread_id,
            agent_id=self.agent_id,
            message_count=self.message_count,
            created_at=self.created_at,
            updated_at=self.updated_at,
            last_message_preview=preview,
        )

    def detail(self) -> ConversationDetail:
        return ConversationDetail(
            thread_id=self.thread_id,
            agent_id=self.agent_id,
            messages=list(self.messages),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class ConversationStore:
    def __init__(self) -> None:
        self._conversations: dict[str, ConversationState] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._conversations)

    def __contains__(self, thread_id: object) -> bool:
        return thread_id in self._conversations

    def get_or_create(self, thread_id: str, agent_id: str | None = None) -> ConversationState:
        with self._lock:
            conversation = self._conversations.get(thread_id)
            if conversation is None:
                conversation = ConversationState(thread_id=thread_id, agent_id=agent_id)
                self._conversations[thread_id] = conversation
                logger.info("[CONVERSATIONS] Created thread %s (agent=%s)", thread_id, agent_id)
            elif conversation.agent_id is None and agent_id:
                conversation.agent_id = agent_id
            return conversation

    def append(self, thread_id: str, message: ChatMessage) -> ConversationState:
        """Append ``message`` to the tail of the thread, creating the thread if needed."""

        conversation = self.get_or_create(thread_id)
        with self._lock:
            conversation.messages.append(message)
            # Clocks can step backwards; updated_at must never precede created_at.
            conversation.updated_at = max(utcnow(), conversation.created_at)
        return conversation

    def get(self, thread_id: str) -> ConversationState:
        conversation = self._conversations.get(thread_id)
        if conversation is None:
            raise ConversationNotFoundError(thread_id, self._conversations.keys())
        return conversation

    def list(self) -> list[ConversationSummary]:
        with self._lock:
            conversations = list(self._conversations.values())
        return [conversation.summary() for conversation in conversations]

    def clear(self) -> None:
        with self._lock:
            self._conversations.clear()
