"""Error taxonomy shared by the server, the producer and the streaming client."""

from __future__ import annotations

from typing import Iterable


class AgentStreamError(Exception):
    """Base class for all errors raised by this package."""


class TransportError(AgentStreamError):
    """Connection or HTTP failure while talking to the server. Never retried."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProtocolError(AgentStreamError):
    """A malformed frame or an unparsable data payload on the decode path."""

    def __init__(self, message: str, frame: str = "") -> None:
        super().__init__(message)
        self.frame = frame


class GenerationError(AgentStreamError):
    """Failure inside a generation backend."""


class SessionBusyError(AgentStreamError):
    """A generation is already in flight for this thread."""

    def __init__(self, thread_id: str) -> None:
        super().__init__(f"A generation is already running for thread '{thread_id}'.")
        self.thread_id = thread_id


class NotFoundError(AgentStreamError):
    """Lookup miss. The message enumerates the valid alternatives."""

    kind = "resource"

    def __init__(self, key: str, alternatives: Iterable[str] = ()) -> None:
        self.key = key
        self.alternatives = sorted(alternatives)
        available = ", ".join(self.alternatives) if self.alternatives else "none"
        super().__init__(f"Unknown {self.kind} '{key}'. Available: {available}")


class AgentNotFoundError(NotFoundError):
    kind = "agent"


class ConversationNotFoundError(NotFoundError):
    kind = "conversation"
