"""Streaming agent session server and client."""

from .client import AgentStreamClient, StreamResult
from .decoder import StreamDecoder
from .encoder import StreamEncoder

__all__ = [
    "AgentStreamClient",
    "StreamDecoder",
    "StreamEncoder",
    "StreamResult",
]
