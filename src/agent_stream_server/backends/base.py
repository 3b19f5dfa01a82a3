from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from ..agents import AgentDefinition
from ..producer import BackendChunk


@dataclass(slots=True)
class GenerationRequest:
    agent: AgentDefinition
    message: str
    thread_id: str
    run_id: str | None = None
    context: dict[str, Any] = field(default_factory=dict)


class GenerationBackend(ABC):
    """Produces replies for an agent. Implementations are picked by configuration."""

    name: str

    @abstractmethod
    async def invoke(self, request: GenerationRequest) -> str:
        """Return the complete reply for ``request``."""

    @abstractmethod
    def stream(self, request: GenerationRequest) -> AsyncIterator[BackendChunk]:
        """Yield text chunks and tool notices as they are produced."""

    async def aclose(self) -> None:
        """Release backend resources. Default: nothing to release."""
