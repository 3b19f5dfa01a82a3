from __future__ import annotations

import logging

from .agents import AgentCatalog
from .backends import GenerationBackend, create_backend
from .config import Settings
from .conversations import ConversationStore
from .sessions import SessionRegistry

logger = logging.getLogger(__name__)


class ServerState:
    """Process-wide state: session registry, conversation store, agents and backend.

    Built once per application and injected into the orchestrator, so tests
    can create isolated instances.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        catalog: AgentCatalog | None = None,
        backend: GenerationBackend | None = None,
    ) -> None:
        self.settings = settings
        self.registry = SessionRegistry(grace_seconds=settings.stop_grace_seconds)
        self.conversations = ConversationStore()
        self.catalog = catalog or AgentCatalog().with_system_prompt(settings.system_prompt)
        self.backend = backend or create_backend(settings)
        logger.info(
            "Server state ready (backend=%s, agents=%s)",
            self.backend.name,
            ", ".join(agent.id for agent in self.catalog.all()),
        )

    async def shutdown(self) -> None:
        active = self.registry.active_threads()
        if active:
            logger.warning("Shutting down with %d active generation(s): %s", len(active), ", ".join(active))
        for thread_id in active:
            self.registry.stop(thread_id)
        self.registry.shutdown()
        await self.backend.aclose()
