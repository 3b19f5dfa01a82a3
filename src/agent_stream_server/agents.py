"""Agent catalog: which agents the server exposes and what each may use."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Sequence

from langchain_core.tools import BaseTool

from .errors import AgentNotFoundError
from .schemas import AgentInfo
from .tools import get_tools_by_name

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Answer concisely. "
    "Use the available tools when they help, and never invent tool results."
)


@dataclass(frozen=True, slots=True)
class AgentDefinition:
    id: str
    name: str
    description: str
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    tool_names: tuple[str, ...] = field(default_factory=tuple)

    def info(self) -> AgentInfo:
        return AgentInfo(id=self.id, name=self.name, description=self.description)

    def tools(self) -> list[BaseTool]:
        available = get_tools_by_name()
        return [available[name] for name in self.tool_names if name in available]


DEFAULT_AGENTS: tuple[AgentDefinition, ...] = (
    AgentDefinition(
        id="assistant",
        name="Assistant",
        description="General purpose assistant that can tell the time and do arithmetic.",
        tool_names=("get_current_time", "calculate"),
    ),
    AgentDefinition(
        id="calculator",
        name="Calculator",
        description="Solves arithmetic questions step by step with a calculator tool.",
        system_prompt=(
            "You are a careful calculator. Always call the calculate tool for arithmetic "
            "and report the exact result."
        ),
        tool_names=("calculate",),
    ),
)


class AgentCatalog:
    def __init__(self, agents: Iterable[AgentDefinition] = DEFAULT_AGENTS) -> None:
        self._agents = {agent.id: agent for agent in agents}

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def get(self, agent_id: str) -> AgentDefinition:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id, self._agents.keys())
        return agent

    def all(self) -> Sequence[AgentDefinition]:
        return tuple(self._agents.values())

    def with_system_prompt(self, system_prompt: str | None) -> AgentCatalog:
        """Return a catalog where the general agent uses ``system_prompt``."""

        if not system_prompt:
            return self
        agents = [
            AgentDefinition(
                id=agent.id,
                name=agent.name,
                description=agent.description,
                system_prompt=system_prompt if agent.system_prompt == DEFAULT_SYSTEM_PROMPT else agent.system_prompt,
                tool_names=agent.tool_names,
            )
            for agent in self._agents.values()
        ]
        return AgentCatalog(agents)
