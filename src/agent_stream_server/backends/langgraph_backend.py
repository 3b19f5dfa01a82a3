"""LangGraph backend: a model node and a tool node looping over Gemini."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Callable, Literal

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.runnables import RunnableConfig
from langchain_google_genai import ChatGoogleGenerativeAI
from langgraph.checkpoint.memory import InMemorySaver
from langgraph.graph import END, START, MessagesState, StateGraph

from ..agents import AgentDefinition
from ..config import Settings
from ..errors import GenerationError
from ..producer import BackendChunk, ToolCompleted, ToolFailed, ToolStarted
from .base import GenerationBackend, GenerationRequest

logger = logging.getLogger(__name__)

ModelFactory = Callable[[Settings], BaseChatModel]


def extract_text_from_content(content: Any) -> str:
    """Extract text from AI message content (string or list of blocks)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
            elif isinstance(block, str):
                parts.append(block)
        return "".join(parts)
    return ""


def build_model(settings: Settings) -> BaseChatModel:
    """Instantiate the Gemini chat model."""
    if not settings.google_api_key:
        raise GenerationError("GOOGLE_API_KEY must be set to use the langgraph backend")
    return ChatGoogleGenerativeAI(
        model=settings.gemini_model,
        api_key=settings.google_api_key,
        timeout=60,
        max_retries=2,
    )


def create_agent_graph(agent: AgentDefinition, model: BaseChatModel, checkpointer: Any = None):
    tools = agent.tools()
    tools_by_name = {tool.name: tool for tool in tools}
    system_message = SystemMessage(content=agent.system_prompt)
    model_with_tools = model.bind_tools(tools) if tools else model

    async def call_model(state: MessagesState, config: RunnableConfig):
        response = await model_with_tools.ainvoke([system_message, *state["messages"]], config=config)
        return {"messages": [response]}

    async def call_tool(state: MessagesState, config: RunnableConfig):
        outputs: list[ToolMessage] = []
        for tool_call in state["messages"][-1].tool_calls:
            tool_name = tool_call["name"]
            tool = tools_by_name.get(tool_name)
            logger.info("[AGENT] Executing tool: %s", tool_name)
            if tool is None:
                logger.warning("[AGENT] Tool not found: %s", tool_name)
                outputs.append(
                    ToolMessage(
                        content=f"Requested tool '{tool_name}' is not available.",
                        tool_call_id=tool_call["id"],
                        name=tool_name,
                        status="error",
                    )
                )
                continue
            try:
                result = await tool.ainvoke(tool_call.get("args") or {}, config=config)
            except Exception as exc:
                logger.exception("[AGENT] Tool execution failed: %s", tool_name)
                outputs.append(
                    ToolMessage(
                        content=f"Tool '{tool_name}' failed: {exc}",
                        tool_call_id=tool_call["id"],
                        name=tool_name,
                        status="error",
                    )
                )
                continue
            observation = result if isinstance(result, str) else json.dumps(result, ensure_ascii=False)
            outputs.append(ToolMessage(content=observation, tool_call_id=tool_call["id"], name=tool_name))
        return {"messages": outputs}

    def should_continue(state: MessagesState) -> Literal["tool_node", END]:
        last_message = state["messages"][-1]
        if getattr(last_message, "tool_calls", None):
            return "tool_node"
        return END

    workflow = StateGraph(MessagesState)
    workflow.add_node("model", call_model)
    workflow.add_node("tool_node", call_tool)
    workflow.add_edge(START, "model")
    workflow.add_conditional_edges("model", should_continue, ["tool_node", END])
    workflow.add_edge("tool_node", "model")
    return workflow.compile(checkpointer=checkpointer)


class LangGraphBackend(GenerationBackend):
    """Runs each agent as a compiled LangGraph with in-memory checkpoints per thread."""

    name = "langgraph"

    def __init__(self, settings: Settings, model_factory: ModelFactory = build_model) -> None:
        self._settings = settings
        self._model_factory = model_factory
        self._checkpointer = InMemorySaver()
        self._graphs: dict[str, Any] = {}

    def graph_for(self, agent: AgentDefinition):
        graph = self._graphs.get(agent.id)
        if graph is None:
            graph = create_agent_graph(agent, self._model_factory(self._settings), self._checkpointer)
            self._graphs[agent.id] = graph
        return graph

    def _config(self, request: GenerationRequest) -> RunnableConfig:
        # Agents share one checkpointer, so the checkpoint key carries the agent id.
        return {
            "configurable": {
                "thread_id": f"{request.agent.id}:{request.thread_id}",
                "request_context": dict(request.context),
            }
        }

    async def invoke(self, request: GenerationRequest) -> str:
        graph = self.graph_for(request.agent)
        result = await graph.ainvoke(
            {"messages": [HumanMessage(content=request.message)]},
            config=self._config(request),
        )
        for message in reversed(result.get("messages", [])):
            if isinstance(message, AIMessage):
                return extract_text_from_content(message.content)
        return ""

    async def stream(self, request: GenerationRequest) -> AsyncIterator[BackendChunk]:
        graph = self.graph_for(request.agent)
        async for mode, data in graph.astream(
            {"messages": [HumanMessage(content=request.message)]},
            config=self._config(request),
            stream_mode=["messages", "updates"],
        ):
            if mode == "messages":
                chunk, metadata = data
                if metadata.get("langgraph_node") == "model" and isinstance(chunk, AIMessage):
                    text = extract_text_from_content(chunk.content)
                    if text:
                        yield text
                continue
            for node, update in (data or {}).items():
                for message in (update or {}).get("messages", []):
                    if node == "model" and isinstance(message, AIMessage):
                        for tool_call in message.tool_calls:
                            yield ToolStarted(
                                name=tool_call["name"],
                                params=dict(tool_call.get("args") or {}),
                                call_id=tool_call.get("id"),
                            )
                    elif node == "tool_node" and isinstance(message, ToolMessage):
                        tool_name = message.name or "tool"
                        if message.status == "error":
                            yield ToolFailed(name=tool_name, error=str(message.content), call_id=message.tool_call_id)
                        else:
                            yield ToolCompleted(name=tool_name, output=message.content, call_id=message.tool_call_id)
