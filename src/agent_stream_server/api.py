from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from .auth import require_bearer_token
from .encoder import SSE_HEADERS
from .orchestrator import SessionOrchestrator
from .schemas import (
    AgentInfo,
    ConversationDetail,
    ConversationSummary,
    HealthResponse,
    InvokeRequest,
    InvokeResponse,
    StopRequest,
    StopResponse,
)
from .state import ServerState

logger = logging.getLogger(__name__)

router = APIRouter()
protected = APIRouter(dependencies=[Depends(require_bearer_token)])


def get_state(request: Request) -> ServerState:
    return request.app.state.server_state


def get_orchestrator(request: Request) -> SessionOrchestrator:
    return request.app.state.orchestrator


@router.get("/health", response_model=HealthResponse)
def healthcheck(state: ServerState = Depends(get_state)) -> HealthResponse:
    return HealthResponse(
        backend=state.backend.name,
        active_sessions=len(state.registry.active_threads()),
        conversations=len(state.conversations),
    )


@protected.get("/agents", response_model=list[AgentInfo])
def list_agents(state: ServerState = Depends(get_state)) -> list[AgentInfo]:
    return [agent.info() for agent in state.catalog.all()]


@protected.get("/conversations", response_model=list[ConversationSummary])
def list_conversations(state: ServerState = Depends(get_state)) -> list[ConversationSummary]:
    return state.conversations.list()


@protected.get("/conversations/{thread_id}", response_model=ConversationDetail)
def get_conversation(thread_id: str, state: ServerState = Depends(get_state)) -> ConversationDetail:
    return state.conversations.get(thread_id).detail()


@protected.post("/{agent_id}/invoke", response_model=InvokeResponse)
async def invoke(
    agent_id: str,
    payload: InvokeRequest,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> InvokeResponse:
    logger.info("[API] invoke agent=%s thread=%s", agent_id, payload.requested_thread_id())
    return await orchestrator.invoke(agent_id, payload)


@protected.post("/{agent_id}/stream")
async def stream(
    agent_id: str,
    payload: InvokeRequest,
    request: Request,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    run, frames = orchestrator.open_stream(agent_id, payload, is_disconnected=request.is_disconnected)
    logger.info("[API] stream agent=%s thread=%s run=%s", agent_id, run.thread_id, run.run_id)
    return StreamingResponse(
        frames,
        media_type="text/event-stream",
        headers={**SSE_HEADERS, "X-Thread-Id": run.thread_id},
    )


@protected.post("/{agent_id}/stop", response_model=StopResponse)
async def stop(
    agent_id: str,
    payload: StopRequest,
    state: ServerState = Depends(get_state),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> StopResponse:
    thread_id = payload.requested_thread_id()
    if thread_id is None:
        # Nothing to stop; stopping is always acknowledged.
        return StopResponse(thread_id="", message="No thread id supplied")
    if agent_id not in state.catalog:
        logger.info("[API] stop for unknown agent %s (thread=%s)", agent_id, thread_id)
    return orchestrator.stop(thread_id)
