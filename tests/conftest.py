"""Shared test fixtures and configuration."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from agent_stream_server.agents import AgentCatalog
from agent_stream_server.backends import GenerationRequest, ScriptedBackend
from agent_stream_server.config import Settings
from agent_stream_server.main import create_app
from agent_stream_server.orchestrator import SessionOrchestrator
from agent_stream_server.state import ServerState

TEST_TOKEN = "test-token"

LONG_REPLY = " ".join(f"word{i}" for i in range(200))


@pytest.fixture
def settings():
    """Settings with no inter-token delay and a short stop grace period."""
    return Settings(
        _env_file=None,
        REQUIRE_AUTH=True,
        API_BEARER_TOKEN=TEST_TOKEN,
        GENERATION_BACKEND="scripted",
        STREAM_TOKEN_DELAY=0,
        STOP_GRACE_SECONDS=0.05,
    )


@pytest.fixture
def backend():
    """Scripted backend with a long canned reply and one failing message."""
    return ScriptedBackend(
        scripts={"Tell me a long story": LONG_REPLY},
        fail_on={"Please fail"},
    )


@pytest.fixture
def state(settings, backend):
    return ServerState(settings, backend=backend)


@pytest.fixture
def orchestrator(state):
    return SessionOrchestrator(state)


@pytest.fixture
def app(settings, state):
    return create_app(settings, state)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {TEST_TOKEN}"}


@pytest.fixture
def assistant():
    return AgentCatalog().get("assistant")


@pytest.fixture
def make_request(assistant):
    """Build a GenerationRequest for the assistant agent."""

    def _make(message: str = "Hello", thread_id: str = "t1") -> GenerationRequest:
        return GenerationRequest(agent=assistant, message=message, thread_id=thread_id)

    return _make


@pytest.fixture
def long_reply():
    return LONG_REPLY
