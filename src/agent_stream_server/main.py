from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import protected, router
from .config import Settings, get_settings
from .errors import GenerationError, NotFoundError, SessionBusyError
from .orchestrator import SessionOrchestrator
from .state import ServerState

# Configure logging for the entire agent_stream_server package
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logging.getLogger("agent_stream_server").setLevel(logging.INFO)

logger = logging.getLogger(__name__)


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": str(exc), "available": exc.alternatives},
        )

    @app.exception_handler(SessionBusyError)
    async def busy_handler(request: Request, exc: SessionBusyError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"detail": str(exc), "thread_id": exc.thread_id},
        )

    @app.exception_handler(GenerationError)
    async def generation_error_handler(request: Request, exc: GenerationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": str(exc)},
        )


def create_app(settings: Settings | None = None, state: ServerState | None = None) -> FastAPI:
    resolved_settings = settings or get_settings()
    server_state = state or ServerState(resolved_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Agent stream server starting up (backend=%s)", server_state.backend.name)
        yield
        logger.info("Agent stream server shutting down")
        await server_state.shutdown()

    app = FastAPI(
        title="Agent Stream Server",
        description="Streaming, cancellable agent conversations over HTTP",
        version="0.1.0",
        debug=resolved_settings.debug,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=resolved_settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Thread-Id"],
    )

    app.state.settings = resolved_settings
    app.state.server_state = server_state
    app.state.orchestrator = SessionOrchestrator(server_state)
    if settings is not None:
        app.dependency_overrides[get_settings] = lambda: resolved_settings

    _register_exception_handlers(app)
    app.include_router(router)
    app.include_router(protected)
    return app
