"""Entry point for running the agent stream server."""

import logging

import uvicorn

from .config import get_settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


def main():
    """Run the agent stream server."""
    settings = get_settings()

    logger.info("Starting agent stream server on %s:%s", settings.app_host, settings.app_port)

    uvicorn.run(
        "agent_stream_server.main:create_app",
        factory=True,
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
