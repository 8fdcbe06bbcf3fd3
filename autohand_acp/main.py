"""Console entry point: serve the ACP agent over stdio."""

from __future__ import annotations

import asyncio

import structlog
from acp import run_agent

from autohand_acp import __version__
from autohand_acp.agent import AutohandAgent
from autohand_acp.logging import configure_logging
from autohand_acp.settings import settings

logger = structlog.get_logger(__name__)


async def serve(agent: AutohandAgent) -> None:
    """Serve ``agent`` until the client disconnects, then close every session."""
    try:
        await run_agent(agent, use_unstable_protocol=True)
    finally:
        await agent.registry.close()
        logger.info("Autohand ACP bridge stopped")


def run() -> None:
    """Entry point for the autohand-acp console script."""
    configure_logging()
    logger.info(
        "Starting Autohand ACP bridge",
        version=__version__,
        command=settings.command(),
        permission_mode=settings.permission_mode(),
    )
    asyncio.run(serve(AutohandAgent()))


if __name__ == "__main__":
    run()
