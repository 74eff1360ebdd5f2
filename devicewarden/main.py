"""
DeviceWarden Agent Daemon

Local HTTP surface for the agent. Listens on loopback only.

Run:
    python -m devicewarden.main
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import FastAPI

from . import __version__
from .agent import DeviceAgent
from .api import create_command_routes

logger = logging.getLogger("devicewarden.daemon")

HOST = "127.0.0.1"
PORT = 8787


def create_app(agent: Optional[DeviceAgent] = None) -> FastAPI:
    """Build the FastAPI app around one agent (created from config when omitted)."""
    agent = agent or DeviceAgent()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("DeviceWarden daemon starting up...")
        await agent.start()
        try:
            yield
        finally:
            logger.info("DeviceWarden daemon shutting down...")
            await agent.shutdown()

    app = FastAPI(
        title="DeviceWarden Agent",
        description="Authenticated remote lock/logout with an encrypted audit trail",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.agent = agent
    app.include_router(create_command_routes(agent))

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "ok",
            "service": "devicewarden-agent",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app


def main():
    """Run the agent daemon."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    logger.info(f"Starting DeviceWarden agent v{__version__}")
    logger.info(f"   Listening on http://{HOST}:{PORT}")
    logger.info("   Endpoints:")
    logger.info("     - GET  /health")
    logger.info("     - POST /api/v1/commands")
    logger.info("     - GET  /api/v1/audit")
    logger.info("     - GET  /api/v1/security/status")

    uvicorn.run(
        "devicewarden.main:create_app",
        factory=True,
        host=HOST,
        port=PORT,
        log_level="info",
        access_log=False,
    )


if __name__ == "__main__":
    main()
