"""Talkeos Backend Application.

This is the main entry point for the Talkeos chat relay. Clients join named
rooms over a WebSocket, exchange text messages and see join/leave and typing
signals. All state is in memory; a restart loses every room.

Modules:
    - chat: Room registry, broadcast, typing indicators and the WebSocket endpoint
    - config: YAML + environment configuration
"""
import json
import logging
import socket
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from talkeos import __version__
from talkeos.chat.router import router as chat_router
from talkeos.chat.service import get_chat_service
from talkeos.config import AppConfig, get_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence per-request access and protocol chatter.
for _noisy in (
    "uvicorn.access",
    "websockets",
    "websockets.protocol",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

CORS_METHODS = ["GET", "POST", "OPTIONS", "PUT", "PATCH", "DELETE"]
CORS_HEADERS = ["X-Requested-With", "content-type"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    host = config.server.host
    port = config.server.port
    display_host = "localhost" if host == "0.0.0.0" else host
    logger.info(f"Talkeos WebSocket server running on port {port}")
    logger.info(f"Open chat at: http://{display_host}:{port}")
    logger.info(f"Public URL: http://{socket.gethostname()}:{port}")

    if config.development.debug:
        logger.info("Debug mode enabled")
        logger.info("Configuration: %s", json.dumps(config.model_dump(), indent=2))

    yield  # Application runs here

    # Shutdown
    await get_chat_service().shutdown()
    logger.info("Application shutdown complete")


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Build the FastAPI application.

    Middleware and the static mount depend on configuration, so they are
    set up here rather than in the lifespan.
    """
    if config is None:
        config = get_config()

    app = FastAPI(
        title="Talkeos API",
        description="Real-time chat relay with rooms, history and typing indicators",
        version=__version__,
        lifespan=lifespan,
    )

    cors = config.server.cors
    if cors.enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors.origins,
            allow_credentials=cors.credentials,
            allow_methods=CORS_METHODS,
            allow_headers=CORS_HEADERS,
        )

    app.include_router(chat_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    @app.get("/config/client")
    async def client_config(app_config: AppConfig = Depends(get_config)) -> dict:
        """Client-side settings (reconnect policy, UI, feature flags)."""
        return app_config.client.model_dump()

    # Mounted last so the routes above take precedence over files.
    static_dir = Path(config.static_dir)
    if static_dir.is_dir():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")
        logger.info("Serving static files from %s", static_dir.resolve())
    else:
        logger.info("Static directory %s not found; static file serving disabled", static_dir)

    return app


app = create_app()
