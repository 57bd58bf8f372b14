"""Courier Backend Application.

This is the main entry point for the Courier chat backend. It serves the
real-time delivery core over a WebSocket and a small HTTP surface around it.

Modules:
    - chat: presence, delivery routing, offline backlog, WebSocket endpoint
    - auth: demo login token issue / verify
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.auth.router import router as auth_router
from app.chat.manager import get_chat_manager, set_chat_manager
from app.chat.router import router as chat_router
from app.config import get_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# uvicorn access logs every HTTP request and WebSocket handshake
for _noisy in (
    "uvicorn.access",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in courier.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    manager = get_chat_manager()
    logger.info(
        "Chat core ready: store=%s history_limit=%d",
        type(manager.store).__name__,
        manager.history_limit,
    )

    yield  # Application runs here

    # Shutdown: presence is process-scoped and is not persisted
    manager.close()
    set_chat_manager(None)
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Courier API",
    description="Real-time chat backend with presence-aware delivery",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register all routers
app.include_router(chat_router)
app.include_router(auth_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
