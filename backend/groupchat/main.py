"""Group Chat Backend Application.

This is the main entry point for the group chat service: multi-group,
real-time chat over WebSockets with reactions, read receipts, typing
indicators, replies, media messages and time-limited pins.

Modules:
    - identity: users, roles, credentials and bearer tokens
    - groups: group registry, membership and admin rights
    - chat: message log, pins, sessions, broadcast and the WebSocket hub
    - media: image/video uploads with DuckDB metadata
"""
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from groupchat.chat.hub import get_hub
from groupchat.chat.router import router as chat_router
from groupchat.config import get_config
from groupchat.errors import ChatError, chat_error_handler
from groupchat.groups.router import router as groups_router
from groupchat.identity.router import router as identity_router
from groupchat.media.router import router as media_router
from groupchat.media.service import MediaStorageService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence per-request connection chatter.
for _noisy in ("httpx", "httpcore", "multipart"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in groupchat.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    # Builds from config unless a hub was installed with set_hub()
    hub = get_hub()

    sweeper = asyncio.create_task(hub.run_pin_sweeper(config.pins.sweep_interval_seconds))
    logger.info(
        "Server running on http://%s:%s (%d user(s), %d group(s))",
        config.server.host,
        config.server.port,
        len(hub.identity.list_users()),
        len(hub.groups.all_groups()),
    )

    yield  # Application runs here

    # Shutdown
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    await hub.close()
    MediaStorageService.reset_instance()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Group Chat API",
    description="Real-time multi-group chat backend",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_exception_handler(ChatError, chat_error_handler)

# Register all routers
app.include_router(identity_router)
app.include_router(groups_router)
app.include_router(chat_router)
app.include_router(media_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}

