"""Roomchat Backend Application.

This is the main entry point for the roomchat service: a real-time chat
coordinator where users sign up and log in over HTTP, then open a WebSocket
to join rooms, message each other directly and see who is online and typing.

Modules:
    - chat: Session registry, event routing and the /ws/chat endpoint
    - history: DuckDB-based message history
    - auth: Account signup and login

Run with:
    uvicorn roomchat.main:app --app-dir backend --port 3000

or, using the host/port from roomchat.settings.yaml:
    python -m roomchat.main
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from roomchat.auth.router import router as auth_router
from roomchat.auth.service import AccountService, get_account_service
from roomchat.chat.router import get_event_router, router as chat_router, set_event_router
from roomchat.config import get_config
from roomchat.history.router import router as history_router
from roomchat.history.service import HistoryStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

for _noisy in ("uvicorn.access", "httpx", "httpcore"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    get_account_service()
    event_router = get_event_router()
    logger.info(
        "Chat ready: %d rooms, history at %s",
        len(event_router.room_catalog or []),
        config.history.db_path,
    )

    yield  # Application runs here

    # Shutdown
    set_event_router(None)
    HistoryStore.reset_instance()
    AccountService.reset_instance()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="Roomchat API",
    description="Real-time chat rooms with presence, direct messages and history",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register all routers
app.include_router(chat_router)
app.include_router(history_router)
app.include_router(auth_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    server = get_config().server
    uvicorn.run(app, host=server.host, port=server.port)
