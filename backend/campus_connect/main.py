"""CampusConnect Backend Application.

Main entry point for the CampusConnect chat service: password-less campus
login, group / anonymous / direct-message rooms, presence and a live
change feed for clients.

Modules:
    - identity: credential login, session records, student directory
    - rooms: room directory and direct-message rooms
    - messages: room history, send, admin purge
    - presence: online flags with last-seen expiry
    - notices: dashboard announcements
    - realtime: change feed and the /ws/changes WebSocket
    - chat: client-side session coordinator and state merge
"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from campus_connect import __version__
from campus_connect.chat.backend import CampusBackend, get_backend, set_backend
from campus_connect.config import get_config
from campus_connect.errors import CampusError, error_body
from campus_connect.identity.router import router as identity_router
from campus_connect.messages.router import router as messages_router
from campus_connect.notices.router import router as notices_router
from campus_connect.presence.router import router as presence_router
from campus_connect.realtime.router import router as realtime_router
from campus_connect.rooms.router import router as rooms_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

for _noisy in ("httpx", "httpcore", "uvicorn.access"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


async def _sweep_presence(backend: CampusBackend, interval: float) -> None:
    """Periodically mark identities offline that stopped sending heartbeats."""
    while True:
        await asyncio.sleep(interval)
        try:
            await backend.presence.expire_stale()
        except CampusError as e:
            logger.warning("Presence sweep failed: %s", e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in campus.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    backend = get_backend()
    logger.info("Store ready at %s", backend.db.path)

    sweeper = asyncio.create_task(
        _sweep_presence(backend, backend.settings.presence.sweep_interval_seconds)
    )

    yield  # Application runs here

    # Shutdown
    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass
    backend.close()
    set_backend(None)
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="CampusConnect API",
    description="Real-time chat backend for the CampusConnect campus portal",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CampusError)
async def campus_error_handler(request: Request, exc: CampusError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(error_body(exc), status_code=exc.status_code)


# Register all routers
app.include_router(identity_router)
app.include_router(rooms_router)
app.include_router(messages_router)
app.include_router(presence_router)
app.include_router(notices_router)
app.include_router(realtime_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok", "version": __version__}


if __name__ == "__main__":
    import uvicorn

    config = get_config()
    uvicorn.run(app, host=config.server.host, port=config.server.port)
