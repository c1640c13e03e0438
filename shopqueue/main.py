from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.routing import Mount

from shopqueue.config import get_settings
from shopqueue.dependencies.services import get_engine_cached

# Import routers directly from submodules
from shopqueue.health import router as health_router
from shopqueue.mcp_server import mcp
from shopqueue.mock_data_view import router as mock_data_router
from shopqueue.tools.appointment import router as appointment_router
from shopqueue.tools.audit import router as audit_router
from shopqueue.tools.directory import router as directory_router
from shopqueue.tools.monitor import router as monitor_router
from shopqueue.tools.queue import router as queue_router
from shopqueue.tools.sweeper import router as sweeper_router


def configure_logging() -> None:
    """Ensure application logs use the INFO level by default."""
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    else:
        root_logger.setLevel(logging.INFO)

# Configure logging as soon as the module is loaded
configure_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manages application startup and shutdown events.
    """
    # --- Startup Logic ---
    settings = get_settings()

    settings_snapshot = settings.model_dump(exclude={"store_api_key"})
    logger.info("Application settings on startup: %s", settings_snapshot)

    has_mcp = any(isinstance(r, Mount) and r.path == "/mcp" for r in app.routes)
    logger.debug("MCP mount present: %s", has_mcp)

    # Background sweeper and store bridge run for the lifetime of the app
    engine = get_engine_cached()
    await engine.start()
    logger.info("Application startup complete.")

    try:
        async with mcp.session_manager.run():
            yield  # The application is now running
    finally:
        # --- Shutdown Logic ---
        logger.info("Stopping booking engine.")
        await engine.stop()
        logger.info("Application shutdown complete.")


# --- Application Setup ---

settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    lifespan=lifespan,
    redirect_slashes=False
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin).rstrip("/") for origin in settings.cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Include Routers and Mounts ---

app.include_router(appointment_router, prefix="/tools/appointment")
app.include_router(queue_router, prefix="/tools/queue")
app.include_router(monitor_router, prefix="/tools/monitor")
app.include_router(sweeper_router, prefix="/tools/sweeper")
app.include_router(audit_router, prefix="/tools/audit")
app.include_router(directory_router, prefix="/tools/directory")
app.include_router(health_router)
app.include_router(mock_data_router)

# Mount the MCP Streamable HTTP server at /mcp
app.mount("/mcp", mcp.streamable_http_app())
