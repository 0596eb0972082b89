"""
splithttp FastAPI Application.

This module provides the application factory and the entry point of the
tunnel server.

Responsibilities:
    - Wiring the session store and relay engine into the app state
    - Mounting the tunnel endpoints under the configured base path
    - Running the session reaper for the lifetime of the server
    - Rendering every error as a generic plain-text response
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from splithttp import __version__
from splithttp.models.enums import LogLevel
from splithttp.server.background.session_reaper import reap_expired_sessions
from splithttp.server.config import TunnelConfig, config as default_config
from splithttp.server.endpoints import health, xhttp
from splithttp.server.services.relay import RelayEngine
from splithttp.server.services.session_store import SessionStore
from splithttp.utils.logger import configure_logging, format_traceback, get_logger

logger = get_logger(__name__)


# =============================================================================
# Application Setup
# =============================================================================


def create_app(
    config: TunnelConfig | None = None,
    relay_engine: RelayEngine | None = None,
) -> FastAPI:
    """
    Build the tunnel server application.

    Args:
        config: Server configuration. Defaults to the global instance.
        relay_engine: Upstream connector wrapper. Defaults to plain TCP.

    Raises:
        ValueError: If the configuration is invalid.
    """
    config = config or default_config
    config.validate()

    if relay_engine is None:
        relay_engine = RelayEngine(
            connect_timeout=config.UPSTREAM_CONNECT_TIMEOUT_SECONDS,
            read_size=config.DOWNLINK_READ_SIZE,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await startup_event(app)
        try:
            yield
        finally:
            await shutdown_event(app)

    app = FastAPI(
        title="splithttp",
        description="TCP tunnel over split HTTP requests",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    app.state.config = config
    app.state.session_store = SessionStore(config, relay_engine)
    app.state.background_tasks = set()

    app.include_router(health.router, tags=["Health"])
    app.include_router(xhttp.router, prefix=config.get_base_path(), tags=["Tunnel"])

    _register_exception_handlers(app)
    return app


def _register_exception_handlers(app: FastAPI) -> None:
    """Render all errors as fixed plain-text bodies."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return PlainTextResponse(str(exc.detail), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        logger.debug(f"Rejected {request.method} {request.url.path}: invalid params")
        return PlainTextResponse("Bad Request", status_code=400)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method}: {exc!r}")
        logger.debug(format_traceback(exc))
        return PlainTextResponse("Internal Server Error", status_code=500)


# =============================================================================
# Lifecycle Events
# =============================================================================


async def startup_event(app: FastAPI):
    """Start background tasks on server startup."""
    config: TunnelConfig = app.state.config
    logger.info(f"Tunnel server starting, base path '{config.get_base_path() or '/'}'")

    task = asyncio.create_task(
        reap_expired_sessions(
            app.state.session_store, config.CLEANUP_CHECK_INTERVAL_SECONDS
        ),
        name="session_reaper",
    )
    app.state.background_tasks.add(task)
    task.add_done_callback(app.state.background_tasks.discard)


async def shutdown_event(app: FastAPI):
    """Cancel background tasks and tear down every session."""
    logger.info("Tunnel server shutting down")

    background_tasks: set[asyncio.Task] = app.state.background_tasks
    for task in background_tasks:
        task.cancel()
    if background_tasks:
        await asyncio.gather(*background_tasks, return_exceptions=True)

    await app.state.session_store.close_all()
    logger.info("Tunnel server shut down complete")


# =============================================================================
# Server Entry Points
# =============================================================================


def run(config: TunnelConfig | None = None):
    """Run the tunnel server using uvicorn."""
    import uvicorn

    config = config or default_config

    # Configure logging before starting uvicorn
    configure_logging(config.LOG_LEVEL, config.LOG_FILE)

    uvicorn_level_map = {
        LogLevel.FULL: "debug",
        LogLevel.DEBUG: "debug",
        LogLevel.INFO: "info",
        LogLevel.WARNING: "warning",
    }
    uvicorn_level = uvicorn_level_map.get(config.LOG_LEVEL, "info")

    app = create_app(config)

    logger.info(f"Starting tunnel server on {config.BIND_IP}:{config.PORT}")

    uvicorn.run(
        app,
        host=config.BIND_IP,
        port=config.PORT,
        log_level=uvicorn_level,
        log_config=None,  # Disable uvicorn's default logging config (use loguru)
    )


def main():
    """Entry point for the tunnel server."""
    run()


if __name__ == "__main__":
    main()
