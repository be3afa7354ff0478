"""
FastAPI application factory for the MHC Control Panel.

This module creates the main FastAPI app with:
- CORS configuration for the dashboard frontend
- Service container lifecycle (database init, optional events listener)
- Auth- and CSRF-protected domain routers under /api
- JSON error rendering for PanelError and request validation failures
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .._version import __version__
from ..config import PanelConfig, RunMode
from ..container import build_listener, build_services
from ..errors import PanelError
from .config import Settings
from .deps import csrf_protect, require_auth
from .routes import (
    auth_router,
    broadcasts_router,
    dashboard_router,
    events_router,
    followers_router,
    lookup_router,
    media_router,
    persons_router,
    room_router,
    sessions_router,
    settings_router,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialize storage; in RUN_MODE=all also run the events listener."""
    services = app.state.services
    await services.db.initialize()

    listener = None
    listener_task: asyncio.Task | None = None
    if services.config.run_mode == RunMode.ALL:
        listener = build_listener(services)
        listener_task = asyncio.create_task(listener.start())
        logger.info("Events listener started in API process")

    yield

    if listener is not None and listener_task is not None:
        listener.stop()
        listener_task.cancel()
        await asyncio.gather(listener_task, return_exceptions=True)


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(PanelError)
    async def panel_error_handler(request: Request, exc: PanelError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                "Request failed",
                extra={"path": request.url.path, "code": exc.code, "error": exc.message},
            )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error", extra={"path": request.url.path}, exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(
    config: PanelConfig | None = None,
    settings: Settings | None = None,
    ai_client: Any | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Panel configuration (loaded from env if not provided)
        settings: HTTP settings (loaded from env if not provided)
        ai_client: OpenAI client override, mainly for tests

    Returns:
        Configured FastAPI app; storage is initialized on startup
    """
    config = config or PanelConfig.from_env()
    settings = settings or Settings()

    app = FastAPI(
        title="MHC Control Panel",
        description="Broadcaster analytics API: people, sessions, broadcasts and summaries.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.settings = settings
    app.state.services = build_services(config, ai_client=ai_client)

    # CORS for frontend; cookies need credentials
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    _register_error_handlers(app)

    # Auth routes declare their own gates per endpoint
    app.include_router(auth_router, prefix="/api/auth")

    protected = [Depends(require_auth), Depends(csrf_protect)]
    app.include_router(lookup_router, prefix="/api/lookup", dependencies=protected)
    app.include_router(persons_router, prefix="/api/person", dependencies=protected)
    app.include_router(sessions_router, prefix="/api/session", dependencies=protected)
    app.include_router(events_router, prefix="/api/events", dependencies=protected)
    app.include_router(dashboard_router, prefix="/api/hudson", dependencies=protected)
    app.include_router(broadcasts_router, prefix="/api/broadcasts", dependencies=protected)
    app.include_router(followers_router, prefix="/api/followers", dependencies=protected)
    app.include_router(settings_router, prefix="/api/settings", dependencies=protected)
    app.include_router(media_router, prefix="/api/media", dependencies=protected)
    app.include_router(room_router, prefix="/api/room", dependencies=protected)

    # Health endpoint at root
    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "mhc-panel", "version": __version__}

    return app
