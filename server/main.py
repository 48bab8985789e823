"""
FastAPI Main Application
========================

Main entry point for the auto-mode server.
Provides the REST API and the /ws/events websocket.

The lifespan builds one of each long-lived object and stores it on
app.state: settings, secure filesystem, event bus, feature store, provider
factory, auto-mode service and the websocket event broadcaster.
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

# Fix for Windows subprocess support in asyncio
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

from dotenv import load_dotenv

# Load environment variables from .env file if present
load_dotenv()

from fastapi import FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from automode.auto_mode_service import AutoModeService
from automode.config import AutoModeSettings, get_settings
from automode.event_bus import EventBus
from automode.feature_store import FeatureStore
from automode.providers.factory import ProviderFactory
from automode.secure_fs import configure_secure_fs

from .event_broadcaster import EventBroadcaster
from .exceptions import ErrorCode, create_error_response, register_exception_handlers
from .routers import auto_mode_router, features_router, running_agents_router, setup_router

_logger = logging.getLogger(__name__)

LOCAL_DEV_ORIGINS = [
    "http://localhost:5173",      # Vite dev server
    "http://127.0.0.1:5173",
    "http://localhost:8888",      # Production
    "http://127.0.0.1:8888",
]

LOCALHOST_ADDRESSES = ("127.0.0.1", "::1", "localhost", None)


def _build_lifespan(settings: AutoModeSettings):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build the service graph on startup; stop running features on shutdown."""
        secure_fs = configure_secure_fs(
            allowed_root=settings.allowed_root_directory,
            data_dir=settings.data_dir,
        )
        event_bus = EventBus()
        feature_store = FeatureStore()
        provider_factory = ProviderFactory(secure_fs=secure_fs)
        service = AutoModeService(
            event_bus,
            feature_store=feature_store,
            provider_factory=provider_factory,
            settings=settings,
            secure_fs=secure_fs,
        )
        broadcaster = EventBroadcaster()
        broadcaster.attach(event_bus)

        app.state.settings = settings
        app.state.secure_fs = secure_fs
        app.state.event_bus = event_bus
        app.state.feature_store = feature_store
        app.state.provider_factory = provider_factory
        app.state.auto_mode_service = service
        app.state.event_broadcaster = broadcaster

        if settings.allowed_root_directory:
            _logger.info("File access restricted to %s", settings.allowed_root_directory)

        yield

        # Shutdown - stop the loop first so nothing new starts, then abort the rest
        await service.shutdown()
        await event_bus.drain()
        broadcaster.detach()
        feature_store.close()

    return lifespan


def create_app(settings: Optional[AutoModeSettings] = None) -> FastAPI:
    """Create the FastAPI application for the given settings."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Auto Mode",
        description="Runs kanban features through AI coding-agent CLIs",
        version="1.0.0",
        lifespan=_build_lifespan(settings),
    )

    # All errors use {"error_code", "message", "details"}
    register_exception_handlers(app)

    # CORS - allow all origins when remote access is enabled, otherwise localhost only
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.allow_remote else LOCAL_DEV_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if not settings.allow_remote:
        @app.middleware("http")
        async def require_localhost(request: Request, call_next):
            """Only allow requests from localhost (disabled when AUTOMODE_ALLOW_REMOTE=1)."""
            client_host = request.client.host if request.client else None
            if client_host not in LOCALHOST_ADDRESSES:
                return JSONResponse(
                    status_code=403,
                    content=create_error_response(ErrorCode.FORBIDDEN, "Localhost access only"),
                )
            return await call_next(request)

    app.include_router(auto_mode_router)
    app.include_router(running_agents_router)
    app.include_router(features_router)
    app.include_router(setup_router)

    @app.websocket("/ws/events")
    async def events_websocket(websocket: WebSocket):
        """Stream every auto-mode event to the client."""
        await websocket.app.state.event_broadcaster.serve(websocket)

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()


# ============================================================================
# Main Entry Point
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "server.main:app",
        host="127.0.0.1",  # Localhost only for security
        port=8888,
    )
