"""
LiveTriage - Backend Entrypoint

FastAPI application factory and server configuration.
Run with: uvicorn main:app --reload  (from backend/)
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from livetriage import __version__
from livetriage.api import health, routes
from livetriage.config import Settings, get_settings
from livetriage.core.exceptions import LiveTriageError
from livetriage.core.logging import setup_structured_logging
from livetriage.core.triage_store import create_triage_store
from livetriage.services.atoms_api import AtomsWebcallClient

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory.

    Args:
        settings: Override settings (tests); defaults to the cached instance
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Startup:
            - Configure logging
            - Create the triage store and the webcall client

        Shutdown:
            - Close the webcall client's HTTP connections
        """
        # === Startup ===
        setup_structured_logging(settings.app_log_level, json_format=settings.log_json)
        logger.info("LiveTriage starting in %s mode", settings.app_env)

        # Store services in app state for dependency injection
        app.state.settings = settings
        app.state.triage_store = create_triage_store(settings)
        app.state.atoms_client = AtomsWebcallClient(
            api_key=settings.smallest_api_key,
            base_url=settings.atoms_api_base,
            timeout=settings.http_timeout_seconds,
        )

        if not app.state.atoms_client.is_configured:
            logger.warning("SMALLEST_API_KEY not set; /call-init will fail")

        logger.info("Triage store ready: max_entries=%d", settings.triage_store_max_entries)

        yield

        # === Shutdown ===
        logger.info("LiveTriage shutting down")
        await app.state.atoms_client.aclose()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="LiveTriage",
        description="Live emergency triage relay between a voice agent and a dispatch dashboard",
        version=__version__,
        docs_url="/docs" if settings.app_debug else None,
        redoc_url="/redoc" if settings.app_debug else None,
        lifespan=lifespan,
    )

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Errors ---
    @app.exception_handler(LiveTriageError)
    async def livetriage_error_handler(request: Request, exc: LiveTriageError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    # --- Routes ---
    app.include_router(routes.router)
    app.include_router(health.router)

    return app


# Create app instance
app = create_app()


# --- Root ---
@app.get("/")
async def root():
    """Root health check."""
    return {
        "service": "LiveTriage",
        "status": "operational",
        "version": __version__,
    }


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "main:app",
        host=settings.backend_host,
        port=settings.backend_port,
        reload=settings.app_debug,
    )
