"""Core server setup for the action synchronizer.

Defines the FastAPI application with:
- Agent action endpoints (/api/agents/actions)
- Health check endpoint (/health)
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from . import __version__
from .config import get_settings
from .logging_config import get_logger, setup_logging
from .router import router as actions_router

logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance
    """
    settings = get_settings()
    setup_logging(settings.log_level)

    app = FastAPI(
        title="Agent Actions",
        description="Binds externally-defined actions to agents",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(actions_router)

    @app.get("/health", response_model=HealthResponse)
    def health_check() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(status="healthy", version=__version__)

    logger.info("Agent actions app created", extra={"environment": settings.environment})
    return app
