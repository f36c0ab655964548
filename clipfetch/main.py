"""FastAPI application entry point."""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clipfetch.api.errors import generic_exception_handler
from clipfetch.api.v1.router import api_router
from clipfetch.core.config import settings
from clipfetch.core.logging import get_logger, setup_logging
from clipfetch.models.media import HealthResponse
from clipfetch.services.yt_dlp_service import YtDlpService

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan events.

    Args:
        app: FastAPI application instance

    Yields:
        None
    """
    # Startup
    logger.info(f"Starting application in {settings.ENV} mode")
    logger.info(f"API v1 prefix: {settings.API_V1_PREFIX}")
    logger.info(f"CORS origins: {settings.cors_origins_list}")
    if not YtDlpService.is_available():
        logger.warning(
            f"{settings.YTDLP_BINARY} not found on PATH; requests will use the fallback strategy"
        )

    yield

    # Shutdown
    logger.info("Shutting down application")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="clipfetch API",
        description="Resilient video acquisition with yt-dlp, a pytubefix fallback and ffmpeg merging",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    app.add_exception_handler(Exception, generic_exception_handler)

    # Include API routes
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    # Health check endpoint
    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["health"],
        summary="Health check",
        description="Check if the service is running",
    )
    async def health_check() -> HealthResponse:
        """Health check endpoint.

        Returns:
            Health status response
        """
        return HealthResponse(
            status="healthy",
            version="0.1.0",
            primary_available=YtDlpService.is_available(),
        )

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "clipfetch.main:app",
        host="0.0.0.0",
        port=settings.PORT,
        reload=settings.is_development,
        log_level=settings.LOG_LEVEL.lower(),
    )
