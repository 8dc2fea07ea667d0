"""FastAPI application entry point."""
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vidstream.api.errors import (
    generic_exception_handler,
    transport_error_handler,
    vidstream_error_handler,
)
from vidstream.api.v1.router import api_router
from vidstream.core.config import settings
from vidstream.core.logging import get_logger, setup_logging
from vidstream.models.video import HealthResponse
from vidstream.services import http
from vidstream.services.errors import VidstreamError

# Setup logging
setup_logging()
logger = get_logger(__name__)

VERSION = "0.1.0"


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
    if settings.info_cache_enabled:
        logger.info(
            f"Info cache: maxsize={settings.INFO_CACHE_MAXSIZE}, ttl={settings.INFO_CACHE_TTL_SECONDS}s"
        )
    else:
        logger.info("Info cache disabled")

    yield

    # Shutdown
    logger.info("Shutting down application")
    await http.close_client()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="Vidstream API",
        description="Video metadata and cancellable streaming downloads",
        version=VERSION,
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
    app.add_exception_handler(VidstreamError, vidstream_error_handler)
    app.add_exception_handler(httpx.HTTPError, transport_error_handler)
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
        return HealthResponse(status="healthy", version=VERSION)

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "vidstream.main:app",
        host="0.0.0.0",
        port=settings.PORT,
        reload=settings.is_development,
        log_level=settings.LOG_LEVEL.lower(),
    )
