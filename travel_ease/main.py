"""
FastAPI main application for the TravelEase Vehicle API.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from travel_ease.auth import FirebaseTokenVerifier, TokenVerifier
from travel_ease.config import APIConfig, config as default_config
from travel_ease.database import StoreClient
from travel_ease.logger import setup_logging
from travel_ease.models import ErrorResponse, HealthResponse, LivenessResponse
from travel_ease.origin_guard import register_origin_guard
from travel_ease.routes import router

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    api_config: APIConfig = app.state.config
    setup_logging(
        log_level=api_config.log_level,
        log_format=api_config.log_format,
        log_file=api_config.log_file,
    )
    logger.info("Starting TravelEase API")

    store: StoreClient = app.state.store
    try:
        await store.connect()
        logger.info("Database connection established")
    except Exception as e:
        logger.error("Failed to connect to database", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("Shutting down TravelEase API")
    await store.close()


def create_app(
    api_config: Optional[APIConfig] = None,
    store: Optional[StoreClient] = None,
    token_verifier: Optional[TokenVerifier] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        api_config: Settings (process-wide config when omitted)
        store: Store client (built from settings when omitted)
        token_verifier: Bearer token verifier (Firebase when omitted)

    Returns:
        Configured FastAPI application
    """
    api_config = api_config or default_config

    app = FastAPI(
        title=api_config.api_title,
        description=api_config.api_description,
        version=api_config.api_version,
        lifespan=lifespan,
    )

    app.state.config = api_config
    app.state.store = store or StoreClient.from_config(api_config)
    app.state.token_verifier = token_verifier or FirebaseTokenVerifier(
        project_id=api_config.firebase_project_id,
        jwks_url=api_config.firebase_jwks_url,
    )

    allowed_origins = api_config.get_cors_origins()

    # Last added runs first: the guard sits in front of CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_origin_guard(app, allowed_origins)

    register_exception_handlers(app)
    register_system_routes(app)
    app.include_router(router)

    return app


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error as an ErrorResponse body."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions."""
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=exc.detail,
                status_code=exc.status_code
            ).dict(),
            headers=exc.headers
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle malformed request bodies."""
        logger.warning("Invalid request", path=request.url.path, errors=str(exc.errors()))
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=ErrorResponse(
                error="Invalid request body",
                detail="Request body must be a JSON object",
                status_code=status.HTTP_400_BAD_REQUEST
            ).dict()
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions."""
        logger.error("Unhandled exception", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                error="Internal server error",
                detail=str(exc) if request.app.state.config.debug else None,
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
            ).dict()
        )


def register_system_routes(app: FastAPI) -> None:
    """Liveness and health endpoints (no authentication required)."""

    @app.get("/", response_model=LivenessResponse, tags=["Health"])
    async def root():
        """Liveness check."""
        return LivenessResponse(
            message="travel-ease-server-running",
            timestamp=datetime.now(timezone.utc),
        )

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(request: Request):
        """Health check endpoint."""
        db_ok = await request.app.state.store.ping()
        db_status = "healthy" if db_ok else "unhealthy"

        return HealthResponse(
            status="healthy" if db_ok else "degraded",
            timestamp=datetime.now(timezone.utc),
            version=request.app.state.config.api_version,
            database_status=db_status
        )


app = create_app()
