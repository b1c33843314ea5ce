"""
Auric PM - FastAPI Application
==============================

Main application factory with all routers and middleware.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from auric_pm.api import dependencies, epics, history, snapshot, tasks, tickets
from auric_pm.api.deps import DbSession
from auric_pm.core.config import settings
from auric_pm.core.database import close_db, init_db
from auric_pm.core.errors import (
    ClaimConflictError,
    DependencyCycleError,
    ForeignKeyViolationError,
    NotFoundError,
    PMError,
)
from auric_pm.core.schemas import ErrorResponse, HealthResponse

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer() if settings.is_production else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# HTTP status for each domain error; anything else derived from PMError is a 400
ERROR_STATUS = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ClaimConflictError: status.HTTP_409_CONFLICT,
    ForeignKeyViolationError: 422,
    DependencyCycleError: 422,
}


# ==========================================================================
# Lifespan
# ==========================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Startup:
    - Create the project database and tables if missing

    Shutdown:
    - Close database connections
    """
    logger.info("Starting Auric PM", version=settings.APP_VERSION)

    await init_db()
    logger.info("Database initialized")

    yield

    logger.info("Shutting down Auric PM")
    await close_db()
    logger.info("Database connections closed")


# ==========================================================================
# App Factory
# ==========================================================================

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Ticket scheduling and dependency-aware dispatch for coding agents",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=lifespan,
    )

    # ==========================================================================
    # Middleware
    # ==========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ==========================================================================
    # Exception Handlers
    # ==========================================================================

    @app.exception_handler(PMError)
    async def pm_exception_handler(request: Request, exc: PMError) -> JSONResponse:
        """Translate domain errors into HTTP responses."""
        status_code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
        logger.warning(
            "Request rejected",
            code=exc.code,
            error=exc.message,
            path=request.url.path,
            method=request.method,
        )
        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse(
                error=exc.message,
                detail=exc.detail,
                code=exc.code,
            ).model_dump(),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
        )

        if settings.is_development:
            detail = str(exc)
        else:
            detail = "An unexpected error occurred"

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                error="Internal Server Error",
                detail=detail,
                code="INTERNAL_ERROR",
            ).model_dump(),
        )

    # ==========================================================================
    # Routers
    # ==========================================================================

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["Health"],
        summary="Health check",
    )
    async def health_check(db: DbSession) -> HealthResponse:
        """Check application health and database reachability."""
        database = "connected"
        try:
            await db.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.warning("Database health check failed", error=str(exc))
            database = "unavailable"

        return HealthResponse(
            status="healthy" if database == "connected" else "degraded",
            version=settings.APP_VERSION,
            environment=settings.ENVIRONMENT,
            database=database,
        )

    for module in (epics, tickets, tasks, dependencies, history, snapshot):
        app.include_router(module.router, prefix=settings.API_V1_PREFIX)

    # ==========================================================================
    # Root Endpoint
    # ==========================================================================

    @app.get("/", tags=["Root"])
    async def root() -> dict:
        """Root endpoint with API info."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs" if settings.is_development else "Disabled in production",
            "health": "/health",
            "api": settings.API_V1_PREFIX,
        }

    return app


# ==========================================================================
# Application Instance
# ==========================================================================

app = create_app()


# ==========================================================================
# Development Server
# ==========================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "auric_pm.api.main:app",
        host="127.0.0.1",
        port=8000,
        reload=settings.is_development,
        log_level="info",
    )
