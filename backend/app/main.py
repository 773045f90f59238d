"""
FastAPI application entry point with application factory pattern.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from sqlalchemy import text

from app.core.config import settings
from app.core.logging import setup_logging, get_logger
from app.core.exceptions import PipelineError
from app.core.metrics import errors_total
from app.api.health import router as health_router
from app.core.database import engine, Base, get_db_session, run_with_retry
from app.models import database as database_models  # noqa: F401  registers the ORM tables

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan events.
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    # Refuse to start with incomplete configuration
    settings.validate_required()

    async with get_db_session() as session:
        await run_with_retry(lambda: session.execute(text("SELECT 1")))
    logger.info("Database connection verified")

    # Create database tables (in production, use migrations)
    if settings.ENVIRONMENT == "local":
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    yield

    # Shutdown
    logger.info("Shutting down application")
    await engine.dispose()


def create_app() -> FastAPI:
    """
    Application factory function.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Data import and quality pipeline API",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PipelineError)
    async def pipeline_exception_handler(request: Request, exc: PipelineError):
        errors_total.labels(error_type=exc.code, endpoint=request.url.path).inc()
        log = logger.error if exc.http_status >= 500 else logger.info
        log(
            f"{exc.code}: {exc.message}",
            extra={"path": request.url.path, "method": request.method, "error_code": exc.code},
        )
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        errors_total.labels(error_type=type(exc).__name__, endpoint=request.url.path).inc()
        logger.error(
            f"Unhandled exception: {exc}",
            extra={"path": request.url.path, "method": request.method},
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    # Root endpoint
    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs",
            "health": "/health",
            "api_v1": settings.API_V1_PREFIX,
        }

    # Include routers
    app.include_router(health_router)

    from app.api.v1.metrics import router as metrics_router
    app.include_router(metrics_router)

    # API v1 routers
    from app.api.v1 import imports_router, quality_router, tables_router, fixes_router

    app.include_router(imports_router, prefix=settings.API_V1_PREFIX)
    app.include_router(quality_router, prefix=settings.API_V1_PREFIX)
    app.include_router(tables_router, prefix=settings.API_V1_PREFIX)
    app.include_router(fixes_router, prefix=settings.API_V1_PREFIX)

    # Middleware
    from app.middleware.logging import LoggingMiddleware
    from app.middleware.metrics import MetricsMiddleware

    if settings.ENABLE_METRICS:
        app.add_middleware(MetricsMiddleware)

    app.add_middleware(LoggingMiddleware)

    return app


# Create app instance
app = create_app()
