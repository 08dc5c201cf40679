"""Main FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import Engine

from results_api.api.v1.router import api_router
from results_api.core.config import Settings, get_settings
from results_api.core.database import create_db_engine, create_session_factory
from results_api.core.exceptions import AppException
from results_api.core.scheduler import create_scheduler, start_scheduler, stop_scheduler
from results_api.core.storage import S3StorageClient, StorageClient
from results_api.middleware.logging import RequestLoggingMiddleware

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

# Suppress noisy SQLAlchemy and other library logs
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("python_multipart").setLevel(logging.WARNING)
logging.getLogger("python_multipart.multipart").setLevel(logging.WARNING)
logging.getLogger("botocore").setLevel(logging.WARNING)
logging.getLogger("apscheduler").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    app_settings: Settings = app.state.settings
    logger.info(f"Starting {app_settings.APP_NAME} v{app_settings.APP_VERSION}")
    if isinstance(app.state.scheduler, AsyncIOScheduler):
        start_scheduler(app.state.scheduler)
    yield
    logger.info("Shutting down application")
    if isinstance(app.state.scheduler, AsyncIOScheduler):
        stop_scheduler(app.state.scheduler)
    app.state.engine.dispose()


def create_application(
    settings: Settings | None = None,
    engine: Engine | None = None,
    storage: StorageClient | None = None,
    scheduler=None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    engine = engine or create_db_engine(settings)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
School Results Backend API - result batches, score sheet imports and report cards.

## Features

- **Result Batches**: One batch per classroom, academic year and term
- **Score Sheet Imports**: CSV or Excel sheets with CA and exam scores per subject
- **Grading Scales**: Configurable grade bands with remarks
- **Subject Groups**: Subjects examined together in a batch
- **Report Cards**: Published results per student
- **Audit Logging**: Complete action history

## Authentication

All endpoints require an `Authorization: Bearer <token>` header.

## Error Handling

All errors follow a standard format:
```json
{
  "success": false,
  "error": {
    "code": "ERROR_CODE",
    "message": "Human readable message",
    "details": {}
  }
}
```
        """,
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.state.storage = storage or S3StorageClient(settings)
    app.state.scheduler = scheduler or create_scheduler()

    # Add middlewares
    app.add_middleware(RequestLoggingMiddleware)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.detail,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "error": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "details": {"errors": jsonable_encoder(exc.errors())},
                },
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": "An internal server error occurred",
                    "details": {},
                },
            },
        )

    # Health check endpoint
    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint for load balancers and monitoring."""
        return {
            "status": "healthy",
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
        }

    # Include API router
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    return app


# Create app instance
app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "results_api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
