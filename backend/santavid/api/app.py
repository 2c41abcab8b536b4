"""FastAPI application setup with lifespan and exception handlers."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from santavid import validate_dependencies
from santavid.api.routes import router
from santavid.config import settings
from santavid.db import init_database, shutdown
from santavid.errors import (
    ConfigurationError,
    ExternalGenerationFailure,
    InvalidTransition,
    NotFound,
    SantaVidError,
    StorageFailure,
    Unauthorized,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Most specific first; the first matching class wins
_ERROR_STATUS: list[tuple[type[SantaVidError], int]] = [
    (ValidationError, 422),
    (NotFound, 404),
    (Unauthorized, 403),
    (InvalidTransition, 409),
    (StorageFailure, 502),
    (ExternalGenerationFailure, 502),
    (ConfigurationError, 503),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Startup:
        - Validate system dependencies (ffmpeg)
        - Initialize database schema

    Shutdown:
        - Close database connections
    """
    logger.info("Starting Santa Video API...")
    validate_dependencies()
    await init_database()
    logger.info("API startup complete")

    yield

    logger.info("Shutting down Santa Video API...")
    await shutdown()
    logger.info("API shutdown complete")


app = FastAPI(
    title="Santa Video API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.server.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.exception_handler(SantaVidError)
async def domain_exception_handler(request: Request, exc: SantaVidError):
    """Map the domain error taxonomy onto HTTP status codes."""
    status_code = next((code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc}")
    content = {"error": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, InvalidTransition):
        content["current_status"] = exc.current
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler to prevent stack traces in API responses."""
    logger.error(f"Unhandled exception in {request.method} {request.url.path}: {type(exc).__name__}: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )
