"""FastAPI application setup with lifespan and exception handlers."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vidgate import __version__, validate_dependencies
from vidgate.db import init_database, shutdown
from vidgate.api.routes import router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Startup:
        - Check optional dependencies (OpenCV for video frames)
        - Initialize database schema

    Shutdown:
        - Close database connections
    """
    logger.info("Starting Vidgate API...")
    validate_dependencies()
    await init_database()
    logger.info("API startup complete")

    yield

    logger.info("Shutting down Vidgate API...")
    await shutdown()
    logger.info("API shutdown complete")


app = FastAPI(
    title="Vidgate Quality API",
    version=__version__,
    lifespan=lifespan,
)

# CORS for the review UI dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler to prevent stack traces in API responses."""
    logger.error(f"Unhandled exception in {request.method} {request.url.path}: {type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc),
        },
    )
