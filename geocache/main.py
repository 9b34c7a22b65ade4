"""geocache FastAPI application.

Main entry point for the reverse-geocoding cache server.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from geocache.api import router
from geocache.api.routes import set_cache
from geocache.models import ErrorCode
from geocache.services import create_geocache

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    cache = create_geocache()
    await cache.load()
    set_cache(cache)
    app.state.cache = cache
    yield
    # Shutdown - persist pending writes, stop the sweeper, close clients
    await cache.flush()
    await cache.save()
    cache.destroy()
    if cache.geocoder is not None:
        await cache.geocoder.close()
    if cache.storage is not None:
        await cache.storage.close()
    set_cache(None)
    logger.info("[API] Shutdown complete")


app = FastAPI(
    title="geocache API",
    description="Reverse geocoding with a spatial TTL cache",
    version="1.0.0",
    lifespan=lifespan,
)


# Global exception handlers
@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError):
    """Handle Pydantic validation errors."""
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error": {
                "code": ErrorCode.VALIDATION_ERROR.value,
                "message": str(exc),
                "user_message": "Invalid request format. Please check your input.",
            },
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "code": ErrorCode.API_ERROR.value,
                "message": str(exc),
                "user_message": "Something went wrong. Please try again.",
            },
        },
    )


# Include API routes
app.include_router(router, prefix="/api")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
