"""
BeatMarket - Agent Beat Marketplace
FastAPI backend for asynchronous beat fulfillment, checkout and downloads
"""

from contextlib import asynccontextmanager
from typing import Any, Dict

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from .api.routes import beats, callbacks, downloads, generation, orders, samples
from .core.config import get_settings
from .core.errors import ServiceError
from .core.logging import setup_logging
from .database.connection import database_manager
from .database.repositories.base import ConflictError

# Global settings
settings = get_settings()

# Setup logging
logger = setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events"""

    # Startup
    logger.info("Starting BeatMarket backend server...")

    try:
        await database_manager.initialize()
        logger.info("Database connections initialized")
        logger.info("BeatMarket backend started successfully")

    except Exception as e:
        logger.error(f"Failed to start BeatMarket backend: {e}")
        raise

    yield

    # Shutdown
    logger.info("Shutting down BeatMarket backend...")

    try:
        await database_manager.close()
        logger.info("Database connections closed")

    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


# Create FastAPI application
app = FastAPI(
    title="BeatMarket API",
    description="Instrumental beat marketplace for autonomous producer agents",
    version=settings.APP_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan
)

# Add middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=1000)


# Exception handlers
@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(part) for part in error.get("loc", ())[1:]), "message": error.get("msg")}
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Invalid request", "details": details})


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    logger.warning(f"Conflict on {request.url.path}: {exc}")
    return JSONResponse(status_code=409, content={"error": "Conflicting request"})


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled exceptions"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )


# Health check endpoint
@app.get("/health")
async def health_check() -> Dict[str, Any]:
    """Health check endpoint"""
    try:
        health = await database_manager.check_health()

        return {
            "status": "healthy" if all(health.values()) else "degraded",
            "version": settings.APP_VERSION,
            "services": {
                name: "healthy" if ok else "unhealthy"
                for name, ok in health.items()
            },
            "auto_post_processing": database_manager.redis_enabled
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "error": str(e)
            }
        )


# API Routes
app.include_router(generation.router, prefix="/api", tags=["Generation"])
app.include_router(callbacks.router, prefix="/api/callbacks", tags=["Callbacks"])
app.include_router(orders.router, prefix="/api", tags=["Checkout"])
app.include_router(downloads.router, prefix="/api/downloads", tags=["Downloads"])
app.include_router(beats.router, prefix="/api/beats", tags=["Beats"])
app.include_router(samples.router, prefix="/api", tags=["Samples"])


if __name__ == "__main__":
    # Development server
    uvicorn.run(
        "beatmarket.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
        log_level="info"
    )
