"""Main FastAPI application for the pet-feed video service."""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from prometheus_client import make_asgi_app
from pawfeed import __version__
from pawfeed.config import settings
from pawfeed.db import init_db, close_db
from pawfeed.errors import FeedError
from pawfeed.logging_config import logger
from pawfeed.rate_limit import limiter
# Import routers
from pawfeed.video.routes import router as video_router
from pawfeed.likes.routes import router as like_router
from pawfeed.comments.routes import router as comment_router
from pawfeed.tags.routes import router as tag_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting pawfeed API", version=__version__)
    await init_db()
    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down pawfeed API")
    await close_db()
    logger.info("Application shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="pawfeed API",
    description="Short-video feed for the pet adoption marketplace",
    version=__version__,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
@app.exception_handler(FeedError)
async def feed_exception_handler(request: Request, exc: FeedError):
    """Map domain errors onto their HTTP status."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Request failed",
        path=request.url.path,
        error=exc.message,
        error_type=type(exc).__name__,
        status_code=exc.status_code,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors."""
    logger.warning(
        "Validation error",
        path=request.url.path,
        errors=exc.errors(),
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.errors()},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions."""
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        error=str(exc),
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint for container orchestration."""
    return {
        "status": "healthy",
        "version": __version__,
        "cache": settings.cache_backend,
        "broker": settings.dramatiq_broker,
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "pawfeed API",
        "version": __version__,
        "docs": "/docs" if settings.debug else None,
    }


# Mount Prometheus metrics endpoint
if settings.enable_prometheus:
    metrics_app = make_asgi_app()
    app.mount("/metrics", metrics_app)


# Include routers
app.include_router(video_router, prefix="/feed/videos", tags=["Videos"])
app.include_router(like_router, prefix="/feed/like", tags=["Likes"])
app.include_router(comment_router, prefix="/feed/comment", tags=["Comments"])
app.include_router(tag_router, prefix="/feed/tags", tags=["Tags"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "pawfeed.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )
