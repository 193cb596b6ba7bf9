"""
Club Ladder API Server

FastAPI server for the club challenge ladder and open-match result verification.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import os
import uvicorn
from slowapi import _rate_limit_exceeded_handler  # type: ignore
from slowapi.errors import RateLimitExceeded  # type: ignore

from clubladder.api.routes import router, limiter as routes_limiter
from clubladder.database import db
from clubladder.services.exceptions import LadderError
from clubladder.services.verification_sweep_service import get_verification_sweep_service

# Set up logging
# Allow log level to be configured via environment variable (default: INFO)
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

SWEEP_ENABLED = os.getenv("ENABLE_VERIFICATION_SWEEP", "true").lower() == "true"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    # Startup
    logger.info("Starting up Club Ladder API...")

    # Create any tables missing from migrations
    try:
        await db.init_database()
        logger.info("✓ Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    # Start verification sweep (auto-verify stale scores, expire challenges)
    if SWEEP_ENABLED:
        try:
            get_verification_sweep_service().start()
            logger.info("✓ Verification sweep worker started")
        except Exception as e:
            logger.error(f"Failed to start verification sweep worker: {e}", exc_info=True)

    yield  # App is running

    # Shutdown
    logger.info("Shutting down Club Ladder API...")

    if SWEEP_ENABLED:
        try:
            get_verification_sweep_service().stop()
            logger.info("✓ Verification sweep worker stopped")
        except Exception as e:
            logger.error(f"Error stopping verification sweep worker: {e}", exc_info=True)


app = FastAPI(
    title="Club Ladder API",
    description="API for club challenge ladders and open-match rating",
    version="1.0.0",
    lifespan=lifespan,
)

# Setup rate limiter
app.state.limiter = routes_limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(LadderError)
async def ladder_error_handler(request: Request, exc: LadderError):
    """Render service errors as ``{"detail": message}`` with their HTTP status."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Add CORS middleware - origins configured via ALLOWED_ORIGINS env var
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router)


@app.get("/api/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
