"""
FORMA Backend API
Real-time exercise form assessment for physical therapy

FastAPI application entry point. Pose landmarks are produced in the browser;
this service grades them frame by frame and tracks exercise sessions.
"""

import logging
import sys
import time
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.config import settings
from shared.utils import error_response, resolve_log_level, setup_logger, success_response

LOG_LEVEL = resolve_log_level(settings.LOG_LEVEL)

# ============================================
# Configure Root Logger First
# ============================================
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[logging.StreamHandler(sys.stdout)]
)

from physio_service.models import CoachingService, ExerciseSessionHandler, RemoteCoachClient
from physio_service.router import router as physio_router

logger = setup_logger("forma.main", level=LOG_LEVEL)
request_logger = setup_logger("forma.requests", level=LOG_LEVEL)


# ============================================
# Request Logging Middleware
# ============================================

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log incoming requests and responses with timing."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        query_string = f"?{request.url.query}" if request.url.query else ""

        request_logger.info(f"➡️  {request.method} {request.url.path}{query_string}")
        request_logger.debug(f"    Client: {request.client.host if request.client else 'unknown'}")

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = (time.time() - start_time) * 1000
            request_logger.error(
                f"💥 {request.method} {request.url.path} → ERROR: {type(e).__name__}: {e} ({process_time:.1f}ms)"
            )
            request_logger.error(traceback.format_exc())
            raise

        process_time = (time.time() - start_time) * 1000
        if response.status_code < 400:
            status_emoji = "✅"
        elif response.status_code < 500:
            status_emoji = "⚠️"
        else:
            status_emoji = "❌"

        request_logger.info(
            f"{status_emoji} {request.method} {request.url.path} → {response.status_code} ({process_time:.1f}ms)"
        )
        return response


def build_coaching_service() -> CoachingService:
    """Local coach only unless a remote coaching URL is configured."""
    remote = None
    if settings.COACH_API_URL:
        remote = RemoteCoachClient(
            base_url=settings.COACH_API_URL,
            api_key=settings.COACH_API_KEY,
            timeout=settings.COACH_TIMEOUT_SECONDS,
        )
        logger.info(f"🧠 Remote coaching enabled: {settings.COACH_API_URL}")
    else:
        logger.info("🧠 Remote coaching not configured, using local coach")
    return CoachingService(remote=remote)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown."""
    # ===== STARTUP =====
    logger.info(f"🚀 {settings.APP_NAME} API starting up...")

    app.state.session_handler = ExerciseSessionHandler.from_settings(settings)
    app.state.coaching_service = build_coaching_service()

    logger.info(f"✅ {settings.APP_NAME} API ready!")

    yield  # Application runs here

    # ===== SHUTDOWN =====
    logger.info(f"👋 {settings.APP_NAME} API shutting down...")
    stats = app.state.session_handler.stats()
    logger.info(f"Sessions at shutdown: {stats['total_sessions']} ({stats['active_sessions']} active)")
    logger.info("✅ Shutdown complete")


app = FastAPI(
    title="FORMA API",
    description="Real-time exercise form assessment for physical therapy",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add request logging middleware
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}: {type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=500,
        content=error_response("Internal server error", error_code=type(exc).__name__),
    )


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    return {
        "status": "healthy",
        "service": "forma-api",
        "remote_coaching": "configured" if settings.COACH_API_URL else "local",
    }


@app.get("/stats")
async def get_stats(request: Request):
    """Get service statistics."""
    return success_response(request.app.state.session_handler.stats())


# Include service routers
app.include_router(physio_router, prefix="/api/physio", tags=["Physio Service"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
