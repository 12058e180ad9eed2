from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from contextlib import asynccontextmanager
from slowapi.errors import RateLimitExceeded
import logging
import time
import uuid

from . import __version__
from .config import settings
from .database import create_tables, SessionLocal
from .schemas.response import ResponseAPI
from .services.reconciliation import build_engine
from .utils.logging_config import setup_logging, set_request_context, clear_request_context
from .utils.metrics import record_http_request
from .utils.rate_limiter import limiter

from .routers import webhooks, cal, health, metrics

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    setup_logging(settings.log_level, json_format=settings.log_json)

    logger.info(f"Starting academy-bff {__version__}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"CORS Origins: {settings.cors_origins}")

    create_tables()

    engine = build_engine(settings, SessionLocal)
    app.state.engine = engine

    # ==========================================
    # START BACKGROUND BOOKING POLLER
    # ==========================================
    if settings.polling_enabled:
        engine.start()
        logger.info(f"Booking poller started in background (interval: {settings.poll_interval_seconds}s)")
    else:
        logger.warning("Booking polling disabled, only webhooks will trigger refunds")

    yield

    logger.info("Shutting down academy-bff...")
    await engine.stop()
    app.state.engine = None
    logger.info("Booking poller stopped")


# Create FastAPI app
app = FastAPI(
    title="Academy BFF",
    description="Booking reconciliation for Cal.com and Stripe",
    version=__version__,
    lifespan=lifespan
)

# Rate limiter state
app.state.limiter = limiter


# ================================
# CORS MIDDLEWARE - MUST BE FIRST!
# ================================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


# Request ID Middleware
class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id
        set_request_context(request_id)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-ID"] = request_id
        return response


# HTTP metrics middleware
class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        route = request.scope.get("route")
        # Route template keeps booking uids out of the label set
        path = getattr(route, "path", None) or "unmatched"
        record_http_request(request.method, path, response.status_code, time.perf_counter() - start)
        return response


# Add other middleware AFTER CORS
app.add_middleware(RequestIdMiddleware)
app.add_middleware(MetricsMiddleware)


# Rate limit handler
@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content=ResponseAPI.error("Too many requests, try again later").model_dump()
    )


# Include routers
app.include_router(webhooks.router)
app.include_router(cal.router)
app.include_router(health.router)
app.include_router(metrics.router)


@app.get("/")
async def root():
    return {
        "message": "Academy BFF",
        "version": __version__,
        "docs": "/docs",
        "status": "running",
    }
