"""
FastAPI application: the entrypoint for the shelf service.

Features:
- Typed shelf errors rendered as {"error", "detail"} envelopes
- CORS restrictions
- Redis rate limiting middleware
- Prometheus metrics endpoint
- Structured JSON logging
- Health / readiness / liveness probes
- Graceful shutdown
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import Counter, Histogram, generate_latest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from app.config import get_settings
from app.errors import Conflict, ShelfError
from app.logging_config import setup_logging
from app.middleware.rate_limiter import RateLimiterMiddleware
from app.routers import books, queue, shelf

settings = get_settings()
setup_logging(settings.log_level, settings.log_format)
logger = structlog.get_logger()

# ── Prometheus metrics ──
REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint"],
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and graceful shutdown."""
    logger.info("shelf_service_starting", environment=settings.environment)

    # Create tables on first start (dev convenience); migrations own production
    if settings.environment == "development":
        from app.database import Base, engine
        # Import all models so Base.metadata has them registered
        from app.models import book, favorite, queue as queue_models, shelf as shelf_models, user  # noqa: F401

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database_tables_created")

    yield

    logger.info("shelf_service_shutting_down")
    from app.database import engine
    from app.services.achievement_client import close_client
    from app.services.cache import close_redis

    await close_client()
    await close_redis()
    await engine.dispose()


app = FastAPI(
    title="Reading Shelves",
    description="Shelf, reading status and reading-queue API",
    version="1.0.0",
    root_path="/api",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── CORS ──
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Rate Limiting ──
app.add_middleware(RateLimiterMiddleware)


# ── Error envelopes ──
@app.exception_handler(ShelfError)
async def shelf_error_handler(request: Request, exc: ShelfError):
    logger.info(
        "shelf_request_rejected",
        error=exc.code,
        detail=exc.detail,
        method=request.method,
        path=request.url.path,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(IntegrityError)
@app.exception_handler(StaleDataError)
async def concurrent_write_handler(request: Request, exc: Exception):
    """Writes that clash outside an explicit flush (autoflush, commit) are conflicts too."""
    logger.warning("shelf_concurrent_write", path=request.url.path, error=type(exc).__name__)
    conflict = Conflict()
    return JSONResponse(status_code=conflict.status_code, content=conflict.to_payload())


# ── Request metrics middleware ──
@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    if not settings.enable_metrics:
        return await call_next(request)

    start = time.time()
    response = await call_next(request)
    duration = time.time() - start

    # route template keeps label cardinality bounded (/shelf/{book_id})
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    REQUEST_COUNT.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code,
    ).inc()
    REQUEST_LATENCY.labels(
        method=request.method,
        endpoint=endpoint,
    ).observe(duration)

    return response


# ── Routers ──
app.include_router(shelf.router)
app.include_router(queue.router)
app.include_router(books.router)


# ── Health / Readiness / Liveness ──
@app.get("/health", tags=["Health"])
async def health():
    return {"status": "healthy", "service": "shelves"}


@app.get("/ready", tags=["Health"])
async def readiness():
    """Readiness probe: checks DB and Redis connectivity."""
    checks = {}
    try:
        from app.database import engine
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception:
        checks["database"] = "error"

    if settings.cache_enabled or settings.rate_limit_enabled:
        try:
            from app.services.cache import get_redis
            r = await get_redis()
            await r.ping()
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "error"

    all_ok = all(v == "ok" for v in checks.values())
    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={"status": "ready" if all_ok else "not_ready", "checks": checks},
    )


@app.get("/live", tags=["Health"])
async def liveness():
    return {"status": "alive"}


# ── Prometheus metrics endpoint ──
@app.get("/metrics", tags=["Monitoring"])
async def metrics():
    from starlette.responses import Response
    return Response(content=generate_latest(), media_type="text/plain")
