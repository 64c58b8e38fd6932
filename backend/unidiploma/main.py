import re as _re
import time as _time
import uuid as _uuid
from contextlib import asynccontextmanager

import sentry_sdk
import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from unidiploma.auth.routes import router as auth_router
from unidiploma.config import settings
from unidiploma.database import async_session
from unidiploma.diplomas.routes import router as diplomas_router
from unidiploma.documents.exceptions import PipelineError
from unidiploma.documents.routes import router as documents_router
from unidiploma.middleware import SecurityHeadersMiddleware
from unidiploma.university.routes import router as university_router
from unidiploma.utils.rate_limit import limiter
from unidiploma.verification.routes import router as verification_router

# Configure structlog: JSON in production, console in development
processors = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
]
if settings.is_production:
    processors.append(structlog.processors.JSONRenderer())
else:
    processors.append(structlog.dev.ConsoleRenderer())

structlog.configure(
    processors=processors,
    wrapper_class=structlog.make_filtering_bound_logger(0),
)

logger = structlog.get_logger()

if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=0.1,
        environment=settings.APP_ENV,
        send_default_pii=False,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("unidiploma_startup", env=settings.APP_ENV)
    yield
    logger.info("unidiploma_shutdown")


app = FastAPI(
    title="UniDiploma API",
    description="Registre et vérification sécurisée des diplômes de l'Université de Kinshasa",
    version="0.1.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(PipelineError)
async def pipeline_exception_handler(request: Request, exc: PipelineError):
    """Map document pipeline errors to {"detail", "code", "retryable"}."""
    if exc.status >= 500:
        logger.error(
            "pipeline_error",
            path=request.url.path,
            code=exc.code,
            error=exc.message,
            retryable=exc.retryable,
        )
        if settings.SENTRY_DSN and not exc.retryable:
            sentry_sdk.capture_exception(exc)
    else:
        logger.info("pipeline_rejected", path=request.url.path, code=exc.code, status=exc.status)
    return JSONResponse(
        status_code=exc.status,
        content={"detail": exc.message, "code": exc.code, "retryable": exc.retryable},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch unhandled exceptions and return a safe 500 response outside development."""
    logger.exception("unhandled_exception", path=request.url.path)
    if settings.APP_ENV != "development":
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
    raise exc


# Middleware is LIFO: the last middleware added runs first.
if settings.is_production:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["Authorization", "Content-Type"],
    )
    if not settings.cors_origins_list:
        logger.warning("cors_origins_empty_in_production", app_env=settings.APP_ENV)
else:
    # Development only: the Vite dev server
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL, "http://localhost:3000"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(SecurityHeadersMiddleware, is_production=settings.is_production)


_REQUEST_ID_RE = _re.compile(r"^[a-zA-Z0-9\-]{1,64}$")


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Attach a unique request ID and measure duration for every request."""
    # Client-supplied IDs are only trusted when they cannot inject into logs
    client_id = request.headers.get("X-Request-ID")
    request_id = client_id if client_id and _REQUEST_ID_RE.match(client_id) else str(_uuid.uuid4())
    structlog.contextvars.bind_contextvars(request_id=request_id)
    start = _time.monotonic()
    try:
        response = await call_next(request)
        duration_ms = (_time.monotonic() - start) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"
        if duration_ms > 1000:
            logger.warning(
                "slow_request",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 1),
                status_code=response.status_code,
            )
        return response
    finally:
        structlog.contextvars.clear_contextvars()


# The instrumentator's default metrics crash on non-numeric Content-Length headers
def _safe_metrics(info) -> None:
    from prometheus_client import Counter, Histogram
    if not hasattr(_safe_metrics, "_total"):
        _safe_metrics._total = Counter(
            "unidiploma_http_requests_total", "Total HTTP requests",
            ["method", "status", "handler"],
        )
        _safe_metrics._latency = Histogram(
            "unidiploma_http_request_duration_seconds", "Request latency",
            ["method", "handler"],
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30),
        )
    _safe_metrics._total.labels(info.method, info.modified_status, info.modified_handler).inc()
    _safe_metrics._latency.labels(info.method, info.modified_handler).observe(info.modified_duration)


Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    excluded_handlers=["/health", "/metrics"],
).add(_safe_metrics).instrument(app)


@app.get("/metrics", include_in_schema=False)
async def metrics_endpoint(request: Request):
    """Prometheus metrics endpoint (protected by API key)."""
    from prometheus_client import generate_latest
    from starlette.responses import Response as StarletteResponse

    if settings.is_production and not settings.METRICS_API_KEY:
        raise HTTPException(status_code=503, detail="Metrics not available")

    if settings.METRICS_API_KEY:
        api_key = request.headers.get("x-metrics-key", "")
        if api_key != settings.METRICS_API_KEY:
            raise HTTPException(
                status_code=403,
                detail="Invalid metrics API key",
            )

    return StarletteResponse(
        content=generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


app.include_router(auth_router, prefix="/auth", tags=["auth"])
app.include_router(university_router)
app.include_router(diplomas_router)
app.include_router(verification_router)
app.include_router(documents_router)


@app.get("/health")
@limiter.limit("60/minute")
async def health_check(request: Request):
    """Health check with database connectivity and storage backend."""
    try:
        async with async_session() as db:
            await db.execute(text("SELECT 1"))
    except Exception:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "disconnected"},
        )
    result = {
        "status": "ok",
        "database": "connected",
        "redis": "connected",
        "storage": "r2" if settings.R2_ENDPOINT_URL else "local",
    }

    # Redis only backs the rate limiter; the API works without it
    try:
        import redis.asyncio as aioredis
        r = aioredis.from_url(settings.REDIS_URL, socket_connect_timeout=2)
        await r.ping()
        await r.aclose()
    except Exception:
        result["redis"] = "unavailable"
    return result
