import logging
import time
import traceback
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app.config import settings
from app.database import engine
from app.middleware.logging_config import configure_logging

configure_logging(settings.log_level, settings.log_format)

from app.api.auth import router as auth_router  # noqa: E402
from app.api.users import router as users_router  # noqa: E402
from app.api.employees import router as employees_router  # noqa: E402
from app.api.departments import router as departments_router  # noqa: E402
from app.api.clients import router as clients_router  # noqa: E402
from app.api.tasks import router as tasks_router  # noqa: E402
from app.api.financial import router as financial_router  # noqa: E402
from app.api.notifications import router as notifications_router  # noqa: E402
from app.api.roles import router as roles_router  # noqa: E402
from app.api.audit import router as audit_router  # noqa: E402
from app.auth.roles import DEFAULT_PERMISSION_MATRIX  # noqa: E402
from app.realtime.hub import NotificationHub  # noqa: E402

logger = logging.getLogger("app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: verify DB connection
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("BizManager API started (%s)", settings.environment)
    yield
    # Shutdown
    await engine.dispose()


app = FastAPI(
    title="BizManager API",
    description="Role-based business management: employees, clients, tasks and payments",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.hub = NotificationHub()
app.state.permission_matrix = DEFAULT_PERMISSION_MATRIX

# ── CORS (tightened) ─────────────────────────────────────────────────────────
origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
)

# ── Security headers middleware ──────────────────────────────────────────────
from app.middleware.security_headers import SecurityHeadersMiddleware  # noqa: E402

app.add_middleware(SecurityHeadersMiddleware)

# ── Rate limiting middleware ─────────────────────────────────────────────────
from app.middleware.rate_limit import RateLimitMiddleware  # noqa: E402

if settings.rate_limit_enabled:
    app.add_middleware(RateLimitMiddleware)

# ── Request context middleware (request ID + timing) ─────────────────────────
from app.middleware.request_context import RequestContextMiddleware  # noqa: E402

app.add_middleware(RequestContextMiddleware)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return detailed error info in development mode so 500s are debuggable."""
    tb = traceback.format_exc()
    logger.error(
        "Unhandled %s on %s %s: %s\n%s",
        type(exc).__name__, request.method, request.url.path, exc, tb,
    )
    if settings.environment == "development":
        return JSONResponse(
            status_code=500,
            content={
                "detail": {"code": "SERVER_ERROR", "message": f"{type(exc).__name__}: {exc}"},
                "traceback": tb.splitlines()[-5:],
            },
        )
    return JSONResponse(
        status_code=500,
        content={"detail": {"code": "SERVER_ERROR", "message": "Internal server error"}},
    )


# Register API routers
app.include_router(auth_router)
app.include_router(users_router)
app.include_router(employees_router)
app.include_router(departments_router)
app.include_router(clients_router)
app.include_router(tasks_router)
app.include_router(financial_router)
app.include_router(notifications_router)
app.include_router(roles_router)
app.include_router(audit_router)


# ── Health check ─────────────────────────────────────────────────────────────

_health_cache: dict = {}
_health_cache_ts: float = 0.0
HEALTH_CACHE_TTL = 10.0  # seconds


@app.get("/api/health")
async def health_check():
    global _health_cache, _health_cache_ts

    now = time.time()
    if _health_cache and (now - _health_cache_ts) < HEALTH_CACHE_TTL:
        return _health_cache

    components: dict = {}

    # Database
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        components["database"] = {"status": "connected"}
    except Exception as exc:
        components["database"] = {"status": "disconnected", "error": str(exc)}

    # Redis
    try:
        r = aioredis.from_url(settings.redis_url, decode_responses=True)
        await r.ping()
        await r.aclose()
        components["redis"] = {"status": "connected"}
    except Exception as exc:
        components["redis"] = {"status": "disconnected", "error": str(exc)}

    db_ok = components["database"]["status"] == "connected"
    redis_ok = components["redis"]["status"] == "connected"

    if db_ok and redis_ok:
        overall = "healthy"
    elif not db_ok:
        overall = "unhealthy"
    else:
        overall = "degraded"

    result = {
        "status": overall,
        "environment": settings.environment,
        "components": components,
        "realtime_connections": app.state.hub.connection_count,
    }

    _health_cache = result
    _health_cache_ts = now
    return result
