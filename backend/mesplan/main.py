"""
MESPlan API application.

Wires the scheduling and production-plan routers, request correlation and
the domain exception mapping onto one FastAPI app.
"""
import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from mesplan.config import settings
from mesplan.database import create_tables, SessionLocal, engine
from mesplan.core.exceptions import MESPlanException, to_http_exception
from mesplan.utils.events import configure_event_bus
from mesplan.utils.logging import configure_logging, request_id_var
from mesplan.routers import production_plans, scheduling

configure_logging(
    log_level=settings.LOG_LEVEL,
    log_format=settings.LOG_FORMAT,
    scheduling_log_level=settings.SCHEDULING_LOG_LEVEL or None,
)
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # Schema creation is for local runs; deployed databases are migrated with Alembic.
    logger.info("mesplan_starting version=%s", settings.APP_VERSION)
    create_tables()
    configure_event_bus(db_session_factory=SessionLocal)
    yield
    logger.info("mesplan_stopped")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Manufacturing Scheduling & Capacity Planning Engine",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _apply_security_headers(response) -> None:
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if not settings.DEBUG:
        response.headers["Strict-Transport-Security"] = (
            f"max-age={settings.STRICT_TRANSPORT_SECURITY_SECONDS}; includeSubDomains"
        )


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """Bind a request id to the log context and echo it with the response time."""
    started = time.perf_counter()
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    token = request_id_var.set(request_id)
    try:
        response = await call_next(request)
    finally:
        request_id_var.reset(token)

    elapsed_ms = (time.perf_counter() - started) * 1000
    if settings.ENABLE_REQUEST_ID:
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
    if settings.ENABLE_REQUEST_LOGGING:
        logger.info(
            "request_completed method=%s path=%s status=%s duration_ms=%.2f",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
    if settings.ENABLE_SECURITY_HEADERS:
        _apply_security_headers(response)
    return response


@app.exception_handler(MESPlanException)
async def mesplan_exception_handler(request: Request, exc: MESPlanException) -> JSONResponse:
    http_exc = to_http_exception(exc)
    if http_exc.status_code >= 409:
        logger.warning("request_rejected code=%s message=%s", exc.code, exc.message)
    return JSONResponse(
        status_code=http_exc.status_code,
        content={"success": False, "error": http_exc.detail},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": {"code": "VALIDATION_ERROR", "message": str(exc)}},
    )


app.include_router(scheduling.router, prefix=API_PREFIX)
app.include_router(production_plans.router, prefix=API_PREFIX)


def _database_reachable():
    """(ok, error message) for a trivial round trip to the scheduling database."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as exc:
        return False, str(exc)
    return True, None


@app.get("/health", tags=["Health"])
def health_check():
    return {"status": "healthy", "app": settings.APP_NAME}


@app.get("/ready", tags=["Health"])
def readiness_check(request: Request):
    db_ok, db_error = _database_reachable() if settings.READINESS_CHECK_DATABASE else (True, None)
    return JSONResponse(
        status_code=200 if db_ok else 503,
        content={
            "status": "ready" if db_ok else "not_ready",
            "version": settings.APP_VERSION,
            "request_id": getattr(request.state, "request_id", None),
            "checks": {"database": {"enabled": settings.READINESS_CHECK_DATABASE, "ok": db_ok, "error": db_error}},
        },
    )
