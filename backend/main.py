# main.py — CA Practice Portal API
# Features:
# - Request correlation IDs (stamped on every log line)
# - Security headers
# - Uniform error bodies {"detail", "code", "requestId"}
# - Health check with DB verification
# - All routers registered under /api

import os
import uuid
import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import init_db, close_db, get_db_session
from errors import code_for_status, error_body
from logging_system import configure_logging, set_request_id, reset_request_id
from telemetry import setup_telemetry

# Logging
configure_logging(os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger("ca-portal")

APP_VERSION = "1.0.0"


def _check_startup_config():
    """Validate critical configuration on startup."""
    warnings = []

    for key in ("JWT_SECRET_KEY", "JWT_REFRESH_SECRET_KEY"):
        value = os.getenv(key, "")
        if not value or len(value) < 32:
            warnings.append(f"{key} is not set or shorter than 32 characters")

    if os.getenv("JWT_SECRET_KEY") and os.getenv("JWT_SECRET_KEY") == os.getenv("JWT_REFRESH_SECRET_KEY"):
        warnings.append("JWT_SECRET_KEY and JWT_REFRESH_SECRET_KEY must differ")

    upload_dir = os.getenv("UPLOAD_DIR", "uploads")
    if os.path.exists(upload_dir) and not os.access(upload_dir, os.W_OK):
        warnings.append(f"UPLOAD_DIR {upload_dir} is not writable")

    for w in warnings:
        logger.warning(w)

    return len(warnings) == 0


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting CA Practice Portal v{APP_VERSION}...")
    await init_db()
    _check_startup_config()
    # No-op unless OTEL_EXPORTER_OTLP_ENDPOINT is set
    setup_telemetry(app)
    yield
    logger.info("Shutting down CA Practice Portal...")
    await close_db()


app = FastAPI(
    title="CA Practice Portal",
    description="Practice management for chartered-accountant firms and their clients",
    version=APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ============================================================
# CORS
# ============================================================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:5173"
    ).split(",")
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID", "Content-Disposition"],
)


# ============================================================
# MIDDLEWARE: Correlation IDs + Timing
# ============================================================

@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    token = set_request_id(request_id)

    start = time.perf_counter()
    try:
        response = await call_next(request)
        duration = time.perf_counter() - start

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration:.4f}s"

        logger.info(
            f"{request.method} {request.url.path} → {response.status_code} ({duration:.3f}s)"
        )
        return response
    finally:
        reset_request_id(token)


# ============================================================
# MIDDLEWARE: Security Headers
# ============================================================

@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

def _request_id(request: Request):
    return getattr(request.state, "request_id", None)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    code = getattr(exc, "code", None) or code_for_status(exc.status_code)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.detail, code, _request_id(request)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Collapse pydantic errors into one readable message
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", []) if part != "body")
        msg = str(err.get("msg", "Invalid value"))
        messages.append(f"{loc}: {msg}" if loc else msg)

    return JSONResponse(
        status_code=400,
        content=error_body("; ".join(messages) or "Invalid request", "VALIDATION_ERROR", _request_id(request)),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=error_body("Internal server error", "INTERNAL_ERROR", _request_id(request)),
    )


# ============================================================
# ROUTERS
# ============================================================

from routers import (
    auth, clients, tasks, documents, calendar, chat,
    notifications, users, admin, dashboard,
)

app.include_router(auth.router)
app.include_router(clients.router)
app.include_router(tasks.router)
app.include_router(documents.router)
app.include_router(calendar.router)
app.include_router(chat.router)
app.include_router(notifications.router)
app.include_router(users.router)
app.include_router(admin.router)
app.include_router(dashboard.router)


# ============================================================
# HEALTH
# ============================================================

@app.get("/api/health")
async def health_check():
    """Health check with database connectivity verification"""
    db_status = "unknown"
    try:
        async for db in get_db_session():
            await db.execute(text("SELECT 1"))
            db_status = "connected"
            break
    except Exception as e:
        logger.warning(f"Health check database probe failed: {e}")
        db_status = f"error: {str(e)[:100]}"

    return {
        "status": "ok" if db_status == "connected" else "degraded",
        "version": APP_VERSION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "database": db_status,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=os.getenv("ENVIRONMENT") != "production",
    )
