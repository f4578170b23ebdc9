import logging
import os
import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.orm import Session

from inventory.api.auth import router as auth_router
from inventory.api.security import router as security_router
from inventory.core.admin_sync import get_runtime_admin_usernames, sync_admin_users
from inventory.core.api_response import (
    error_response_payload,
    get_request_id,
    split_http_detail,
    success_response_payload,
)
from inventory.core.config import get_settings
from inventory.core.errors import ReportingError, StorageError
from inventory.core.metrics import increment_counter, prometheus_text, snapshot_metrics
from inventory.core.observability import configure_logging
from inventory.core.security import require_permission
from inventory.db.models.user import User
from inventory.db.session import SessionLocal
from inventory.defense.maintenance import MaintenanceScheduler

configure_logging()
logger = logging.getLogger(__name__)

# Invalid thresholds raise ConfigurationError here, before any traffic is served.
settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    admin_usernames = get_runtime_admin_usernames()
    if admin_usernames:
        db: Session = SessionLocal()
        try:
            result = sync_admin_users(db, admin_usernames, os.getenv("ADMIN_PASSWORD"))
            logger.info("Admin sync %s", result)
        finally:
            db.close()

    scheduler: MaintenanceScheduler | None = None
    if settings.maintenance_enabled:
        scheduler = MaintenanceScheduler(settings, SessionLocal)
        scheduler.start()

    yield

    if scheduler is not None:
        await scheduler.stop()


app = FastAPI(title="Inventory API", lifespan=lifespan)
app.include_router(auth_router)
app.include_router(security_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid4().hex
    request.state.request_id = request_id
    started_at = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started_at) * 1000
    response.headers["X-Request-ID"] = request_id
    if request.url.path != "/metrics/prometheus":
        increment_counter(
            "http_requests_total",
            method=request.method.upper(),
            path=request.url.path,
            status=str(response.status_code),
        )
    logger.info(
        "http_request request_id=%s method=%s path=%s status=%s duration_ms=%.2f",
        request_id,
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
    )
    return response


def _count_error(request: Request, code: int) -> None:
    increment_counter(
        "http_errors_total",
        code=str(code),
        path=request.url.path,
        method=request.method.upper(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    _count_error(request, exc.status_code)
    code, message, details = split_http_detail(exc.status_code, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response_payload(request, code=code, message=message, details=details),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    _count_error(request, 422)
    return JSONResponse(
        status_code=422,
        content=error_response_payload(
            request,
            code="validation_error",
            message="Validation error",
            details=exc.errors(),
        ),
    )


@app.exception_handler(ReportingError)
async def reporting_exception_handler(request: Request, exc: ReportingError):
    _count_error(request, 503)
    logger.warning("Security reporting failed request_id=%s: %s", get_request_id(request), exc.cause)
    return JSONResponse(
        status_code=503,
        content=error_response_payload(
            request,
            code="reporting_unavailable",
            message="Security report is temporarily unavailable",
            details={"operation": exc.operation},
        ),
    )


@app.exception_handler(StorageError)
async def storage_exception_handler(request: Request, exc: StorageError):
    # Only administrative paths let StorageError escape; login fails open.
    _count_error(request, 503)
    logger.warning("Storage failure request_id=%s: %s", get_request_id(request), exc)
    return JSONResponse(
        status_code=503,
        content=error_response_payload(
            request,
            code="storage_unavailable",
            message="Security store is temporarily unavailable",
            details={"operation": exc.operation},
        ),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    _count_error(request, 500)
    logger.exception("Unhandled error request_id=%s", get_request_id(request), exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=error_response_payload(
            request,
            code="internal_error",
            message="Internal server error",
        ),
    )


@app.get("/health")
def health(request: Request):
    return {"ok": True, "status": "ok", "request_id": get_request_id(request)}


@app.get("/metrics")
def metrics(request: Request, _: User = Depends(require_permission("metrics.view"))):
    return success_response_payload(request, data={"counters": snapshot_metrics()})


@app.get("/metrics/prometheus")
def metrics_prometheus():
    return PlainTextResponse(content=prometheus_text(), media_type="text/plain; version=0.0.4; charset=utf-8")
