import asyncio
from contextlib import suppress
from datetime import datetime, timezone
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from internhub.db import engine
from internhub.errors import ApiError, RemoteServiceError, error_response
from internhub.logging_utils import setup_json_logging
from internhub.routers import auth, contracts, notifications, onboarding, timesheets, users
from internhub.services.contract_expiry import scan_contract_expiries
from internhub.services.notifications import get_notification_channel_health, send_pending_notifications
from internhub.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from internhub.settings import get_cors_origins, get_settings
from internhub.storage.provider import StorageError

setup_json_logging()
logger = logging.getLogger("internhub.request")
worker_logger = logging.getLogger("internhub.worker")
settings = get_settings()

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor = getattr(request.state, "actor", "anonymous")
    request.state.actor_id = getattr(request.state, "actor_id", None)

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
                "actor": getattr(request.state, "actor", "anonymous"),
                "actor_id": getattr(request.state, "actor_id", None),
                "timesheet_id": getattr(request.state, "timesheet_id", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    status_code = exc.status_code
    code_map = {
        401: "UNAUTHENTICATED",
        403: "UNAUTHORIZED",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        429: "TOO_MANY_ATTEMPTS",
    }
    code = code_map.get(status_code, "HTTP_ERROR")
    message = str(exc.detail) if exc.detail else "Request failed."
    return error_response(
        request,
        status_code=status_code,
        code=code,
        message=message,
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message=str(exc.errors()),
    )


@app.exception_handler(SQLAlchemyError)
async def handle_store_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception(
        "store_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    remote = RemoteServiceError("The data store is unavailable. Please try again.")
    return error_response(request, status_code=remote.status_code, code=remote.code, message=remote.message)


@app.exception_handler(StorageError)
async def handle_storage_error(request: Request, exc: StorageError) -> JSONResponse:
    logger.exception(
        "storage_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
        },
    )
    remote = RemoteServiceError("The document store is unavailable. Please try again.")
    return error_response(request, status_code=remote.status_code, code=remote.code, message=remote.message)


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(auth.router)
app.include_router(users.router)
app.include_router(timesheets.router)
app.include_router(contracts.router)
app.include_router(onboarding.router)
app.include_router(notifications.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


def _worker_interval_seconds() -> int:
    return max(15, int(settings.worker_interval_seconds))


async def _background_worker_loop(stop_event: asyncio.Event) -> None:
    interval_seconds = _worker_interval_seconds()
    while not stop_event.is_set():
        try:
            now_utc = datetime.now(timezone.utc)
            notices = await asyncio.to_thread(scan_contract_expiries, now_utc)
            processed_jobs = await asyncio.to_thread(send_pending_notifications, 100, now_utc=now_utc)
        except Exception:
            worker_logger.exception("background_worker_tick_failed")
        else:
            if notices or processed_jobs:
                worker_logger.info(
                    "background_worker_tick",
                    extra={
                        "expiry_notices": len(notices),
                        "processed_jobs": len(processed_jobs),
                    },
                )

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        worker_logger.info(
            "schema_guard_ok",
            extra=result.to_dict(),
        )
        return

    worker_logger.error(
        "schema_guard_failed",
        extra=result.to_dict(),
    )
    if settings.schema_guard_strict:
        joined_issues = "; ".join(result.issues)
        raise RuntimeError(f"Runtime schema guard failed: {joined_issues}")


@app.on_event("startup")
async def start_background_worker() -> None:
    if not settings.worker_enabled:
        return
    if getattr(app.state, "worker_task", None) is not None:
        return

    stop_event = asyncio.Event()
    task = asyncio.create_task(_background_worker_loop(stop_event))
    app.state.worker_stop_event = stop_event
    app.state.worker_task = task
    try:
        channel_health = await asyncio.to_thread(get_notification_channel_health)
    except SQLAlchemyError:
        worker_logger.exception("notification_channel_health_failed")
        channel_health = {}
    email_status = channel_health.get("email", {}) if isinstance(channel_health, dict) else {}
    missing_fields = email_status.get("missing_fields", []) if isinstance(email_status, dict) else []
    if isinstance(missing_fields, list) and missing_fields:
        worker_logger.warning(
            "notification_email_channel_not_configured",
            extra={"missing_fields": missing_fields},
        )
    worker_logger.info(
        "background_worker_started",
        extra={
            "interval_seconds": _worker_interval_seconds(),
            "channel_health": channel_health,
        },
    )


@app.on_event("shutdown")
async def stop_background_worker() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "worker_stop_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "worker_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.worker_stop_event = None
    app.state.worker_task = None


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _default_schema_guard_result())
    return {
        "status": "ok",
        "schema_guard": schema_guard_result.to_dict(),
        "notification_channels": get_notification_channel_health(),
    }
