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

from app.db import engine
from app.errors import ApiError, error_response
from app.logging_utils import setup_json_logging
from app.routers import admin, attendance, bookings, wfh
from app.services.auto_release import run_scheduled_sweep
from app.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from app.services.wfh import run_scheduled_expiry
from app.settings import get_cors_origins, get_settings

settings = get_settings()
setup_json_logging(service=settings.app_name)
logger = logging.getLogger("app.request")
scheduler_logger = logging.getLogger("app.scheduler")

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
    request.state.actor = getattr(request.state, "actor", "system")
    request.state.actor_id = getattr(request.state, "actor_id", "system")

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
                "actor": getattr(request.state, "actor", "system"),
                "actor_id": getattr(request.state, "actor_id", "system"),
                "employee_id": getattr(request.state, "employee_id", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    code_map = {
        401: "INVALID_TOKEN",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        429: "TOO_MANY_ATTEMPTS",
    }
    return error_response(
        request,
        status_code=exc.status_code,
        code=code_map.get(exc.status_code, "HTTP_ERROR"),
        message=str(exc.detail) if exc.detail else "Request failed.",
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message=str(exc.errors()),
    )


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


app.include_router(attendance.router)
app.include_router(bookings.router)
app.include_router(wfh.router)
app.include_router(admin.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


async def run_scheduler_tick(now_utc: datetime | None = None) -> dict[str, int]:
    """One pass of the periodic jobs; each job is isolated from the other's failure."""
    reference = now_utc or datetime.now(timezone.utc)
    summary = {"released": 0, "expired_wfh": 0}
    try:
        released = await asyncio.to_thread(run_scheduled_sweep, reference)
        summary["released"] = len(released)
    except Exception:
        scheduler_logger.exception("auto_release_tick_failed")
    try:
        expired = await asyncio.to_thread(run_scheduled_expiry, reference)
        summary["expired_wfh"] = len(expired)
    except Exception:
        scheduler_logger.exception("wfh_expiry_tick_failed")
    return summary


async def _scheduler_loop(stop_event: asyncio.Event) -> None:
    interval_seconds = max(15, int(settings.scheduler_interval_seconds))
    while not stop_event.is_set():
        summary = await run_scheduler_tick()
        if summary["released"] or summary["expired_wfh"]:
            scheduler_logger.info("scheduler_tick", extra=summary)

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        scheduler_logger.info("schema_guard_ok", extra=result.to_dict())
        return

    scheduler_logger.error("schema_guard_failed", extra=result.to_dict())
    if settings.schema_guard_strict:
        joined_issues = "; ".join(result.issues)
        raise RuntimeError(f"Runtime schema guard failed: {joined_issues}")


@app.on_event("startup")
async def start_scheduler() -> None:
    if not settings.scheduler_enabled:
        return
    if getattr(app.state, "scheduler_task", None) is not None:
        return

    stop_event = asyncio.Event()
    app.state.scheduler_stop_event = stop_event
    app.state.scheduler_task = asyncio.create_task(_scheduler_loop(stop_event))
    scheduler_logger.info(
        "scheduler_started",
        extra={"interval_seconds": max(15, int(settings.scheduler_interval_seconds))},
    )


@app.on_event("shutdown")
async def stop_scheduler() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "scheduler_stop_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "scheduler_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.scheduler_stop_event = None
    app.state.scheduler_task = None


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _default_schema_guard_result())
    return {
        "status": "ok",
        "schema_guard": schema_guard_result.to_dict(),
        "scheduler_enabled": settings.scheduler_enabled,
    }
