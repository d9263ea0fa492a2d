import asyncio
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from factory_monitor.clock import Clock, SystemClock
from factory_monitor.errors import ApiError, error_response, validation_details
from factory_monitor.logging_utils import setup_json_logging
from factory_monitor.routers import events, metrics, seed
from factory_monitor.schemas import HealthResponse
from factory_monitor.services.schema_guard import SchemaGuardResult, not_run_result, verify_runtime_schema
from factory_monitor.settings import Settings, get_cors_origins, get_settings, is_production
from factory_monitor.store import EventStore

logger = logging.getLogger("factory_monitor.request")
startup_logger = logging.getLogger("factory_monitor.startup")


def create_app(
    settings: Settings | None = None,
    *,
    store: EventStore | None = None,
    clock: Clock | None = None,
    configure_logging: bool = True,
) -> FastAPI:
    settings = settings or get_settings()
    if configure_logging:
        setup_json_logging(settings.log_level)

    owns_store = store is None
    if store is None:
        store = EventStore.from_url(settings.database_url, timeout_seconds=settings.store_timeout_seconds)

    app = FastAPI(title=settings.app_name, version="0.1.0")
    app.state.settings = settings
    app.state.event_store = store
    app.state.clock = clock or SystemClock()
    app.state.schema_guard_result = not_run_result()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(settings),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id

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
                    "worker_id": getattr(request.state, "worker_id", None),
                    "event_id": getattr(request.state, "event_id", None),
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
            404: "NOT_FOUND",
            405: "METHOD_NOT_ALLOWED",
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
            status_code=400,
            code="VALIDATION_ERROR",
            message="Request validation failed.",
            details=validation_details(list(exc.errors())),
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
        details = None
        if not is_production(settings):
            details = {"type": exc.__class__.__name__, "message": str(exc)}
        return error_response(
            request,
            status_code=500,
            code="INTERNAL_ERROR",
            message="Unexpected server error.",
            details=details,
        )

    app.include_router(events.router)
    app.include_router(metrics.router)
    app.include_router(seed.router)

    @app.on_event("startup")
    async def prepare_store() -> None:
        if settings.auto_create_schema:
            try:
                await asyncio.to_thread(store.create_schema)
            except ApiError:
                startup_logger.exception("schema_create_failed")
        result = await asyncio.to_thread(verify_runtime_schema, store.engine)
        app.state.schema_guard_result = result
        if result.ok:
            startup_logger.info("schema_guard_ok", extra=result.to_dict())
        else:
            startup_logger.error("schema_guard_failed", extra=result.to_dict())

    @app.on_event("shutdown")
    async def release_store() -> None:
        if owns_store:
            await asyncio.to_thread(store.dispose)

    @app.get("/health", response_model=HealthResponse)
    async def health() -> dict[str, Any]:
        connected = await asyncio.to_thread(store.ping)
        schema_guard_result: SchemaGuardResult = app.state.schema_guard_result
        return {
            "status": "ok",
            "message": "Factory Monitor API is running",
            "database": {"status": "connected" if connected else "disconnected"},
            "schema_guard": schema_guard_result.to_dict(),
        }

    return app


app = create_app()
