"""
Run record HTTP API.
FastAPI application factory: opens the record store on startup and closes it on shutdown.
"""

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from util.logging import logger

from ..core.config import StoreConfig, VERSION, debug_enabled, load_config
from ..core.dao import RecordStore, init_store, shutdown_store
from ..core.errors import ConstraintViolation, InvalidInput, StorageUnavailable
from .records import get_store, respond, router as records_router
from .schemas import HealthData


def create_app(config: Optional[StoreConfig] = None, store: Optional[RecordStore] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        config: Store settings; read from the environment when omitted
        store: An already-open store to serve. The app will not shut it down.
    """
    if config is None:
        config = store.config if store is not None else load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.set_debug(debug_enabled())
        owns_store = store is None
        app.state.store = init_store(config) if owns_store else store
        app.state.started_at = time.monotonic()
        logger.info(
            f"Run record API ready (db={config.db_path}, max_records={config.max_records}, "
            f"max_age_minutes={config.max_age_minutes}, cleanup_interval_ms={config.cleanup_interval_ms})"
        )
        try:
            yield
        finally:
            if owns_store:
                shutdown_store(app.state.store)

    app = FastAPI(
        title="Run Record API",
        version=VERSION,
        description="Append, query and expire structured events grouped by run key",
        docs_url="/docs" if debug_enabled() else None,
        redoc_url="/redoc" if debug_enabled() else None,
        lifespan=lifespan,
    )
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_writes(request: Request, call_next):
        if request.method in ("POST", "PUT"):
            logger.debug(f"{request.method} {request.url.path}")
        return await call_next(request)

    _register_error_handlers(app)
    app.include_router(records_router)

    @app.get("/")
    def api_description():
        """Describe the endpoints and the active retention policy."""
        return {
            "name": "Run Record API",
            "version": VERSION,
            "description": "Record, query and manage structured events by run_key",
            "endpoints": {
                "GET /": "API description",
                "GET /health": "Health check",
                "POST /records": "Create or append a record (body: { run_key, payload })",
                "GET /records": "List records (query: run_key, start_time, end_time, limit, offset)",
                "GET /records/stats": "Record statistics",
                "POST /records/cleanup": "Run a retention pass now",
                "GET /records/{run_key}": "Fetch a record (data is null when missing)",
                "PUT /records/{run_key}": "Replace a record's payload (body: { payload })",
                "DELETE /records/{run_key}": "Delete a record",
            },
            "cleanupPolicy": {
                "maxRecords": config.max_records,
                "maxAgeMinutes": config.max_age_minutes,
                "cleanupIntervalMs": config.cleanup_interval_ms,
            },
        }

    @app.get("/health")
    def health_check_endpoint(request: Request):
        """Check system health."""
        current = get_store(request)
        if not current.health_check():
            return respond(status_code=503, error="Service unhealthy")

        health = HealthData(
            status="healthy",
            version=VERSION,
            uptime=round(time.monotonic() - request.app.state.started_at, 3),
            records=current.stats().total_records,
            config={
                "maxRecords": config.max_records,
                "maxAgeMinutes": config.max_age_minutes,
                "cleanupIntervalMs": config.cleanup_interval_ms,
            },
        )
        return respond(data=health.model_dump())

    return app


def _register_error_handlers(app: FastAPI):
    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        messages = [f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()]
        return respond(status_code=400, error="; ".join(messages))

    @app.exception_handler(InvalidInput)
    async def invalid_input_handler(request: Request, exc: InvalidInput):
        return respond(status_code=400, error=str(exc))

    @app.exception_handler(ConstraintViolation)
    async def constraint_violation_handler(request: Request, exc: ConstraintViolation):
        logger.warning(f"Constraint violation on {request.method} {request.url.path}: {exc}")
        return respond(status_code=409, error=f"Conflicting record: {exc}")

    @app.exception_handler(StorageUnavailable)
    async def storage_unavailable_handler(request: Request, exc: StorageUnavailable):
        logger.error(f"Storage unavailable on {request.method} {request.url.path}: {exc}")
        return respond(status_code=503, error="Storage unavailable")

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        error = "Endpoint not found" if exc.status_code == 404 else str(exc.detail)
        return respond(status_code=exc.status_code, error=error)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc!r}")
        return respond(status_code=500, error=f"Server error: {exc}")


app = create_app()
