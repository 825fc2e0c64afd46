"""s3www - FastAPI application."""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from s3www.config import Settings, settings as default_settings
from s3www.errors import ExhaustedChain, OutOfRange, StreamError, TransportError
from s3www.fileserver import FileServer
from s3www.metrics import ERROR_COUNT, set_service_info
from s3www.middleware.cache import ResponseCache, ResponseCacheMiddleware
from s3www.middleware.metrics import MetricsMiddleware, normalize_path
from s3www.models.responses import ErrorResponse
from s3www.resolution import ResolutionEngine
from s3www.resolver import PathResolver
from s3www.routers import backend, files, metrics
from s3www.storage import ObjectStore, S3ObjectStore
from s3www.vfs import BucketFileSystem


def setup_logging(settings: Settings) -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer() if not settings.debug else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.INFO if not settings.debug else logging.DEBUG
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()


def build_file_server(settings: Settings, store: ObjectStore) -> FileServer:
    """Wire resolver, resolution engine and file system around a store."""
    resolver = PathResolver(
        settings.root,
        index_document=settings.index_document,
        not_found_document=settings.not_found_document,
    )
    fs = BucketFileSystem(store, resolver=resolver, engine=ResolutionEngine(store))
    return FileServer(fs, chunk_size=settings.chunk_size)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings: Settings = app.state.settings
    logger.info(
        "application_startup",
        version=settings.api_version,
        debug=settings.debug,
        bucket=settings.bucket,
        root=settings.root or "/",
        endpoint=settings.endpoint or "aws-default",
        cache_enabled=settings.cache_enabled,
    )
    set_service_info(version=settings.api_version, bucket=settings.bucket, root=settings.root)

    yield

    logger.info("application_shutdown")


def create_app(settings: Optional[Settings] = None, store: Optional[ObjectStore] = None) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Configuration, the environment-derived global by default
        store: Object store client, an S3ObjectStore built from settings by default
    """
    settings = settings or default_settings
    setup_logging(settings)

    if store is None:
        store = S3ObjectStore.from_settings(settings)

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="Serve the contents of an S3-compatible bucket as static files.",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=f"{settings.internal_prefix}/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.file_server = build_file_server(settings, store)

    # Middleware added last runs first: logging -> metrics -> cache -> routes
    if settings.cache_enabled:
        app.state.response_cache = ResponseCache(
            capacity=settings.cache_capacity,
            ttl_seconds=settings.cache_ttl_seconds,
        )
        app.add_middleware(
            ResponseCacheMiddleware,
            cache=app.state.response_cache,
            refresh_key=settings.cache_refresh_key,
            max_body_bytes=settings.cache_max_body_bytes,
            skip_prefix=settings.internal_prefix,
        )

    app.add_middleware(MetricsMiddleware, internal_prefix=settings.internal_prefix)

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        """Log all requests with timing and request ID."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        start_time = time.perf_counter()

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000

        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )

        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(ExhaustedChain)
    async def exhausted_chain_handler(request: Request, exc: ExhaustedChain):
        return PlainTextResponse("404 page not found\n", status_code=404)

    @app.exception_handler(TransportError)
    async def transport_error_handler(request: Request, exc: TransportError):
        ERROR_COUNT.labels(
            type="TransportError",
            endpoint=normalize_path(request.url.path, settings.internal_prefix),
        ).inc()
        logger.error(
            "store_unavailable",
            path=request.url.path,
            key=exc.key,
            code=exc.code,
            error=str(exc),
        )
        return PlainTextResponse("502 bad gateway\n", status_code=502)

    @app.exception_handler(StreamError)
    async def stream_error_handler(request: Request, exc: StreamError):
        ERROR_COUNT.labels(
            type="StreamError",
            endpoint=normalize_path(request.url.path, settings.internal_prefix),
        ).inc()
        logger.error("stream_failed", path=request.url.path, key=exc.key, error=str(exc))
        return PlainTextResponse("502 bad gateway\n", status_code=502)

    @app.exception_handler(OutOfRange)
    async def out_of_range_handler(request: Request, exc: OutOfRange):
        return PlainTextResponse(
            "416 requested range not satisfiable\n",
            status_code=416,
            headers={"Content-Range": f"bytes */{exc.size}"},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle uncaught exceptions."""
        endpoint = normalize_path(request.url.path, settings.internal_prefix)
        error_type = type(exc).__name__

        ERROR_COUNT.labels(type=error_type, endpoint=endpoint).inc()

        logger.error(
            "unhandled_exception",
            method=request.method,
            path=request.url.path,
            error=str(exc),
            error_type=error_type,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="internal_server_error",
                message=str(exc) if settings.debug else "An internal error occurred",
            ).model_dump(exclude_none=True),
        )

    # Internal endpoints first, the catch-all file route last
    app.include_router(backend.router, prefix=settings.internal_prefix)
    app.include_router(metrics.router, prefix=settings.internal_prefix)
    app.include_router(files.router)

    return app


app = create_app()
