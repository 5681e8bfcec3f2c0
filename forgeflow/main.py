"""ForgeFlow: FastAPI application entry point."""

import signal
import uuid
from contextlib import asynccontextmanager

# configure_structlog must run before other app imports: structlog caches the
# processor chain on first use.
from forgeflow.core.logging import configure_structlog
from forgeflow.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from forgeflow.api.routes import api_router
from forgeflow.core.config import get_settings
from forgeflow.db import close_redis, init_redis
from forgeflow.middleware.correlation import get_correlation_id, setup_correlation_middleware
from forgeflow.services.container import ServiceContainer

logger = structlog.get_logger(__name__)


def _lifespan(container: ServiceContainer | None):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.shutting_down = False

        def handle_sigterm(signum, frame):
            app.state.shutting_down = True
            logger.info("sigterm_received", action="health_check_503_draining_connections")

        settings = get_settings()
        logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

        owns_redis = container is None
        if owns_redis:
            signal.signal(signal.SIGTERM, handle_sigterm)
            redis = await init_redis(settings.redis_url)
            logger.info("redis_initialized")
            app.state.container = ServiceContainer.build(redis, settings)
        else:
            app.state.container = container

        yield

        logger.info("shutdown_begin")
        if owns_redis:
            await close_redis()
        logger.info("shutdown_complete")

    return lifespan


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """HTTP errors (404, 405, explicit raises) logged with a debug_id, returned sanitized."""
    debug_id = str(uuid.uuid4())
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        detail=exc.detail,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "debug_id": debug_id},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed or incomplete request bodies are a 400; they never start a workflow."""
    debug_id = str(uuid.uuid4())
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    logger.info(
        "request_validation_failed",
        debug_id=debug_id,
        path=request.url.path,
        method=request.method,
        errors=errors,
    )
    return JSONResponse(
        status_code=400,
        content={"detail": errors, "debug_id": debug_id},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unhandled errors: full traceback in the log, generic 500 to the client."""
    debug_id = str(uuid.uuid4())
    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "debug_id": debug_id},
    )


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        container: Prebuilt services (tests). Built from settings at startup when omitted.
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Provision, customize and deploy web apps from templates",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=_lifespan(container),
    )
    if container is not None:
        app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware (runs first on incoming requests)
    setup_correlation_middleware(app)

    app.exception_handler(StarletteHTTPException)(http_exception_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "forgeflow.main:app",
        host="0.0.0.0",
        port=8000,
        reload=_early_settings.debug,
    )
