"""
Auto-REST Query Engine - FastAPI Main Application
"""
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
from typing import Callable, Optional
import logging
import structlog
import time

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from autorest.config import Settings, settings as default_settings
from autorest.core.errors import AutoRestError
from autorest.services.auto_rest.runtime import EngineRuntime


def configure_logging(settings: Settings) -> None:
    """Configure structured logging."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer() if settings.LOG_JSON else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()


def create_app(
    settings: Optional[Settings] = None,
    catalog_engine: Optional[Engine] = None,
    session_factory: Optional[sessionmaker] = None,
    runtime_factory: Optional[Callable[[], EngineRuntime]] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings (default: environment)
        catalog_engine: Catalog database engine; its tables are created on startup
        session_factory: Catalog session factory
        runtime_factory: Builds the EngineRuntime; overrides the two above
    """
    settings = settings or default_settings
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        logger.info("application_startup", version=settings.APP_VERSION)

        if runtime_factory is not None:
            runtime = runtime_factory()
        else:
            from autorest.database import AppSessionLocal, app_engine, init_catalog

            engine = catalog_engine or app_engine
            init_catalog(engine)
            logger.info("catalog_initialized")
            runtime = EngineRuntime(session_factory or AppSessionLocal, settings=settings)
        app.state.runtime = runtime

        yield

        await runtime.shutdown()
        logger.info("application_shutdown")

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Dynamic multi-database REST query engine",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request timing middleware
    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        """Add request timing to response headers."""
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        return response

    # Exception handlers
    @app.exception_handler(AutoRestError)
    async def auto_rest_exception_handler(request: Request, exc: AutoRestError):
        """Translate engine errors; server errors only expose their public message."""
        if exc.is_client_error:
            logger.info("request_rejected", code=exc.code, path=request.url.path, **exc.context)
        else:
            logger.error("request_failed", code=exc.code, error=exc.message, path=request.url.path, **exc.context)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors."""
        logger.warning("validation_error", errors=exc.errors(), path=request.url.path)
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": {"code": "VALIDATION_ERROR", "message": "Validation error"},
                "detail": jsonable_errors(exc),
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions."""
        logger.error("unhandled_exception", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": {"code": "SERVER_ERROR", "message": "An error occurred"}},
        )

    # Health check endpoint
    @app.get("/health", tags=["System"])
    async def health_check(request: Request):
        """Health check endpoint."""
        runtime = getattr(request.app.state, "runtime", None)
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "app": settings.APP_NAME,
            "pools": len(runtime.connections.active_pools()) if runtime else 0,
            "policyRenderFailures": runtime.engine.policy_render_failures if runtime else 0,
        }

    from autorest.api import auto_rest

    app.include_router(auto_rest.router, prefix="/api/v2", tags=["Auto-REST"])
    return app


def jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "autorest.main:app",
        host="0.0.0.0",
        port=8000,
        reload=default_settings.DEBUG
    )
