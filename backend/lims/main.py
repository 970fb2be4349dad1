"""
FastAPI application entry point.
Configures middleware, routers, error handlers and lifecycle events.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from lims.core.config import get_settings
from lims.core.exceptions import (
    AuditWriteFailure,
    BackstopFailure,
    ImmutableEntryViolation,
    PermissionDenied,
)
from lims.core.logging import configure_logging, get_logger
from lims.core.middleware import RequestContextMiddleware
from lims.db.session import close_db, get_db_session, init_db
from lims.modules.assignments.router import router as assignments_router
from lims.modules.audit.router import router as audit_router
from lims.modules.lab_settings.router import router as lab_settings_router
from lims.modules.reports.router import router as reports_router
from lims.modules.samples.router import router as samples_router

# Configure logging before anything else
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Opens the database engine on startup and disposes it on shutdown.
    """
    settings = get_settings()
    logger.info(
        "starting_application",
        environment=settings.environment,
        version=settings.version,
    )

    await init_db()
    logger.info("database_initialized")

    yield

    await close_db()
    logger.info("application_shutdown_complete")


def _register_exception_handlers(app: FastAPI) -> None:
    """Map core audit/authorization errors to HTTP responses."""

    @app.exception_handler(PermissionDenied)
    async def permission_denied_handler(request: Request, exc: PermissionDenied) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={
                "detail": exc.reason,
                "role": exc.role,
                "action": exc.action,
                "resource": exc.resource,
            },
        )

    @app.exception_handler(AuditWriteFailure)
    async def audit_write_failure_handler(
        request: Request, exc: AuditWriteFailure
    ) -> JSONResponse:
        logger.error(
            "audit_write_failure",
            table=exc.table,
            record_id=exc.record_id,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    @app.exception_handler(BackstopFailure)
    async def backstop_failure_handler(request: Request, exc: BackstopFailure) -> JSONResponse:
        logger.error("backstop_failure", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    @app.exception_handler(ImmutableEntryViolation)
    async def immutable_entry_handler(
        request: Request, exc: ImmutableEntryViolation
    ) -> JSONResponse:
        logger.warning("audit_mutation_rejected", entry_id=str(exc.entry_id), path=request.url.path)
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"detail": str(exc)},
        )


def create_application() -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application with all middleware,
    routers, and settings applied.
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.project_name,
        version=settings.version,
        openapi_url=f"{settings.api_v1_prefix}/openapi.json",
        docs_url=f"{settings.api_v1_prefix}/docs",
        redoc_url=f"{settings.api_v1_prefix}/redoc",
        lifespan=lifespan,
    )

    # ==========================================================================
    # Middleware Configuration
    # ==========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "Origin", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )

    app.add_middleware(RequestContextMiddleware)

    _register_exception_handlers(app)

    # ==========================================================================
    # Router Registration
    # ==========================================================================

    # Health check endpoint (no auth required)
    @app.get("/health", tags=["Health"])
    async def health_check() -> dict[str, object]:
        checks: dict[str, str] = {}
        try:
            async for session in get_db_session():
                await session.execute(text("SELECT 1"))
            checks["db"] = "ok"
        except Exception:
            checks["db"] = "unavailable"

        overall = "healthy" if all(v == "ok" for v in checks.values()) else "degraded"
        return {"status": overall, "version": settings.version, "checks": checks}

    app.include_router(
        samples_router,
        prefix=f"{settings.api_v1_prefix}/samples",
        tags=["Samples"],
    )
    app.include_router(
        assignments_router,
        prefix=settings.api_v1_prefix,
        tags=["Test Assignments"],
    )
    app.include_router(
        reports_router,
        prefix=f"{settings.api_v1_prefix}/reports",
        tags=["Reports"],
    )
    app.include_router(
        lab_settings_router,
        prefix=f"{settings.api_v1_prefix}/lab-settings",
        tags=["Lab Settings"],
    )
    app.include_router(
        audit_router,
        prefix=settings.api_v1_prefix,
        tags=["Audit"],
    )

    return app


# Application instance
app = create_application()
