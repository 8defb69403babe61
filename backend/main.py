"""
FastAPI application entry point for the venue management API.

Access control is enforced by AccessControlMiddleware: every /api and
/t/<slug> route requires a valid bearer token that resolves to exactly one
tenant (or, on /api/super-admin routes, to a super admin).
"""

import os
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes import assume_tenant
from src.api.routes import health
from src.api.routes import tenant_features
from src.database.session import get_session_factory
from src.middleware.access_control import AccessControlMiddleware
from src.platform.access_engine import AccessEngine, build_default_engine
from src.platform.errors import AccessControlError, AccessEngineUnavailableError
from src.services.tenant_assumption import AssumptionRevocationList
from src.config.access_settings import get_access_settings

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _build_engine_from_env() -> Optional[AccessEngine]:
    missing_vars = [var for var in ("JWT_SECRET", "DATABASE_URL") if not os.getenv(var)]
    if missing_vars:
        logger.error(
            f"Access engine not configured (missing: {missing_vars}). "
            "Protected endpoints will return 500 ACCESS_ENGINE_ERROR."
        )
        return None

    settings = get_access_settings()
    revocations = AssumptionRevocationList(ttl_seconds=settings.assumption_ttl_minutes * 60)
    return build_default_engine(get_session_factory(), revocations=revocations)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting venue management API")

    built_here = False
    if getattr(app.state, "access_engine", None) is None:
        app.state.access_engine = _build_engine_from_env()
        built_here = app.state.access_engine is not None

    logger.info(
        "Access control middleware ready",
        extra={"engine_configured": app.state.access_engine is not None},
    )

    yield

    # Shutdown
    logger.info("Shutting down venue management API")
    if built_here:
        app.state.access_engine.shutdown()


async def access_control_error_handler(request: Request, exc: AccessControlError):
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


async def access_engine_error_handler(request: Request, exc: AccessEngineUnavailableError):
    logger.error(
        "Access engine failure in route",
        extra={"path": request.url.path, "detail": exc.detail},
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions with proper logging."""
    context = getattr(request.state, "tenant_context", None)

    logger.error(
        "Unhandled exception",
        extra={
            "tenant_id": context.tenant_id if context is not None else "unknown",
            "error": str(exc),
            "error_type": type(exc).__name__,
            "path": request.url.path
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": "An unexpected error occurred"
        }
    )


def create_app(engine: Optional[AccessEngine] = None) -> FastAPI:
    """
    Build the application.

    Tests pass a pre-built engine; otherwise the lifespan builds one from
    the environment.
    """
    app = FastAPI(
        title="Venue Management API",
        description="Multi-tenant venue management with plan-based access control",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.access_engine = engine

    # CORS middleware (configure for your frontend domain)
    cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # CRITICAL: Add access control middleware
    # Resolves identity, tenant and tenant status before any route runs
    access_middleware = AccessControlMiddleware()
    app.middleware("http")(access_middleware)

    app.add_exception_handler(AccessControlError, access_control_error_handler)
    app.add_exception_handler(AccessEngineUnavailableError, access_engine_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # Include health route (bypasses authentication)
    app.include_router(health.router)

    # Super admin tenant assumption (requires super admin role)
    app.include_router(assume_tenant.router)

    # Plan features and limits for the UI (requires a resolved tenant)
    app.include_router(tenant_features.router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENV") == "development"
    )
