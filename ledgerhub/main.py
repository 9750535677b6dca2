"""
Main FastAPI Application

Entry point for the LedgerHub tenant platform API.
Configures middleware, routes, error handlers, and startup/shutdown events.
"""
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ledgerhub import __version__
from ledgerhub.api.endpoints import admin_tenants, auth, maintenance, tenant
from ledgerhub.config import get_settings
from ledgerhub.core.exceptions import (
    AuthenticationError,
    InvalidDatabaseName,
    ProvisioningError,
    RateLimitExceeded,
    TenantIsolationError,
)
from ledgerhub.database import engine
from ledgerhub.middleware.rate_limit import RateLimitMiddleware
from ledgerhub.middleware.tenant import TenantMiddleware
from ledgerhub.services.cron import cron_service
from ledgerhub.services.master_init import init_master_database
from ledgerhub.services.tenant_connections import tenant_connections
from ledgerhub.utils.logging import get_logger, setup_logging

settings = get_settings()

setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=(settings.ENVIRONMENT == "production")
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting application in {settings.ENVIRONMENT} mode")

    # Production databases are initialised with `ledgerhub init-master`
    if settings.ENVIRONMENT == "development":
        logger.warning("Initializing master database (dev mode)")
        init_master_database()

    if settings.CRON_ENABLED:
        cron_service.initialize()

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application")
    if settings.CRON_ENABLED:
        cron_service.shutdown()
    tenant_connections.close_all()
    engine.dispose()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="LedgerHub Tenant Platform",
    description="Multi-tenant accounting backend: tenant databases, trial retention and sessions",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)


# ============================================================================
# MIDDLEWARE CONFIGURATION
# ============================================================================

@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add X-Process-Time header to track request duration."""
    start_time = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = str(time.time() - start_time)
    return response


# Middleware added last runs first: tenant resolution must wrap rate
# limiting, which reads request.state.tenant.
if settings.RATE_LIMIT_ENABLED:
    app.add_middleware(RateLimitMiddleware)

app.add_middleware(TenantMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(TenantIsolationError)
async def tenant_isolation_error_handler(request: Request, exc: TenantIsolationError):
    """
    Handle tenant isolation violations.

    CRITICAL: These should be logged and alerted on immediately.
    """
    logger.error(
        f"TENANT ISOLATION VIOLATION: {exc.detail}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "tenant_id": getattr(request.state, "tenant_id", None)
        }
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "type": "tenant_isolation_error"}
    )


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "type": "authentication_error"},
        headers=exc.headers or {}
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_error_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(
        f"Rate limit exceeded: {request.url.path}",
        extra={"tenant_id": getattr(request.state, "tenant_id", None)}
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "type": "rate_limit_exceeded"},
        headers=exc.headers or {}
    )


@app.exception_handler(InvalidDatabaseName)
async def invalid_database_name_handler(request: Request, exc: InvalidDatabaseName):
    return JSONResponse(
        status_code=400,
        content={"detail": str(exc), "type": "invalid_database_name"}
    )


@app.exception_handler(ProvisioningError)
async def provisioning_error_handler(request: Request, exc: ProvisioningError):
    """
    Tenant database could not be set up. The tenant record is kept and
    provisioning can be retried from the admin API.
    """
    logger.error(f"Provisioning error: {exc}", extra={"db_name": exc.db_name, "path": request.url.path})

    content = {"detail": "Tenant database provisioning failed", "type": "provisioning_error"}
    if settings.DEBUG:
        content["error"] = str(exc)
        content["grant_statements"] = getattr(exc, "grant_statements", [])
    return JSONResponse(status_code=500, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Catch-all exception handler.

    SECURITY: Don't expose internal errors in production.
    """
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {str(exc)}",
        exc_info=True,
        extra={
            "path": request.url.path,
            "method": request.method,
            "tenant_id": getattr(request.state, "tenant_id", None)
        }
    )

    if settings.DEBUG:
        return JSONResponse(
            status_code=500,
            content={"detail": str(exc), "type": type(exc).__name__}
        )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": "internal_error"}
    )


# ============================================================================
# ROUTES
# ============================================================================

@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint for load balancers."""
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "version": __version__
    }


@app.get("/", tags=["root"])
async def root():
    return {
        "message": "LedgerHub Tenant Platform API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


app.include_router(auth.router, prefix="/api/v1")
app.include_router(tenant.router, prefix="/api/v1")
app.include_router(admin_tenants.router, prefix="/api/v1")
app.include_router(maintenance.router, prefix="/api/v1")


def run():
    """Console entry point: `ledgerhub-api`."""
    import uvicorn

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    uvicorn.run(
        "ledgerhub.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )


if __name__ == "__main__":
    run()
