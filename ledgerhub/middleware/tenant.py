"""
Tenant Middleware

Resolves the tenant a request is addressed to and places it on
request.state.tenant.

Resolution order:
1. X-Tenant-Slug header (subdomain)
2. Subdomain of the Host header (acme.ledgerhub.app -> "acme")
3. X-Tenant-ID header (tenant id)

Requests without any identifier continue with request.state.tenant = None;
platform routes (login, admin, health) do not need one. An identifier that
matches no tenant is rejected with 404, an inactive or suspended tenant
with 403.
"""
import logging
from typing import Optional, Tuple

from sqlalchemy.orm import Session
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from ledgerhub.database import SessionLocal
from ledgerhub.models.tenant import TenantMaster

logger = logging.getLogger(__name__)

NON_TENANT_SUBDOMAINS = ("www", "api", "app", "admin")


class TenantMiddleware(BaseHTTPMiddleware):

    def __init__(self, app):
        super().__init__(app)
        self.excluded_paths = [
            "/docs",
            "/redoc",
            "/openapi.json",
            "/health",
        ]

    async def dispatch(self, request: Request, call_next):
        request.state.tenant = None
        request.state.tenant_id = None

        if any(request.url.path.startswith(path) for path in self.excluded_paths):
            return await call_next(request)

        identifier, kind = self._extract_tenant_identifier(request)
        if not identifier:
            return await call_next(request)

        db = SessionLocal()
        try:
            tenant = self._load_tenant(db, identifier, kind)
        finally:
            db.close()

        if not tenant:
            logger.warning(f"Tenant not found: {identifier}")
            return JSONResponse(
                status_code=404,
                content={"detail": f"Tenant not found: {identifier}"}
            )

        if not tenant.is_active:
            logger.warning(f"Inactive tenant attempted access: {identifier}", extra={"tenant_id": tenant.id})
            return JSONResponse(
                status_code=403,
                content={"detail": "Tenant account is inactive"}
            )

        if tenant.is_suspended:
            logger.warning(f"Suspended tenant attempted access: {identifier}", extra={"tenant_id": tenant.id})
            return JSONResponse(
                status_code=403,
                content={"detail": "Tenant account is suspended"}
            )

        request.state.tenant = tenant
        request.state.tenant_id = tenant.id
        logger.debug(f"Request for tenant: {tenant.subdomain} ({tenant.id})")

        return await call_next(request)

    def _extract_tenant_identifier(self, request: Request) -> Tuple[Optional[str], Optional[str]]:
        """Returns (identifier, "subdomain" | "id")."""
        slug = request.headers.get("X-Tenant-Slug")
        if slug:
            return slug.strip().lower(), "subdomain"

        host = request.headers.get("Host", "").split(":", 1)[0]
        parts = host.split(".")
        if len(parts) >= 3:  # subdomain.domain.tld
            subdomain = parts[0].lower()
            if subdomain not in NON_TENANT_SUBDOMAINS:
                return subdomain, "subdomain"

        tenant_id = request.headers.get("X-Tenant-ID")
        if tenant_id:
            return tenant_id.strip(), "id"

        return None, None

    def _load_tenant(self, db: Session, identifier: str, kind: str) -> Optional[TenantMaster]:
        if kind == "id":
            return db.query(TenantMaster).filter(TenantMaster.id == identifier).first()
        return db.query(TenantMaster).filter(TenantMaster.subdomain == identifier).first()
