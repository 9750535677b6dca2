"""
API Dependencies

Reusable FastAPI dependencies for authentication and authorization.
"""
import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from ledgerhub.core.exceptions import (
    AuthenticationError, TenantIsolationError, TenantNotFoundError, TenantSuspendedError,
)
from ledgerhub.core.permissions import PermissionDenied
from ledgerhub.core.security import decode_access_token, verify_token_tenant
from ledgerhub.core.sessions import SessionStore, get_session_store
from ledgerhub.database import get_db
from ledgerhub.models.tenant import TenantMaster
from ledgerhub.models.user import User, UserRole
from ledgerhub.utils.logging import log_security_event

logger = logging.getLogger(__name__)

security = HTTPBearer()


def get_request_tenant(request: Request) -> Optional[TenantMaster]:
    """Tenant resolved by TenantMiddleware, if the request named one."""
    return getattr(request.state, "tenant", None)


async def get_token_payload(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    sessions: SessionStore = Depends(get_session_store),
) -> dict:
    """
    Decoded access token whose session is still live.

    SECURITY: Signature and expiry alone are not enough; logout and
    rotation delete the session, which invalidates the token here.
    """
    payload = decode_access_token(credentials.credentials)
    if not payload:
        raise AuthenticationError("Invalid or expired token")

    user_id = payload.get("sub")
    jti = payload.get("jti")
    if not user_id or not jti:
        raise AuthenticationError("Invalid token payload")

    if not sessions.is_active(user_id, jti):
        log_security_event("revoked_session", {"user_id": user_id, "jti": jti}, logger)
        raise AuthenticationError("Session has been revoked")

    return payload


async def get_current_user(
    request: Request,
    payload: dict = Depends(get_token_payload),
    db: Session = Depends(get_db),
) -> User:
    """
    Authenticated user.

    When the request resolved a tenant, the token's tenant must match it
    (platform admins excepted).
    """
    user_id = payload["sub"]
    token_tenant_id = payload.get("tenant_id")

    tenant = get_request_tenant(request)
    is_platform_admin = payload.get("role") == UserRole.PLATFORM_ADMIN.value
    if tenant is not None and not is_platform_admin and not verify_token_tenant(payload, tenant.id):
        log_security_event(
            "tenant_isolation_violation",
            {"user_id": user_id, "token_tenant": token_tenant_id, "request_tenant": tenant.id},
            logger
        )
        raise TenantIsolationError("Token tenant mismatch")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        logger.warning(f"User not found: {user_id}")
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is inactive")

    if user.tenant_id != token_tenant_id:
        # User moved or token forged with a stale tenant
        raise AuthenticationError("Invalid token payload")

    return user


async def get_current_tenant(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> TenantMaster:
    """
    Tenant for tenant-scoped endpoints: the resolved request tenant, else
    the caller's own tenant.
    """
    tenant = get_request_tenant(request)
    if tenant is None and current_user.tenant_id:
        tenant = db.query(TenantMaster).filter(TenantMaster.id == current_user.tenant_id).first()

    if tenant is None:
        raise TenantNotFoundError()

    if not tenant.is_accessible:
        raise TenantSuspendedError(
            "Tenant account is suspended" if tenant.is_suspended else "Tenant account is inactive"
        )
    return tenant


async def require_platform_admin(
    current_user: User = Depends(get_current_user)
) -> User:
    """Use this dependency for platform administration endpoints."""
    if current_user.role != UserRole.PLATFORM_ADMIN:
        raise PermissionDenied("Platform administrator privileges required")
    return current_user
