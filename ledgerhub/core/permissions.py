"""
Permission System

Three roles in a strict hierarchy:
PLATFORM_ADMIN > TENANT_ADMIN > USER
"""
from typing import Optional

from fastapi import HTTPException, status

from ledgerhub.models.user import User, UserRole


class PermissionDenied(HTTPException):

    def __init__(self, detail: str = "Permission denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail
        )


def require_role(user: User, required_role: UserRole) -> None:
    """Raises PermissionDenied if user doesn't have sufficient permissions."""
    if not user.has_permission(required_role):
        raise PermissionDenied(
            detail=f"This action requires {required_role.value} role or higher"
        )


def can_access_tenant(user: User, tenant_id: Optional[str]) -> bool:
    """Platform admins can see every tenant; everyone else only their own."""
    if user.role == UserRole.PLATFORM_ADMIN:
        return True
    return tenant_id is not None and user.tenant_id == tenant_id
