"""
Custom Exceptions

HTTP-facing exceptions subclass HTTPException so FastAPI converts them
directly. Service-layer errors (provisioning, database server, backups)
are plain exceptions; the application maps them in main.py.
"""
from typing import Optional

from fastapi import HTTPException, status


class TenantNotFoundError(HTTPException):
    """Raised when tenant cannot be found."""

    def __init__(self, tenant_identifier: str = ""):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Tenant not found: {tenant_identifier}" if tenant_identifier else "Tenant not found"
        )


class UserNotFoundError(HTTPException):
    """Raised when user cannot be found."""

    def __init__(self, user_id: str = ""):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User not found: {user_id}" if user_id else "User not found"
        )


class AuthenticationError(HTTPException):
    """Raised when authentication fails."""

    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class TenantIsolationError(HTTPException):
    """
    Raised when a tenant isolation violation is detected.

    Logged as a security event by the handler in main.py.
    """

    def __init__(self, detail: str = "Tenant isolation violation"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail
        )


class TenantSuspendedError(HTTPException):
    """Raised when a suspended or inactive tenant is accessed."""

    def __init__(self, detail: str = "Tenant account is suspended"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail
        )


class DuplicateError(HTTPException):
    """Raised when a unique value (subdomain, email) is already taken."""

    def __init__(self, detail: str = "Resource already exists"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail
        )


class RateLimitExceeded(HTTPException):
    """Raised when rate limit is exceeded."""

    def __init__(self, retry_after: int = 60):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Please try again later.",
            headers={"Retry-After": str(retry_after)}
        )


class SessionStoreUnavailable(HTTPException):
    """Raised when sessions cannot be checked. Authentication fails closed."""

    def __init__(self, detail: str = "Authentication service temporarily unavailable"):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail
        )


class InvalidInputError(HTTPException):
    """Raised when input validation fails."""

    def __init__(self, detail: str = "Invalid input"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail
        )


# Service-layer errors

class ProvisioningError(Exception):
    """Tenant database could not be created or initialised."""

    def __init__(self, message: str, db_name: Optional[str] = None):
        super().__init__(message)
        self.db_name = db_name


class DatabasePrivilegeError(ProvisioningError):
    """
    The admin user lacks a privilege needed for provisioning.

    `grant_statements` holds the SQL an operator has to run as root.
    """

    def __init__(self, message: str, grant_statements: Optional[list] = None):
        super().__init__(message)
        self.grant_statements = grant_statements or []


class InvalidDatabaseName(ValueError):
    """Identifier rejected before it reaches SQL."""


class BackupError(Exception):
    """A tenant database backup did not complete."""
