"""
Authentication Endpoints

Signup (which creates a company and its database), login, token refresh,
logout and password reset.
"""
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ledgerhub.api.deps import get_token_payload
from ledgerhub.config import get_settings
from ledgerhub.core.exceptions import AuthenticationError, DuplicateError, UserNotFoundError
from ledgerhub.core.security import REFRESH_TOKEN_TYPE, decode_token, get_password_hash, verify_password
from ledgerhub.core.sessions import SessionStore, get_session_store
from ledgerhub.database import get_db
from ledgerhub.models.user import User, UserRole
from ledgerhub.schemas.auth import (
    AuthResponse, ForgotPasswordRequest, LoginRequest, MessageResponse, RefreshRequest,
    RegisterRequest, ResetPasswordRequest, ResetTokenStatus, Token,
)
from ledgerhub.services.naming import slugify_subdomain, unique_subdomain
from ledgerhub.services.provisioning import TenantProvisioningService
from ledgerhub.utils.logging import get_logger, log_security_event

logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(prefix="/auth", tags=["authentication"])


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(
    registration: RegisterRequest,
    db: Session = Depends(get_db),
    sessions: SessionStore = Depends(get_session_store),
):
    """
    Create a company, provision its database and sign in its administrator.

    Plain `def`: provisioning blocks on DDL, so it runs in the threadpool.
    """
    email = registration.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise DuplicateError("An account with this email already exists")

    service = TenantProvisioningService(db)
    company_name = registration.company_name or registration.full_name
    subdomain = unique_subdomain(
        slugify_subdomain(registration.company_name, email),
        service.subdomain_exists,
    )

    created = service.create_tenant({
        "company_name": company_name,
        "subdomain": subdomain,
        "email": email,
        "phone": registration.phone,
        "gstin": registration.gstin,
        "referral_code": registration.referral_code,
    })
    tenant = created["tenant"]

    user = User(
        tenant_id=tenant.id,
        email=email,
        hashed_password=get_password_hash(registration.password),
        full_name=registration.full_name,
        phone=registration.phone,
        role=UserRole.TENANT_ADMIN,
        is_active=True,
        last_login_at=datetime.utcnow(),
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info(f"New company registered: {subdomain}", extra={"tenant_id": tenant.id, "user_id": user.id})

    return {**sessions.issue_tokens(user), "user": user}


@router.post("/login", response_model=AuthResponse)
async def login(
    credentials: LoginRequest,
    db: Session = Depends(get_db),
    sessions: SessionStore = Depends(get_session_store),
):
    """
    Authenticate by e-mail and password.

    SECURITY: Unknown e-mail and wrong password return the same error.
    """
    email = credentials.email.lower()
    user = db.query(User).filter(User.email == email).first()

    if not user:
        log_security_event("failed_login", {"reason": "user_not_found", "email": email}, logger)
        raise AuthenticationError("Invalid credentials")

    if not verify_password(credentials.password, user.hashed_password):
        log_security_event("failed_login", {"reason": "invalid_password", "user_id": user.id}, logger)
        raise AuthenticationError("Invalid credentials")

    if not user.is_active:
        log_security_event("failed_login", {"reason": "user_inactive", "user_id": user.id}, logger)
        raise AuthenticationError("User account is inactive")

    if user.tenant is not None and not user.tenant.is_accessible:
        log_security_event(
            "failed_login",
            {"reason": "tenant_inactive", "user_id": user.id, "tenant_id": user.tenant_id},
            logger
        )
        raise AuthenticationError("Tenant account is inactive")

    user.last_login_at = datetime.utcnow()
    db.commit()

    logger.info(f"Successful login: user={user.id}, tenant={user.tenant_id}")

    return {**sessions.issue_tokens(user), "user": user}


@router.post("/refresh", response_model=Token)
async def refresh_token(
    body: RefreshRequest,
    db: Session = Depends(get_db),
    sessions: SessionStore = Depends(get_session_store),
):
    """Exchange a refresh token for a new pair. The old pair stops working."""
    payload = decode_token(body.refresh_token, REFRESH_TOKEN_TYPE)
    if not payload:
        raise AuthenticationError("Invalid or expired refresh token")

    user = db.query(User).filter(User.id == payload.get("sub")).first()
    if not user or not user.is_active:
        raise AuthenticationError("User not found or inactive")

    tokens = sessions.refresh(body.refresh_token)
    if tokens is None:
        log_security_event("revoked_session", {"user_id": user.id, "jti": payload.get("jti")}, logger)
        raise AuthenticationError("Session has been revoked")
    return tokens


@router.post("/logout", response_model=MessageResponse)
async def logout(
    payload: dict = Depends(get_token_payload),
    sessions: SessionStore = Depends(get_session_store),
):
    sessions.revoke_session(payload["sub"], payload["jti"])
    logger.info(f"Logout: user={payload['sub']}")
    return {"message": "Logged out successfully"}


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    body: ForgotPasswordRequest,
    db: Session = Depends(get_db),
    sessions: SessionStore = Depends(get_session_store),
):
    """
    Issue a password reset token.

    The response is the same whether or not the e-mail exists. No e-mail is
    sent; in development the token is returned in the response.
    """
    message = "If an account exists for this email, a reset link has been sent"
    email = body.email.lower()

    user = db.query(User).filter(User.email == email).first()
    if not user:
        return {"message": message}

    token = sessions.create_reset_token(user)
    log_security_event("password_reset", {"stage": "requested", "user_id": user.id}, logger)

    if settings.ENVIRONMENT == "development":
        logger.info(f"Password reset link: {settings.FRONTEND_URL}/client/reset-password?token={token}")
        return {"message": message, "reset_token": token}
    return {"message": message}


@router.get("/reset-password/{token}", response_model=ResetTokenStatus)
async def verify_reset_token(
    token: str,
    sessions: SessionStore = Depends(get_session_store),
):
    data = sessions.get_reset_token(token)
    if not data:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired reset token"
        )
    return {"valid": True, "email": data.get("email")}


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    body: ResetPasswordRequest,
    db: Session = Depends(get_db),
    sessions: SessionStore = Depends(get_session_store),
):
    """Set a new password and sign out every session of the user."""
    data = sessions.get_reset_token(body.token)
    if not data:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired reset token"
        )

    user = db.query(User).filter(User.id == data.get("user_id")).first()
    if not user:
        sessions.delete_reset_token(body.token)
        raise UserNotFoundError()

    user.hashed_password = get_password_hash(body.password)
    db.commit()

    sessions.delete_reset_token(body.token)
    revoked = sessions.revoke_all_sessions(user.id)
    log_security_event("password_reset", {"stage": "completed", "user_id": user.id, "revoked": revoked}, logger)

    return {"message": "Password has been reset successfully"}
