"""
Security Module

Password hashing and JWT token generation/validation.

Access and refresh tokens are issued in pairs that share a `jti`. The jti
names the server-side session in Redis (see core.sessions); a token whose
session is gone is rejected even if its signature and expiry are valid.
"""
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from ledgerhub.config import get_settings

settings = get_settings()

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt.

    NOTE: This is intentionally slow (100ms+). Don't call this in hot paths.
    """
    return pwd_context.hash(password)


def new_token_id() -> str:
    return uuid.uuid4().hex


def _encode(data: Dict[str, Any], expires_delta: timedelta) -> str:
    now = datetime.utcnow()
    to_encode = data.copy()
    to_encode.update({"exp": now + expires_delta, "iat": now})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Payload: sub (user id), tenant_id, role, jti, type=access, exp, iat.
    """
    return _encode(
        {**data, "type": ACCESS_TOKEN_TYPE},
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def create_refresh_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    return _encode(
        {**data, "type": REFRESH_TOKEN_TYPE},
        expires_delta or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
    )


def decode_token(token: str, expected_type: str = ACCESS_TOKEN_TYPE) -> Optional[Dict[str, Any]]:
    """
    Decode and verify a JWT token.

    Returns the payload if valid and of the expected type, None otherwise.
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    if payload.get("type") != expected_type:
        return None
    return payload


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    return decode_token(token, ACCESS_TOKEN_TYPE)


def verify_token_tenant(token_payload: Dict[str, Any], expected_tenant_id: str) -> bool:
    """The token's tenant_id must match the tenant the request resolved to."""
    return token_payload.get("tenant_id") == expected_tenant_id
