"""
Session Store

Server-side state for JWT sessions and password-reset tokens in Redis.

Keys:
- session:{user_id}:{jti}   one per login, TTL = refresh token lifetime
- password_reset:{token}    JSON {user_id, email, expires_at}, TTL 1h

SECURITY: Any Redis error while issuing or checking a session raises
SessionStoreUnavailable, so requests are rejected rather than let through.
"""
import json
import logging
import secrets
import time
from datetime import timedelta
from functools import lru_cache
from typing import Any, Dict, Optional

import redis

from ledgerhub.config import get_settings
from ledgerhub.core.exceptions import SessionStoreUnavailable
from ledgerhub.core.security import (
    REFRESH_TOKEN_TYPE, create_access_token, create_refresh_token, decode_token, new_token_id,
)
from ledgerhub.models.user import User

logger = logging.getLogger(__name__)
settings = get_settings()


def session_key(user_id: str, jti: str) -> str:
    return f"session:{user_id}:{jti}"


def reset_key(token: str) -> str:
    return f"password_reset:{token}"


class SessionStore:

    def __init__(self, client):
        self.client = client
        self.session_ttl = int(timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS).total_seconds())
        self.reset_ttl = settings.PASSWORD_RESET_EXPIRE_SECONDS

    # Sessions

    def issue_tokens(self, user: User) -> Dict[str, Any]:
        """Create a session and the access/refresh pair that points at it."""
        jti = new_token_id()
        claims = {
            "sub": user.id,
            "tenant_id": user.tenant_id,
            "role": user.role.value if hasattr(user.role, "value") else user.role,
        }
        self._create_session(user.id, jti, {**claims, "email": user.email})

        return {
            "access_token": create_access_token({**claims, "jti": jti}),
            "refresh_token": create_refresh_token({"sub": user.id, "jti": jti}),
            "token_type": "bearer",
            "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            "jti": jti,
        }

    def _create_session(self, user_id: str, jti: str, data: Dict[str, Any]) -> None:
        payload = {**data, "created_at": int(time.time())}
        try:
            self.client.setex(session_key(user_id, jti), self.session_ttl, json.dumps(payload))
        except redis.RedisError as e:
            logger.error(f"Redis error creating session: {e}")
            raise SessionStoreUnavailable()

    def get_session(self, user_id: str, jti: str) -> Optional[Dict[str, Any]]:
        try:
            raw = self.client.get(session_key(user_id, jti))
        except redis.RedisError as e:
            logger.error(f"Redis error reading session: {e}")
            raise SessionStoreUnavailable()
        return json.loads(raw) if raw else None

    def is_active(self, user_id: str, jti: str) -> bool:
        return self.get_session(user_id, jti) is not None

    def revoke_session(self, user_id: str, jti: str) -> bool:
        """Delete one session. True when this call removed it."""
        try:
            return bool(self.client.delete(session_key(user_id, jti)))
        except redis.RedisError as e:
            logger.error(f"Redis error revoking session: {e}")
            raise SessionStoreUnavailable()

    def revoke_all_sessions(self, user_id: str) -> int:
        """Delete every session of a user. Returns how many were removed."""
        try:
            keys = list(self.client.scan_iter(match=session_key(user_id, "*")))
            if keys:
                self.client.delete(*keys)
        except redis.RedisError as e:
            logger.error(f"Redis error revoking sessions: {e}")
            raise SessionStoreUnavailable()
        return len(keys)

    def refresh(self, refresh_token: str) -> Optional[Dict[str, Any]]:
        """
        Rotate a session: the old one is revoked and a new pair issued.

        Returns None for an invalid token or a session that no longer exists.
        """
        payload = decode_token(refresh_token, REFRESH_TOKEN_TYPE)
        if not payload:
            return None

        user_id = payload.get("sub")
        jti = payload.get("jti")
        if not user_id or not jti:
            return None

        session = self.get_session(user_id, jti)
        if session is None:
            return None

        # Only the caller whose DEL removed the session may rotate it
        if not self.revoke_session(user_id, jti):
            return None

        new_jti = new_token_id()
        claims = {
            "sub": user_id,
            "tenant_id": session.get("tenant_id"),
            "role": session.get("role"),
        }
        self._create_session(user_id, new_jti, {**claims, "email": session.get("email")})

        return {
            "access_token": create_access_token({**claims, "jti": new_jti}),
            "refresh_token": create_refresh_token({"sub": user_id, "jti": new_jti}),
            "token_type": "bearer",
            "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            "jti": new_jti,
        }

    # Password reset

    def create_reset_token(self, user: User) -> str:
        token = secrets.token_hex(32)
        data = {
            "user_id": user.id,
            "email": user.email,
            "expires_at": int(time.time()) + self.reset_ttl,
        }
        try:
            self.client.setex(reset_key(token), self.reset_ttl, json.dumps(data))
        except redis.RedisError as e:
            logger.error(f"Redis error storing reset token: {e}")
            raise SessionStoreUnavailable()
        return token

    def get_reset_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Token data, or None when missing or past its expiry."""
        try:
            raw = self.client.get(reset_key(token))
        except redis.RedisError as e:
            logger.error(f"Redis error reading reset token: {e}")
            raise SessionStoreUnavailable()
        if not raw:
            return None

        data = json.loads(raw)
        if time.time() > data.get("expires_at", 0):
            self.delete_reset_token(token)
            return None
        return data

    def delete_reset_token(self, token: str) -> None:
        try:
            self.client.delete(reset_key(token))
        except redis.RedisError as e:
            logger.error(f"Redis error deleting reset token: {e}")
            raise SessionStoreUnavailable()


@lru_cache()
def get_redis_client():
    return redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=5
    )


@lru_cache()
def get_session_store() -> SessionStore:
    """FastAPI dependency; override in tests."""
    return SessionStore(get_redis_client())
