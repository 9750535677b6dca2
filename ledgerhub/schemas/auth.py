"""
Authentication Schemas

Request/response models for authentication endpoints.
"""
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from ledgerhub.schemas.user import UserResponse


class Token(BaseModel):
    """Access/refresh token pair."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    jti: str


class AuthResponse(Token):
    user: UserResponse


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class RegisterRequest(BaseModel):
    """
    Self-service signup: creates a company (tenant), its database and the
    tenant administrator in one step.
    """
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    full_name: str = Field(..., min_length=1, max_length=255)
    company_name: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=15)
    gstin: Optional[str] = Field(None, min_length=15, max_length=15)
    referral_code: Optional[str] = Field(None, max_length=20)

    class Config:
        json_schema_extra = {
            "example": {
                "email": "owner@acme.in",
                "password": "securepassword123",
                "full_name": "Asha Rao",
                "company_name": "Acme Traders",
            }
        }


class RefreshRequest(BaseModel):
    refresh_token: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=8, max_length=100)


class ResetTokenStatus(BaseModel):
    valid: bool
    email: Optional[str] = None


class MessageResponse(BaseModel):
    message: str
    # Only populated in development; no e-mail is sent
    reset_token: Optional[str] = None
