"""
User Schemas
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from ledgerhub.models.user import UserRole


class UserResponse(BaseModel):
    """User response schema (excludes sensitive data)."""
    id: str
    email: str
    full_name: Optional[str] = None
    tenant_id: Optional[str] = None
    role: UserRole
    is_active: bool
    created_at: datetime
    last_login_at: Optional[datetime] = None

    class Config:
        from_attributes = True
