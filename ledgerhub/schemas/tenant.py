"""
Tenant Schemas

Request/response models for tenant management.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field


class TenantBase(BaseModel):
    company_name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    gstin: Optional[str] = Field(None, min_length=15, max_length=15)
    pan: Optional[str] = Field(None, max_length=10)
    tan: Optional[str] = Field(None, max_length=10)
    phone: Optional[str] = Field(None, max_length=15)
    address: Optional[str] = None
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    pincode: Optional[str] = Field(None, max_length=10)


class TenantCreate(TenantBase):
    subdomain: str = Field(..., min_length=1, max_length=50, pattern=r"^[A-Za-z0-9][A-Za-z0-9-]*$")
    subscription_plan: Optional[str] = Field(None, max_length=50)
    salesman_id: Optional[str] = None
    distributor_id: Optional[str] = None
    referral_code: Optional[str] = Field(None, max_length=20)
    referred_by: Optional[str] = None
    referral_type: Optional[str] = Field(None, pattern=r"^(salesman|distributor|tenant)$")


class TenantUpdate(BaseModel):
    """All fields optional. db_name, db_user and subdomain cannot be changed."""
    company_name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    gstin: Optional[str] = Field(None, min_length=15, max_length=15)
    pan: Optional[str] = Field(None, max_length=10)
    tan: Optional[str] = Field(None, max_length=10)
    phone: Optional[str] = Field(None, max_length=15)
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    subscription_plan: Optional[str] = None
    subscription_end: Optional[datetime] = None
    is_trial: Optional[bool] = None
    trial_ends_at: Optional[datetime] = None
    storage_limit_mb: Optional[int] = Field(None, ge=1)
    settings: Optional[Dict[str, Any]] = None


class TenantResponse(BaseModel):
    id: str
    company_name: str
    subdomain: str
    email: str
    gstin: Optional[str] = None
    pan: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    db_name: Optional[str] = None
    subscription_plan: Optional[str] = None
    is_trial: bool
    trial_ends_at: Optional[datetime] = None
    acquisition_category: str
    is_active: bool
    is_suspended: bool
    suspended_reason: Optional[str] = None
    db_provisioned: bool
    db_provisioned_at: Optional[datetime] = None
    storage_limit_mb: int
    storage_used_mb: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TenantListResponse(BaseModel):
    tenants: List[TenantResponse]
    total: int
    page: int
    limit: int


class SuspendRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class DeleteTenantRequest(BaseModel):
    confirm: str
