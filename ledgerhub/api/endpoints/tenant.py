"""
Tenant Endpoints

The caller's own company.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ledgerhub.api.deps import get_current_tenant, get_current_user
from ledgerhub.core.exceptions import TenantIsolationError
from ledgerhub.core.permissions import can_access_tenant, require_role
from ledgerhub.database import get_db
from ledgerhub.models.tenant import TenantMaster
from ledgerhub.models.user import User, UserRole
from ledgerhub.schemas.tenant import TenantResponse
from ledgerhub.services.provisioning import TenantProvisioningService

router = APIRouter(prefix="/tenant", tags=["tenant"])


@router.get("", response_model=TenantResponse)
async def get_my_tenant(
    tenant: TenantMaster = Depends(get_current_tenant),
    current_user: User = Depends(get_current_user),
):
    if not can_access_tenant(current_user, tenant.id):
        raise TenantIsolationError("Access to this tenant is not allowed")
    return tenant


@router.get("/stats")
def get_my_tenant_stats(
    tenant: TenantMaster = Depends(get_current_tenant),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Storage usage of the caller's database. Tenant admins only."""
    if not can_access_tenant(current_user, tenant.id):
        raise TenantIsolationError("Access to this tenant is not allowed")
    require_role(current_user, UserRole.TENANT_ADMIN)
    return TenantProvisioningService(db).tenant_stats(tenant.id)
