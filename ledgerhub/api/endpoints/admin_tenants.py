"""
Tenant Administration Endpoints

Platform administrators manage every tenant here. Endpoints that touch the
database server are plain `def` so they run in the threadpool.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ledgerhub.api.deps import require_platform_admin
from ledgerhub.core.exceptions import InvalidInputError
from ledgerhub.database import get_db
from ledgerhub.models.user import User
from ledgerhub.schemas.tenant import (
    DeleteTenantRequest, SuspendRequest, TenantCreate, TenantListResponse, TenantResponse, TenantUpdate,
)
from ledgerhub.services.provisioning import TENANT_STATUSES, TenantProvisioningService
from ledgerhub.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/admin/tenants", tags=["admin: tenants"])


def get_provisioning_service(db: Session = Depends(get_db)) -> TenantProvisioningService:
    return TenantProvisioningService(db)


@router.post("", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
def create_tenant(
    tenant_data: TenantCreate,
    service: TenantProvisioningService = Depends(get_provisioning_service),
    admin: User = Depends(require_platform_admin),
):
    created = service.create_tenant(tenant_data.model_dump(exclude_unset=True))
    logger.info(f"Tenant created by admin {admin.id}", extra={"tenant_id": created["tenant"].id})
    return created["tenant"]


@router.get("", response_model=TenantListResponse)
async def list_tenants(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    service: TenantProvisioningService = Depends(get_provisioning_service),
    admin: User = Depends(require_platform_admin),
):
    if status_filter is not None and status_filter not in TENANT_STATUSES:
        raise InvalidInputError(f"status must be one of: {', '.join(TENANT_STATUSES)}")

    tenants, total = service.list_tenants(page=page, limit=limit, search=search, status=status_filter)
    return {"tenants": tenants, "total": total, "page": page, "limit": limit}


@router.get("/{tenant_id}", response_model=TenantResponse)
async def get_tenant(
    tenant_id: str,
    service: TenantProvisioningService = Depends(get_provisioning_service),
    admin: User = Depends(require_platform_admin),
):
    return service.get_tenant(tenant_id)


@router.put("/{tenant_id}", response_model=TenantResponse)
async def update_tenant(
    tenant_id: str,
    tenant_update: TenantUpdate,
    service: TenantProvisioningService = Depends(get_provisioning_service),
    admin: User = Depends(require_platform_admin),
):
    return service.update_tenant(tenant_id, tenant_update.model_dump(exclude_unset=True))


@router.post("/{tenant_id}/suspend", response_model=TenantResponse)
async def suspend_tenant(
    tenant_id: str,
    body: SuspendRequest,
    service: TenantProvisioningService = Depends(get_provisioning_service),
    admin: User = Depends(require_platform_admin),
):
    return service.suspend_tenant(tenant_id, body.reason)


@router.post("/{tenant_id}/reactivate", response_model=TenantResponse)
async def reactivate_tenant(
    tenant_id: str,
    service: TenantProvisioningService = Depends(get_provisioning_service),
    admin: User = Depends(require_platform_admin),
):
    return service.reactivate_tenant(tenant_id)


@router.post("/{tenant_id}/provision", response_model=TenantResponse)
def provision_tenant(
    tenant_id: str,
    service: TenantProvisioningService = Depends(get_provisioning_service),
    admin: User = Depends(require_platform_admin),
):
    """Retry database provisioning for a tenant whose first attempt failed."""
    tenant = service.get_tenant(tenant_id)
    return service.provision_database(tenant)


@router.delete("/{tenant_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_tenant(
    tenant_id: str,
    body: DeleteTenantRequest,
    service: TenantProvisioningService = Depends(get_provisioning_service),
    admin: User = Depends(require_platform_admin),
):
    """
    Drop the tenant database and delete the tenant.

    The body must be {"confirm": "DELETE"}.
    """
    if body.confirm != "DELETE":
        raise InvalidInputError('Deletion requires {"confirm": "DELETE"}')

    service.delete_tenant(tenant_id)
    logger.warning(f"Tenant deleted by admin {admin.id}", extra={"tenant_id": tenant_id})
    return None


@router.get("/{tenant_id}/stats")
def tenant_stats(
    tenant_id: str,
    service: TenantProvisioningService = Depends(get_provisioning_service),
    admin: User = Depends(require_platform_admin),
):
    return service.tenant_stats(tenant_id)
