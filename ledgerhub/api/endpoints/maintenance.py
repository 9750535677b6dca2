"""
Maintenance Endpoints

Scheduler control, manual trial cleanup, schema sync and storage report
for platform administrators.
"""
from typing import Dict

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ledgerhub.api.deps import require_platform_admin
from ledgerhub.core.exceptions import InvalidInputError
from ledgerhub.database import get_db
from ledgerhub.models.user import User
from ledgerhub.schemas.maintenance import CleanupTriggerRequest, CleanupTriggerResponse, CronJobStatus
from ledgerhub.services.cron import CronService, cron_service
from ledgerhub.services.schema_sync import sync_tenant_schemas
from ledgerhub.services.storage import build_storage_report
from ledgerhub.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/admin/maintenance", tags=["admin: maintenance"])


def get_cron_service() -> CronService:
    return cron_service


@router.get("/cron", response_model=Dict[str, CronJobStatus])
async def cron_status(
    cron: CronService = Depends(get_cron_service),
    admin: User = Depends(require_platform_admin),
):
    return cron.get_status()


@router.post("/cron/{job_name}/start", response_model=Dict[str, CronJobStatus])
async def start_cron_job(
    job_name: str,
    cron: CronService = Depends(get_cron_service),
    admin: User = Depends(require_platform_admin),
):
    if not cron.start_job(job_name):
        raise InvalidInputError(f"Unknown job: {job_name}")
    return cron.get_status()


@router.post("/cron/{job_name}/stop", response_model=Dict[str, CronJobStatus])
async def stop_cron_job(
    job_name: str,
    cron: CronService = Depends(get_cron_service),
    admin: User = Depends(require_platform_admin),
):
    if not cron.stop_job(job_name):
        raise InvalidInputError(f"Unknown job: {job_name}")
    return cron.get_status()


@router.post("/trial-cleanup", response_model=CleanupTriggerResponse)
def trigger_trial_cleanup(
    body: CleanupTriggerRequest,
    cron: CronService = Depends(get_cron_service),
    admin: User = Depends(require_platform_admin),
):
    """Run the trial cleanup now. Dry run unless dry_run is false."""
    logger.warning(f"Trial cleanup triggered by admin {admin.id} (dry run: {body.dry_run})")
    return cron.trigger_trial_cleanup(dry_run=body.dry_run)


@router.post("/schema-sync")
def schema_sync(
    db: Session = Depends(get_db),
    admin: User = Depends(require_platform_admin),
):
    return sync_tenant_schemas(db)


@router.get("/storage")
def storage_report(
    admin: User = Depends(require_platform_admin),
):
    return build_storage_report()
