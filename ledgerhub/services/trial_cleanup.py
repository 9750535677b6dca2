"""
Expired Trial Cleanup

Finds trial and free-plan tenants with no activity inside the retention
window and removes their databases.

Safety:
- Only trial/free tenants are candidates
- A tenant with recent activity in its database is always kept
- Dry run (the default) reports what would happen and changes nothing
- With backups enabled, a failed backup leaves the database in place
- Every action is appended to the cleanup audit log
"""
import enum
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, column, create_engine, func, or_, select, table
from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.orm import Session

from ledgerhub.config import Settings, get_settings
from ledgerhub.models.tenant import FREE_PLANS, TenantMaster
from ledgerhub.models.tenant_schema import ACTIVITY_TABLES
from ledgerhub.services.db_server import DatabaseServer, get_database_server, mysql_errno
from ledgerhub.services.tenant_connections import TenantConnectionManager, tenant_connections
from ledgerhub.utils.logging import add_file_handler

logger = logging.getLogger(__name__)

ER_NO_SUCH_TABLE = 1146


class CleanupAction(str, enum.Enum):
    MARKED_INACTIVE = "marked_inactive"
    KEPT = "kept"
    WOULD_DELETE = "would_delete"
    DELETED = "deleted"
    ERROR = "error"


@dataclass
class DatabaseActivity:
    exists: bool
    last_activity: Optional[datetime] = None
    has_data: bool = False


@dataclass
class CleanupResult:
    tenant_id: str
    company_name: str
    db_name: Optional[str]
    action: CleanupAction
    reason: str
    backup_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "company_name": self.company_name,
            "db_name": self.db_name,
            "action": self.action.value,
            "reason": self.reason,
            "backup_path": self.backup_path,
        }


@dataclass
class CleanupSummary:
    dry_run: bool
    deleted: int = 0
    kept: int = 0
    marked_inactive: int = 0
    errors: int = 0
    results: List[CleanupResult] = field(default_factory=list)

    def add(self, result: CleanupResult) -> None:
        self.results.append(result)
        if result.action in (CleanupAction.DELETED, CleanupAction.WOULD_DELETE):
            self.deleted += 1
        elif result.action == CleanupAction.KEPT:
            self.kept += 1
        elif result.action == CleanupAction.MARKED_INACTIVE:
            self.marked_inactive += 1
        elif result.action == CleanupAction.ERROR:
            self.errors += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "candidates": len(self.results),
            "deleted": self.deleted,
            "kept": self.kept,
            "marked_inactive": self.marked_inactive,
            "errors": self.errors,
            "results": [result.to_dict() for result in self.results],
        }


class TrialCleanupService:
    """
    One cleanup run over the master session `db`.

    Options default to the CLEANUP_* / TRIAL_EXPIRY_DAYS settings.
    """

    def __init__(
        self,
        db: Session,
        dry_run: Optional[bool] = None,
        create_backup: Optional[bool] = None,
        expiry_days: Optional[int] = None,
        backup_dir: Optional[str] = None,
        delay_seconds: Optional[float] = None,
        server: Optional[DatabaseServer] = None,
        connections: Optional[TenantConnectionManager] = None,
        settings: Optional[Settings] = None,
        log_file: Optional[str] = None,
    ):
        settings = settings or get_settings()
        self.db = db
        self.dry_run = settings.CLEANUP_DRY_RUN if dry_run is None else dry_run
        self.create_backup = settings.CLEANUP_CREATE_BACKUP if create_backup is None else create_backup
        self.expiry_days = expiry_days if expiry_days is not None else settings.TRIAL_EXPIRY_DAYS
        self.backup_dir = Path(backup_dir or settings.CLEANUP_BACKUP_DIR)
        self.delay_seconds = (
            settings.CLEANUP_TENANT_DELAY_SECONDS if delay_seconds is None else delay_seconds
        )
        self.server = server or get_database_server()
        self.connections = connections or tenant_connections

        self.log_file = log_file or settings.CLEANUP_LOG_FILE

    def cutoff(self, now: datetime) -> datetime:
        return now - timedelta(days=self.expiry_days)

    def find_expired_trials(self, now: Optional[datetime] = None) -> List[TenantMaster]:
        now = now or datetime.utcnow()
        cutoff = self.cutoff(now)
        logger.info(f"Searching for expired trials (cutoff date: {cutoff.isoformat()})")

        tenants = (
            self.db.query(TenantMaster)
            .filter(
                or_(
                    and_(
                        TenantMaster.is_trial.is_(True),
                        or_(TenantMaster.trial_ends_at.is_(None), TenantMaster.trial_ends_at < now),
                    ),
                    TenantMaster.subscription_plan.in_(FREE_PLANS),
                ),
                or_(TenantMaster.updated_at < cutoff, TenantMaster.created_at < cutoff),
                TenantMaster.is_active.is_(True),
            )
            .order_by(TenantMaster.created_at.asc())
            .all()
        )

        logger.info(f"Found {len(tenants)} potentially expired trial/free accounts")
        return tenants

    def check_database_activity(self, db_name: Optional[str]) -> DatabaseActivity:
        """
        Latest updated_at across the activity tables of a tenant database.

        Missing activity tables are skipped. Errors from the server lookup
        propagate; they are never reported as a missing database.
        """
        if not db_name or not self.server.database_exists(db_name):
            return DatabaseActivity(exists=False)

        activity = DatabaseActivity(exists=True)
        engine = create_engine(self.server.url_for(db_name))
        try:
            with engine.connect() as conn:
                for table_name in ACTIVITY_TABLES:
                    activity_table = table(table_name, column("updated_at"))
                    try:
                        row = conn.execute(
                            select(func.max(activity_table.c.updated_at), func.count())
                            .select_from(activity_table)
                        ).first()
                    except (OperationalError, ProgrammingError) as exc:
                        if not _is_missing_table(exc):
                            raise
                        logger.debug(f"Skipping {db_name}.{table_name}: {exc}")
                        conn.rollback()
                        continue

                    last, count = row
                    if count:
                        activity.has_data = True
                    last = _as_datetime(last)
                    if last and (activity.last_activity is None or last > activity.last_activity):
                        activity.last_activity = last
        finally:
            engine.dispose()

        return activity

    def cleanup_expired_tenant(self, tenant: TenantMaster, now: Optional[datetime] = None) -> CleanupResult:
        now = now or datetime.utcnow()
        result = CleanupResult(
            tenant_id=tenant.id,
            company_name=tenant.company_name,
            db_name=tenant.db_name,
            action=CleanupAction.ERROR,
            reason="",
        )

        try:
            logger.info(
                f"Processing: {tenant.company_name} ({tenant.email}) - Plan: {tenant.subscription_plan}"
            )
            activity = self.check_database_activity(tenant.db_name)

            if not activity.exists:
                logger.info(f"Database {tenant.db_name} does not exist, marking tenant as inactive")
                if not self.dry_run:
                    tenant.is_active = False
                    self.db.commit()
                result.action = CleanupAction.MARKED_INACTIVE
                result.reason = "database_not_found"
                return result

            cutoff = self.cutoff(now)
            if activity.last_activity and activity.last_activity > cutoff:
                logger.info(f"Recent activity found ({activity.last_activity.isoformat()}), keeping database")
                result.action = CleanupAction.KEPT
                result.reason = "recent_activity"
                return result

            since = activity.last_activity.isoformat() if activity.last_activity else "creation"
            logger.info(f"Marking for deletion: no activity since {since}")

            if self.dry_run:
                logger.info(f"DRY RUN: would delete database {tenant.db_name} and mark tenant inactive")
                result.action = CleanupAction.WOULD_DELETE
                result.reason = "expired_trial"
                return result

            if self.create_backup:
                if activity.has_data:
                    logger.warning("Database has data but no recent activity, backing up before deletion")
                backup = self.server.backup_database(tenant.db_name, self.backup_dir)
                result.backup_path = str(backup)

            self.connections.close(tenant.id)
            self.server.drop_database(tenant.db_name)
            logger.info(f"Database {tenant.db_name} deleted")

            tenant.is_active = False
            tenant.db_provisioned = False
            self.db.commit()
            logger.info("Tenant marked as inactive")

            result.action = CleanupAction.DELETED
            result.reason = "expired_trial"
            return result

        except Exception as exc:
            self.db.rollback()
            logger.error(f"Error processing {tenant.company_name}: {exc}")
            result.action = CleanupAction.ERROR
            result.reason = str(exc)
            return result

    def run(self, now: Optional[datetime] = None) -> CleanupSummary:
        """Process every candidate, writing the audit log for the duration of the run."""
        attached = list(logger.handlers)
        handler = add_file_handler(logger, self.log_file) if self.log_file else None
        try:
            return self._run(now or datetime.utcnow())
        finally:
            if handler is not None and handler not in attached:
                logger.removeHandler(handler)
                handler.close()

    def _run(self, now: datetime) -> CleanupSummary:
        logger.info("Starting expired trial cleanup")
        logger.info(
            f"Configuration: trial expiry = {self.expiry_days} days, "
            f"dry run = {self.dry_run}, create backup = {self.create_backup}"
        )

        summary = CleanupSummary(dry_run=self.dry_run)
        tenants = self.find_expired_trials(now)
        if not tenants:
            logger.info("No expired trials found")
            return summary

        for index, tenant in enumerate(tenants):
            summary.add(self.cleanup_expired_tenant(tenant, now))
            if self.delay_seconds and index < len(tenants) - 1:
                time.sleep(self.delay_seconds)

        logger.info(
            f"Cleanup summary: deleted={summary.deleted} kept={summary.kept} "
            f"marked_inactive={summary.marked_inactive} errors={summary.errors}"
        )
        if self.dry_run:
            logger.info("This was a DRY RUN, no changes were made. Set CLEANUP_DRY_RUN=false to clean up.")
        logger.info("Cleanup process completed")
        return summary


def _as_datetime(value) -> Optional[datetime]:
    """SQLite returns DATETIME columns as strings through a lightweight table()."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _is_missing_table(exc: Exception) -> bool:
    return mysql_errno(exc) == ER_NO_SUCH_TABLE or "no such table" in str(exc)
