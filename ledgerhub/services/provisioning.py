"""
Tenant Provisioning Service

Creates tenant records in the master database and the per-tenant database
behind them: create, grant, connect, build schema, seed defaults.

NOTE: Every tenant database is accessed with the application user from
DATABASE_URL. db_user (`fv_<subdomain>`) is recorded on the tenant for reference only.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ledgerhub.config import Settings, get_settings
from ledgerhub.core.exceptions import DuplicateError, ProvisioningError, TenantNotFoundError
from ledgerhub.models.master_data import AccountGroup
from ledgerhub.models.tenant import AcquisitionCategory, TenantMaster
from ledgerhub.models.tenant_schema import DEFAULT_LEDGERS, GSTIN, Ledger, TenantBase, TenantUser
from ledgerhub.services.db_server import DatabaseServer, get_database_server
from ledgerhub.services.naming import generate_database_name, generate_database_user, unique_subdomain
from ledgerhub.services.tenant_connections import TenantConnectionManager, tenant_connections

logger = logging.getLogger(__name__)

# Fields copied verbatim from create/update payloads
TENANT_PROFILE_FIELDS = (
    "company_name", "email", "gstin", "pan", "tan", "phone", "address",
    "city", "state", "pincode", "salesman_id", "distributor_id",
    "referral_code", "referred_by", "referral_type", "storage_limit_mb", "settings",
)

IMMUTABLE_FIELDS = frozenset({"id", "db_name", "db_user", "subdomain"})

TENANT_STATUSES = ("active", "inactive", "suspended")


def determine_acquisition_category(data: Dict[str, Any]) -> str:
    if data.get("distributor_id"):
        return AcquisitionCategory.DISTRIBUTOR
    if data.get("salesman_id"):
        return AcquisitionCategory.SALESMAN
    if data.get("referred_by") or data.get("referral_type"):
        return AcquisitionCategory.REFERRAL
    return AcquisitionCategory.ORGANIC


def gstin_state_code(gstin: Optional[str]) -> str:
    """First two digits of a GSTIN, or '00' when they are not digits."""
    if gstin and len(gstin) >= 2 and gstin[:2].isdigit():
        return gstin[:2]
    return "00"


class TenantProvisioningService:
    """
    Tenant lifecycle against the master session `db`.

    The database server and connection manager default to the process-wide
    ones and are injectable for tests and the CLI.
    """

    def __init__(
        self,
        db: Session,
        server: Optional[DatabaseServer] = None,
        connections: Optional[TenantConnectionManager] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.server = server or get_database_server()
        self.connections = connections or tenant_connections
        self.settings = settings or get_settings()

    # Lookups

    def get_tenant(self, tenant_id: str) -> TenantMaster:
        tenant = self.db.query(TenantMaster).filter(TenantMaster.id == tenant_id).first()
        if not tenant:
            raise TenantNotFoundError(tenant_id)
        return tenant

    def subdomain_exists(self, subdomain: str) -> bool:
        return self.db.query(TenantMaster.id).filter(
            TenantMaster.subdomain == subdomain.lower()
        ).first() is not None

    def _db_name_exists(self, db_name: str) -> bool:
        return self.db.query(TenantMaster.id).filter(
            TenantMaster.db_name == db_name
        ).first() is not None

    def list_tenants(
        self,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Tuple[List[TenantMaster], int]:
        query = self.db.query(TenantMaster)

        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                TenantMaster.company_name.ilike(pattern),
                TenantMaster.subdomain.ilike(pattern),
                TenantMaster.email.ilike(pattern),
            ))

        if status == "active":
            query = query.filter(TenantMaster.is_active.is_(True), TenantMaster.is_suspended.is_(False))
        elif status == "inactive":
            query = query.filter(TenantMaster.is_active.is_(False))
        elif status == "suspended":
            query = query.filter(TenantMaster.is_suspended.is_(True))

        total = query.with_entities(func.count(TenantMaster.id)).scalar() or 0
        tenants = (
            query.order_by(TenantMaster.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return tenants, total

    # Creation

    def create_tenant(self, data: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Create the tenant record and provision its database.

        Raises DuplicateError for a taken subdomain and ProvisioningError
        when the database cannot be set up. In the latter case the record
        stays in place with db_provisioned=False.
        """
        now = now or datetime.utcnow()
        subdomain = data["subdomain"].strip().lower()

        if self.subdomain_exists(subdomain):
            raise DuplicateError(f"Subdomain already taken: {subdomain}")

        db_name = unique_subdomain(
            generate_database_name(subdomain, self.settings.TENANT_DB_PREFIX),
            self._db_name_exists,
        )

        tenant = TenantMaster(
            subdomain=subdomain,
            db_name=db_name,
            db_host=self.server.host,
            db_port=self.server.port,
            db_user=generate_database_user(subdomain),
            subscription_plan=data.get("subscription_plan") or "TRIAL",
            subscription_start=now,
            is_trial=True,
            trial_ends_at=now + timedelta(days=self.settings.TRIAL_DAYS),
            acquisition_category=determine_acquisition_category(data),
            storage_limit_mb=self.settings.DEFAULT_STORAGE_LIMIT_MB,
            db_provisioned=False,
            created_at=now,
            updated_at=now,
        )
        for field in TENANT_PROFILE_FIELDS:
            if data.get(field) is not None:
                setattr(tenant, field, data[field])

        self.db.add(tenant)
        self.db.commit()

        logger.info(
            f"Tenant record created: {subdomain}",
            extra={"tenant_id": tenant.id, "db_name": db_name}
        )

        self.provision_database(tenant, now=now)

        return {
            "tenant": tenant,
            "connection": {
                "db_name": tenant.db_name,
                "db_host": tenant.db_host,
                "db_port": tenant.db_port,
                "db_user": tenant.db_user,
            },
        }

    def provision_database(self, tenant: TenantMaster, now: Optional[datetime] = None) -> TenantMaster:
        """
        Create, grant, verify, build and seed the tenant database.

        Safe to call again after a failure. The database is dropped on
        failure only when this call created it.
        """
        db_name = tenant.db_name
        if not db_name:
            raise ProvisioningError(f"Tenant {tenant.id} has no database name")

        created = False
        try:
            if self.server.database_exists(db_name):
                logger.info(f"Database {db_name} already exists, skipping creation")
            else:
                self.server.create_database(db_name)
                created = True

            app_user = self.server.app_user
            if app_user:
                for host in self.server.grant_hosts():
                    self.server.grant_privileges(db_name, app_user, host)
            self.server.flush_privileges()

            engine = self.connections.get_engine(tenant)
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))

            TenantBase.metadata.create_all(bind=engine)
            self.seed_tenant_database(tenant)

            tenant.db_provisioned = True
            tenant.db_provisioned_at = now or datetime.utcnow()
            self.db.commit()

        except Exception as exc:
            logger.error(
                f"Provisioning failed for {db_name}: {exc} "
                f"(host={self.server.host}, user={self.server.app_user}, created={created})",
                extra={"tenant_id": tenant.id, "db_name": db_name},
                exc_info=True,
            )
            self.db.rollback()
            self.connections.close(tenant.id)

            if created:
                try:
                    self.server.drop_database(db_name)
                    logger.info(f"Cleaned up database: {db_name}")
                except Exception as cleanup_exc:
                    logger.error(f"Cleanup of {db_name} failed: {cleanup_exc}")

            if isinstance(exc, ProvisioningError):
                raise
            raise ProvisioningError(f"Database provisioning failed for {db_name}: {exc}", db_name=db_name) from exc

        logger.info(
            f"Database {db_name} provisioned",
            extra={"tenant_id": tenant.id, "db_name": db_name}
        )
        return tenant

    def seed_tenant_database(self, tenant: TenantMaster) -> None:
        """Insert defaults that are missing. Running it twice changes nothing."""
        with self.connections.session(tenant) as tdb:
            if tenant.email and not tdb.query(TenantUser).filter(TenantUser.email == tenant.email).first():
                tdb.add(TenantUser(
                    tenant_id=tenant.id,
                    email=tenant.email,
                    name=tenant.company_name,
                    phone=tenant.phone,
                    role="tenant_admin",
                ))
                logger.info("Default admin user created", extra={"tenant_id": tenant.id})

            if tenant.gstin and not tdb.query(GSTIN).filter(GSTIN.gstin == tenant.gstin).first():
                tdb.add(GSTIN(
                    tenant_id=tenant.id,
                    gstin=tenant.gstin,
                    legal_name=tenant.company_name,
                    trade_name=tenant.company_name,
                    state=tenant.state,
                    state_code=gstin_state_code(tenant.gstin),
                    address=tenant.address,
                    is_primary=True,
                ))
                logger.info("Default GSTIN created", extra={"tenant_id": tenant.id})

        self._seed_default_ledgers(tenant)

    def _seed_default_ledgers(self, tenant: TenantMaster) -> None:
        groups = {group.group_code for group in self.db.query(AccountGroup.group_code).all()}

        for name, code, group_code, balance_type in DEFAULT_LEDGERS:
            if group_code not in groups:
                logger.warning(f"Account group {group_code} missing, skipping ledger {name}")
                continue
            # One transaction per ledger so a failure only loses that ledger
            try:
                with self.connections.session(tenant) as tdb:
                    if tdb.query(Ledger).filter(Ledger.ledger_code == code).first():
                        continue
                    tdb.add(Ledger(
                        tenant_id=tenant.id,
                        ledger_name=name,
                        ledger_code=code,
                        account_group_code=group_code,
                        opening_balance=0,
                        opening_balance_type="Cr" if balance_type == "credit" else "Dr",
                        balance_type=balance_type,
                        is_system=True,
                    ))
            except SQLAlchemyError as exc:
                logger.warning(f"Could not create ledger {name}: {exc}", extra={"tenant_id": tenant.id})

    # Management

    def update_tenant(self, tenant_id: str, changes: Dict[str, Any]) -> TenantMaster:
        tenant = self.get_tenant(tenant_id)
        for field, value in changes.items():
            if field in IMMUTABLE_FIELDS:
                logger.warning(f"Ignoring update of immutable field {field}", extra={"tenant_id": tenant_id})
                continue
            if hasattr(TenantMaster, field):
                setattr(tenant, field, value)
        self.db.commit()
        return tenant

    def suspend_tenant(self, tenant_id: str, reason: Optional[str] = None) -> TenantMaster:
        tenant = self.get_tenant(tenant_id)
        tenant.is_suspended = True
        tenant.suspended_reason = reason
        self.db.commit()
        logger.info(f"Tenant suspended: {reason}", extra={"tenant_id": tenant_id})
        return tenant

    def reactivate_tenant(self, tenant_id: str) -> TenantMaster:
        tenant = self.get_tenant(tenant_id)
        tenant.is_suspended = False
        tenant.suspended_reason = None
        tenant.is_active = True
        self.db.commit()
        logger.info("Tenant reactivated", extra={"tenant_id": tenant_id})
        return tenant

    def delete_tenant(self, tenant_id: str) -> None:
        """Drop the tenant database and remove the tenant record."""
        tenant = self.get_tenant(tenant_id)
        db_name = tenant.db_name

        self.connections.close(tenant.id)
        if db_name and self.server.database_exists(db_name):
            self.server.drop_database(db_name)

        self.db.delete(tenant)
        self.db.commit()
        logger.info("Tenant deleted", extra={"tenant_id": tenant_id, "db_name": db_name})

    def tenant_stats(self, tenant_id: str) -> Dict[str, Any]:
        tenant = self.get_tenant(tenant_id)

        size_mb = 0.0
        tables = 0
        if tenant.db_name and self.server.database_exists(tenant.db_name):
            size = self.server.database_size(tenant.db_name)
            size_mb = size["size_mb"]
            tables = size["tables"]

        tenant.storage_used_mb = int(round(size_mb))
        self.db.commit()

        limit = tenant.storage_limit_mb or self.settings.DEFAULT_STORAGE_LIMIT_MB
        return {
            "tenant_id": tenant.id,
            "db_name": tenant.db_name,
            "storage_used_mb": size_mb,
            "storage_limit_mb": limit,
            "storage_percentage": round(size_mb / limit * 100, 2) if limit else 0.0,
            "tables": tables,
            "db_provisioned": tenant.db_provisioned,
            "is_active": tenant.is_active,
            "is_suspended": tenant.is_suspended,
            "is_trial": tenant.is_trial,
            "trial_ends_at": tenant.trial_ends_at,
        }
