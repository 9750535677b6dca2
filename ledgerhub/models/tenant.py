"""
Tenant Master Model

One row per tenant (company) in the master database. Each tenant owns a
separate database on the shared server; this row records where it lives,
whether it has been provisioned, and the trial/subscription state that
drives retention cleanup.
"""
import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from ledgerhub.database import Base


class AcquisitionCategory:
    """How a tenant was acquired."""
    DISTRIBUTOR = "distributor"
    SALESMAN = "salesman"
    REFERRAL = "referral"
    ORGANIC = "organic"


# Plans that are subject to trial-expiry cleanup
FREE_PLANS = ("FREE", "TRIAL")


class TenantMaster(Base):
    __tablename__ = "tenant_master"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    company_name = Column(String(255), nullable=False)
    subdomain = Column(String(50), nullable=False)

    # Database connection info
    db_name = Column(String(100), nullable=True)
    db_host = Column(String(255), nullable=True)
    db_port = Column(Integer, nullable=True)
    db_user = Column(String(100), nullable=True)

    # Statutory identifiers
    gstin = Column(String(15), nullable=True)
    pan = Column(String(10), nullable=True)
    tan = Column(String(10), nullable=True)

    # Subscription
    subscription_plan = Column(String(50), nullable=True)
    subscription_start = Column(DateTime, nullable=True)
    subscription_end = Column(DateTime, nullable=True)
    is_trial = Column(Boolean, default=False, nullable=False)
    trial_ends_at = Column(DateTime, nullable=True)

    # Referral / acquisition
    salesman_id = Column(String(36), nullable=True)
    distributor_id = Column(String(36), nullable=True)
    referral_code = Column(String(20), nullable=True)
    referred_by = Column(String(36), nullable=True)
    referral_type = Column(String(20), nullable=True)  # salesman, distributor, tenant
    acquisition_category = Column(String(20), default=AcquisitionCategory.ORGANIC, nullable=False)

    # Contact
    address = Column(Text, nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    pincode = Column(String(10), nullable=True)
    phone = Column(String(15), nullable=True)
    email = Column(String(255), nullable=False)

    # Status
    is_active = Column(Boolean, default=True, nullable=False)
    is_suspended = Column(Boolean, default=False, nullable=False)
    suspended_reason = Column(Text, nullable=True)

    # Provisioning
    db_provisioned = Column(Boolean, default=False, nullable=False)
    db_provisioned_at = Column(DateTime, nullable=True)

    # Storage
    storage_limit_mb = Column(Integer, default=1024, nullable=False)
    storage_used_mb = Column(Integer, default=0, nullable=False)

    settings = Column(JSON, nullable=True, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    users = relationship("User", back_populates="tenant", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_tenant_master_subdomain_unique', 'subdomain', unique=True),
        Index('idx_tenant_master_db_name_unique', 'db_name', unique=True),
        Index('idx_tenant_master_email', 'email'),
        Index('idx_tenant_master_is_active', 'is_active'),
    )

    def __repr__(self):
        return f"<TenantMaster {self.subdomain} db={self.db_name}>"

    @property
    def is_accessible(self) -> bool:
        return self.is_active and not self.is_suspended

    def rate_limits(self, default_per_minute: int, default_burst: int) -> tuple:
        """Per-tenant overrides stored in `settings`, else the defaults."""
        overrides = self.settings or {}
        per_minute = overrides.get("rate_limit_per_minute")
        burst = overrides.get("rate_limit_burst")
        return (
            default_per_minute if per_minute is None else per_minute,
            default_burst if burst is None else burst,
        )
