"""
Platform User Model

Login accounts live in the master database so authentication works before
a tenant database is chosen. Tenant users carry tenant_id; platform
administrators have none.
"""
import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Enum as SQLEnum, ForeignKey, Index, String
from sqlalchemy.orm import relationship

from ledgerhub.database import Base


class UserRole(str, enum.Enum):
    """
    User roles.

    PLATFORM_ADMIN: Manages tenants and maintenance jobs across the platform
    TENANT_ADMIN: Owner of a single company
    USER: Regular member of a company
    """
    PLATFORM_ADMIN = "platform_admin"
    TENANT_ADMIN = "tenant_admin"
    USER = "user"


ROLE_HIERARCHY = {
    UserRole.USER: 1,
    UserRole.TENANT_ADMIN: 2,
    UserRole.PLATFORM_ADMIN: 3,
}


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    tenant_id = Column(
        String(36),
        ForeignKey("tenant_master.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )

    # Email is the login name, so it is unique across all tenants
    email = Column(String(255), nullable=False)
    hashed_password = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=True)
    phone = Column(String(15), nullable=True)

    role = Column(
        SQLEnum(UserRole),
        default=UserRole.USER,
        nullable=False,
        index=True
    )

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    last_login_at = Column(DateTime, nullable=True)

    tenant = relationship("TenantMaster", back_populates="users")

    __table_args__ = (
        Index('idx_user_email_unique', 'email', unique=True),
        Index('idx_user_tenant_active', 'tenant_id', 'is_active'),
    )

    def __repr__(self):
        return f"<User {self.email} (tenant={self.tenant_id})>"

    def has_permission(self, required_role: UserRole) -> bool:
        """Hierarchy: PLATFORM_ADMIN > TENANT_ADMIN > USER"""
        return ROLE_HIERARCHY[self.role] >= ROLE_HIERARCHY[required_role]

    @property
    def is_platform_admin(self) -> bool:
        return self.role == UserRole.PLATFORM_ADMIN
