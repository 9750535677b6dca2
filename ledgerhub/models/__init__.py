"""
Master Database Models

Tenant-side tables are declared separately in models.tenant_schema and are
never created in the master database.
"""
from ledgerhub.models.tenant import TenantMaster
from ledgerhub.models.user import User, UserRole
from ledgerhub.models.master_data import AccountGroup, SeederMeta, VoucherType

__all__ = ["TenantMaster", "User", "UserRole", "AccountGroup", "VoucherType", "SeederMeta"]
