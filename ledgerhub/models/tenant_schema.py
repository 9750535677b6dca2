"""
Tenant Database Schema

Tables created inside every tenant database. They use their own metadata
so that master create_all() never touches them and schema sync can diff
them against a live tenant database.
"""
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean, Column, Date, DateTime, ForeignKey, Index, Numeric, String, Text,
)
from sqlalchemy.orm import declarative_base

TenantBase = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class TenantUser(TenantBase):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    email = Column(String(255), nullable=False)
    name = Column(String(255), nullable=True)
    phone = Column(String(15), nullable=True)
    role = Column(String(30), default="user", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_tenant_user_email', 'tenant_id', 'email', unique=True),
    )


class Ledger(TenantBase):
    __tablename__ = "ledgers"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    ledger_name = Column(String(200), nullable=False)
    ledger_code = Column(String(50), nullable=True)
    # Code of a master AccountGroup
    account_group_code = Column(String(20), nullable=False)
    opening_balance = Column(Numeric(15, 2), default=0, nullable=False)
    opening_balance_type = Column(String(2), default="Dr", nullable=False)  # Dr / Cr
    balance_type = Column(String(10), default="debit", nullable=False)  # debit / credit
    is_system = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_ledger_tenant_code', 'tenant_id', 'ledger_code', unique=True),
    )


class Voucher(TenantBase):
    __tablename__ = "vouchers"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    voucher_type = Column(String(50), nullable=False)
    voucher_number = Column(String(50), nullable=False)
    voucher_date = Column(Date, nullable=False)
    party_ledger_id = Column(String(36), ForeignKey("ledgers.id"), nullable=True)
    total_amount = Column(Numeric(15, 2), default=0, nullable=False)
    narration = Column(Text, nullable=True)
    status = Column(String(20), default="draft", nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_voucher_tenant_number', 'tenant_id', 'voucher_type', 'voucher_number', unique=True),
        Index('idx_voucher_updated_at', 'updated_at'),
    )


class GSTIN(TenantBase):
    __tablename__ = "gstins"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    gstin = Column(String(15), nullable=False)
    legal_name = Column(String(255), nullable=True)
    trade_name = Column(String(255), nullable=True)
    state = Column(String(100), nullable=True)
    state_code = Column(String(2), nullable=False)
    address = Column(Text, nullable=True)
    is_primary = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_gstin_tenant_gstin', 'tenant_id', 'gstin', unique=True),
    )


# Tables whose updated_at marks user activity in a tenant database
ACTIVITY_TABLES = ("vouchers", "users")

# (ledger_name, ledger_code, group_code, balance_type)
DEFAULT_LEDGERS = [
    ("CGST", "CGST-001", "DT", "credit"),
    ("SGST", "SGST-001", "DT", "credit"),
    ("IGST", "IGST-001", "DT", "credit"),
    ("Cash on Hand", "CASH-001", "CASH", "debit"),
    ("Stock in Hand", "INV-001", "INV", "debit"),
    ("Sales", "SAL-001", "SAL", "credit"),
    ("Purchase", "PUR-001", "PUR", "debit"),
]
