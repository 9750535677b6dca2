"""
Shared Accounting Master Data

Chart-of-accounts groups and voucher types are defined once in the master
database and referenced by code from every tenant database.
"""
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String

from ledgerhub.database import Base


class AccountGroup(Base):
    __tablename__ = "account_groups"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    group_code = Column(String(20), nullable=False)
    name = Column(String(100), nullable=False)
    nature = Column(String(20), nullable=False)  # asset, liability, income, expense
    parent_id = Column(String(36), ForeignKey("account_groups.id"), nullable=True)
    affects_gross_profit = Column(Boolean, default=False, nullable=False)
    is_system = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_account_group_code_unique', 'group_code', unique=True),
    )

    def __repr__(self):
        return f"<AccountGroup {self.group_code}>"


class VoucherType(Base):
    __tablename__ = "voucher_types"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(50), nullable=False)
    category = Column(String(30), nullable=False)
    numbering_prefix = Column(String(10), nullable=True)
    is_system = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_voucher_type_name_unique', 'name', unique=True),
    )

    def __repr__(self):
        return f"<VoucherType {self.name}>"


class SeederMeta(Base):
    """Names of seeders that must only ever run once."""
    __tablename__ = "seeder_meta"

    name = Column(String(100), primary_key=True)
    executed_at = Column(DateTime, default=datetime.utcnow, nullable=False)


# (code, name, nature, affects_gross_profit)
DEFAULT_ACCOUNT_GROUPS = [
    ("CA", "Current Assets", "asset", False),
    ("CASH", "Cash-in-Hand", "asset", False),
    ("BANK", "Bank Accounts", "asset", False),
    ("SD", "Sundry Debtors", "asset", False),
    ("FA", "Fixed Assets", "asset", False),
    ("INV", "Stock-in-Hand", "asset", False),
    ("LA", "Loans & Advances (Asset)", "asset", False),
    ("CL", "Current Liabilities", "liability", False),
    ("SC", "Sundry Creditors", "liability", False),
    ("DT", "Duties & Taxes", "liability", False),
    ("CAP", "Capital Account", "liability", False),
    ("RES", "Reserves & Surplus", "liability", False),
    ("LOAN", "Loans (Liability)", "liability", False),
    ("SAL", "Sales Accounts", "income", True),
    ("DIR_INC", "Direct Income", "income", True),
    ("IND_INC", "Indirect Income", "income", False),
    ("PUR", "Purchase Accounts", "expense", True),
    ("DIR_EXP", "Direct Expenses", "expense", True),
    ("IND_EXP", "Indirect Expenses", "expense", False),
]

# (name, category, numbering_prefix)
DEFAULT_VOUCHER_TYPES = [
    ("Sales", "sales", "INV"),
    ("Purchase", "purchase", "PUR"),
    ("Payment", "payment", "PAY"),
    ("Receipt", "receipt", "REC"),
    ("Journal", "journal", "JV"),
    ("Contra", "contra", "CNT"),
    ("Debit Note", "debit_note", "DN"),
    ("Credit Note", "credit_note", "CN"),
]
