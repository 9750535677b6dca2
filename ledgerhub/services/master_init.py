"""
Master Database Initialisation

Brings the master database to a usable state: create it on the server when
missing, create master tables, seed shared accounting data and the
platform administrator.
"""
import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from ledgerhub.config import Settings, get_settings
from ledgerhub.core.security import get_password_hash
from ledgerhub.database import Base
from ledgerhub.models.master_data import (
    DEFAULT_ACCOUNT_GROUPS, DEFAULT_VOUCHER_TYPES, AccountGroup, SeederMeta, VoucherType,
)
from ledgerhub.models.user import User, UserRole
from ledgerhub.services.db_server import ER_BAD_DB_ERROR, DatabaseServer, get_database_server, mysql_errno

logger = logging.getLogger(__name__)

PLATFORM_ADMIN_SEEDER = "platform_admin"


def _is_unknown_database(exc: OperationalError) -> bool:
    if mysql_errno(exc) == ER_BAD_DB_ERROR:
        return True
    return "Unknown database" in str(exc)


def ensure_master_database(engine: Engine, server: DatabaseServer) -> None:
    """
    Connect to the master database, creating it when the server reports it
    unknown. Any other connection error propagates.
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info(f"Master database '{server.master_database}' is accessible")
        return
    except OperationalError as exc:
        if not _is_unknown_database(exc):
            logger.error(f"Cannot connect to database server: {exc}")
            raise
        logger.info(f"Master database '{server.master_database}' does not exist, creating it")

    server.create_database(server.master_database)
    engine.dispose()

    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    logger.info("Master database connection verified")


def seed_master_data(db: Session) -> None:
    """Account groups and voucher types, only when their tables are empty."""
    if db.query(AccountGroup).count() == 0:
        for code, name, nature, affects_gp in DEFAULT_ACCOUNT_GROUPS:
            db.add(AccountGroup(
                group_code=code,
                name=name,
                nature=nature,
                affects_gross_profit=affects_gp,
                is_system=True,
            ))
        db.commit()
        logger.info(f"Seeded {len(DEFAULT_ACCOUNT_GROUPS)} account groups")

    if db.query(VoucherType).count() == 0:
        for name, category, prefix in DEFAULT_VOUCHER_TYPES:
            db.add(VoucherType(name=name, category=category, numbering_prefix=prefix, is_system=True))
        db.commit()
        logger.info(f"Seeded {len(DEFAULT_VOUCHER_TYPES)} voucher types")


def seed_platform_admin(db: Session, settings: Settings) -> bool:
    """
    Create the platform administrator once.

    Returns True when the seeder ran. A seeder_meta row records the run; a
    concurrent insert of the same row counts as already run.
    """
    if db.query(SeederMeta).filter(SeederMeta.name == PLATFORM_ADMIN_SEEDER).first():
        return False

    if not settings.PLATFORM_ADMIN_EMAIL or not settings.PLATFORM_ADMIN_PASSWORD:
        logger.info("PLATFORM_ADMIN_EMAIL/PASSWORD not set, skipping platform admin seeder")
        return False

    try:
        db.add(SeederMeta(name=PLATFORM_ADMIN_SEEDER))
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.info("Platform admin seeder already executed by another process")
        return False

    email = settings.PLATFORM_ADMIN_EMAIL.lower()
    if not db.query(User).filter(User.email == email).first():
        db.add(User(
            email=email,
            hashed_password=get_password_hash(settings.PLATFORM_ADMIN_PASSWORD),
            full_name="Platform Administrator",
            role=UserRole.PLATFORM_ADMIN,
            tenant_id=None,
        ))
    db.commit()
    logger.info(f"Platform admin seeded: {email}")
    return True


def init_master_database(
    engine: Optional[Engine] = None,
    server: Optional[DatabaseServer] = None,
    settings: Optional[Settings] = None,
) -> None:
    """Create (if needed), migrate and seed the master database."""
    if engine is None:
        from ledgerhub.database import engine as master_engine
        engine = master_engine
    server = server or get_database_server()
    settings = settings or get_settings()

    logger.info(f"Initialising master database '{server.master_database}'")
    ensure_master_database(engine, server)

    # Import models so they register on Base.metadata
    import ledgerhub.models  # noqa: F401
    Base.metadata.create_all(bind=engine)

    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    db = factory()
    try:
        seed_master_data(db)
        seed_platform_admin(db, settings)
    finally:
        db.close()

    logger.info("Master database ready")
