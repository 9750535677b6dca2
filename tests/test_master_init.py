from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from ledgerhub.config import Settings
from ledgerhub.core.security import verify_password
from ledgerhub.database import engine
from ledgerhub.models.master_data import DEFAULT_ACCOUNT_GROUPS, DEFAULT_VOUCHER_TYPES, AccountGroup, VoucherType
from ledgerhub.models.user import User, UserRole
from ledgerhub.services.master_init import (
    ensure_master_database,
    init_master_database,
    seed_master_data,
    seed_platform_admin,
)


def _operational_error(errno, message):
    return OperationalError("SELECT 1", {}, Exception(errno, message))


@pytest.fixture
def admin_settings():
    return Settings(PLATFORM_ADMIN_EMAIL="Root@LedgerHub.in", PLATFORM_ADMIN_PASSWORD="admin-password-1")


def test_init_creates_tables_and_seeds(db, db_server, admin_settings):
    init_master_database(engine=engine, server=db_server, settings=admin_settings)

    assert db.query(AccountGroup).count() == len(DEFAULT_ACCOUNT_GROUPS)
    assert db.query(VoucherType).count() == len(DEFAULT_VOUCHER_TYPES)

    admin = db.query(User).filter(User.email == "root@ledgerhub.in").one()
    assert admin.role == UserRole.PLATFORM_ADMIN
    assert admin.tenant_id is None
    assert verify_password("admin-password-1", admin.hashed_password)


def test_init_is_idempotent(db, db_server, admin_settings):
    init_master_database(engine=engine, server=db_server, settings=admin_settings)
    init_master_database(engine=engine, server=db_server, settings=admin_settings)

    assert db.query(AccountGroup).count() == len(DEFAULT_ACCOUNT_GROUPS)
    assert db.query(User).count() == 1


def test_master_data_is_not_reseeded(db):
    db.query(AccountGroup).filter(AccountGroup.group_code == "CA").delete()
    db.commit()

    seed_master_data(db)

    assert db.query(AccountGroup).count() == len(DEFAULT_ACCOUNT_GROUPS) - 1


def test_platform_admin_seeder_runs_once(db, admin_settings):
    assert seed_platform_admin(db, admin_settings) is True
    assert seed_platform_admin(db, admin_settings) is False


def test_platform_admin_seeder_needs_credentials(db):
    assert seed_platform_admin(db, Settings(PLATFORM_ADMIN_EMAIL=None, PLATFORM_ADMIN_PASSWORD=None)) is False
    assert db.query(User).count() == 0


def test_unknown_master_database_is_created():
    master_engine = MagicMock()
    master_engine.connect.side_effect = [
        _operational_error(1049, "Unknown database 'ledgerhub_master'"),
        MagicMock(),
    ]
    server = MagicMock(master_database="ledgerhub_master")

    ensure_master_database(master_engine, server)

    server.create_database.assert_called_once_with("ledgerhub_master")
    master_engine.dispose.assert_called_once()


def test_other_connection_errors_propagate():
    master_engine = MagicMock()
    master_engine.connect.side_effect = _operational_error(2003, "Can't connect to MySQL server")
    server = MagicMock(master_database="ledgerhub_master")

    with pytest.raises(OperationalError):
        ensure_master_database(master_engine, server)

    server.create_database.assert_not_called()
