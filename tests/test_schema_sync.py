from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, inspect, text

from ledgerhub.services.schema_sync import sync_tenant_schema, sync_tenant_schemas


@pytest.fixture
def legacy_engine(tmp_path):
    """Tenant database from before the current schema: only a narrow users table."""
    engine = create_engine(f"sqlite:///{tmp_path / 'legacy.db'}")
    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE users ("
            "id VARCHAR(36) PRIMARY KEY, "
            "tenant_id VARCHAR(36) NOT NULL, "
            "email VARCHAR(255) NOT NULL, "
            "created_at DATETIME NOT NULL, "
            "updated_at DATETIME NOT NULL)"
        ))
    yield engine
    engine.dispose()


def test_missing_tables_and_nullable_columns_are_added(legacy_engine):
    changes = sync_tenant_schema(legacy_engine)

    assert set(changes["created_tables"]) == {"ledgers", "vouchers", "gstins"}
    # role and is_active are NOT NULL and cannot be added to a populated table
    assert changes["added_columns"] == ["users.name", "users.phone"]

    inspector = inspect(legacy_engine)
    assert {"users", "ledgers", "vouchers", "gstins"} <= set(inspector.get_table_names())
    columns = {column["name"] for column in inspector.get_columns("users")}
    assert {"name", "phone"} <= columns


def test_sync_is_idempotent(legacy_engine):
    sync_tenant_schema(legacy_engine)
    changes = sync_tenant_schema(legacy_engine)

    assert changes == {"created_tables": [], "added_columns": []}


def test_existing_columns_are_left_alone(legacy_engine):
    with legacy_engine.begin() as conn:
        conn.execute(text(
            "INSERT INTO users (id, tenant_id, email, created_at, updated_at) "
            "VALUES ('u1', 't1', 'a@acme.in', '2026-01-01 00:00:00', '2026-01-01 00:00:00')"
        ))

    sync_tenant_schema(legacy_engine)

    with legacy_engine.connect() as conn:
        row = conn.execute(text("SELECT email, name FROM users WHERE id = 'u1'")).one()
    assert row.email == "a@acme.in"
    assert row.name is None


def test_sync_all_tenants(db, make_tenant, connections):
    make_tenant("acme")
    make_tenant("globex")

    result = sync_tenant_schemas(db, connections)

    assert result["total"] == 2
    assert result["success"] == 2
    assert result["errors"] == 0
    assert all(item["status"] == "success" for item in result["results"])


def test_failing_tenant_does_not_stop_the_run(db, make_tenant, connections):
    acme = make_tenant("acme")
    make_tenant("globex")

    flaky = MagicMock()

    def get_engine(tenant):
        if tenant.id == acme.id:
            raise RuntimeError("connection refused")
        return connections.get_engine(tenant)

    flaky.get_engine.side_effect = get_engine

    result = sync_tenant_schemas(db, flaky)

    assert result["success"] == 1
    assert result["errors"] == 1
    failed = [item for item in result["results"] if item["status"] == "error"]
    assert failed[0]["db_name"] == "ledgerhub_acme"
    assert "connection refused" in failed[0]["error"]


def test_inactive_tenants_are_skipped(db, provisioning, make_tenant, connections):
    acme = make_tenant("acme")
    make_tenant("globex")
    provisioning.update_tenant(acme.id, {"is_active": False})

    result = sync_tenant_schemas(db, connections)

    assert result["total"] == 1
    assert result["results"][0]["db_name"] == "ledgerhub_globex"
