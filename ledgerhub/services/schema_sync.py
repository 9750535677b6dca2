"""
Tenant Schema Sync

Brings every tenant database up to the current tenant schema: missing
tables are created, missing nullable columns are added. Existing columns
are never altered or dropped.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from ledgerhub.models.tenant import TenantMaster
from ledgerhub.models.tenant_schema import TenantBase
from ledgerhub.services.tenant_connections import TenantConnectionManager, tenant_connections

logger = logging.getLogger(__name__)


def sync_tenant_schema(engine: Engine) -> Dict[str, List[str]]:
    """Sync one tenant database. Returns the tables and columns it added."""
    inspector = inspect(engine)
    existing_tables = set(inspector.get_table_names())

    missing_tables = [
        table for table in TenantBase.metadata.sorted_tables
        if table.name not in existing_tables
    ]
    if missing_tables:
        TenantBase.metadata.create_all(bind=engine, tables=missing_tables)

    preparer = engine.dialect.identifier_preparer
    added_columns = []
    for table in TenantBase.metadata.sorted_tables:
        if table.name not in existing_tables:
            continue

        present = {column["name"] for column in inspector.get_columns(table.name)}
        for column in table.columns:
            if column.name in present:
                continue
            if not column.nullable:
                logger.warning(f"Cannot add NOT NULL column {table.name}.{column.name} to existing table")
                continue

            column_type = column.type.compile(dialect=engine.dialect)
            with engine.begin() as conn:
                conn.execute(text(
                    f"ALTER TABLE {preparer.quote(table.name)} "
                    f"ADD COLUMN {preparer.quote(column.name)} {column_type} NULL"
                ))
            added_columns.append(f"{table.name}.{column.name}")

    return {
        "created_tables": [table.name for table in missing_tables],
        "added_columns": added_columns,
    }


def sync_tenant_schemas(
    db: Session,
    connections: Optional[TenantConnectionManager] = None,
) -> Dict[str, Any]:
    """
    Sync every active tenant that has a database.

    A failing tenant is recorded and the run moves on.
    """
    connections = connections or tenant_connections
    tenants = (
        db.query(TenantMaster)
        .filter(
            TenantMaster.is_active.is_(True),
            TenantMaster.db_name.isnot(None),
            TenantMaster.db_provisioned.is_(True),
        )
        .order_by(TenantMaster.created_at.asc())
        .all()
    )

    results = []
    success = 0
    errors = 0
    for tenant in tenants:
        try:
            changes = sync_tenant_schema(connections.get_engine(tenant))
            results.append({
                "tenant_id": tenant.id,
                "db_name": tenant.db_name,
                "status": "success",
                **changes,
            })
            success += 1
            logger.info(
                f"Schema synced for {tenant.db_name}: "
                f"{len(changes['created_tables'])} tables, {len(changes['added_columns'])} columns added",
                extra={"tenant_id": tenant.id, "db_name": tenant.db_name}
            )
        except Exception as exc:
            errors += 1
            results.append({
                "tenant_id": tenant.id,
                "db_name": tenant.db_name,
                "status": "error",
                "error": str(exc),
            })
            logger.error(
                f"Schema sync failed for {tenant.db_name}: {exc}",
                extra={"tenant_id": tenant.id, "db_name": tenant.db_name}
            )

    logger.info(f"Schema sync finished: {success} succeeded, {errors} failed")
    return {
        "total": len(tenants),
        "success": success,
        "errors": errors,
        "results": results,
    }
