"""
Storage Report

Database server usage against the configured storage budget.
"""
import logging
from typing import Any, Dict, List, Optional

from ledgerhub.config import get_settings
from ledgerhub.services.db_server import DatabaseServer, get_database_server

logger = logging.getLogger(__name__)

WARNING_THRESHOLD = 0.8
CRITICAL_THRESHOLD = 0.9

EXIT_CODES = {"ok": 0, "warning": 1, "critical": 2}


def storage_status(used_mb: float, limit_mb: float) -> str:
    if not limit_mb:
        return "ok"
    ratio = used_mb / limit_mb
    if ratio >= CRITICAL_THRESHOLD:
        return "critical"
    if ratio >= WARNING_THRESHOLD:
        return "warning"
    return "ok"


def _is_tenant_database(name: str, prefix: str) -> bool:
    return name.startswith(prefix) or "tenant" in name or "company" in name


def build_storage_report(
    server: Optional[DatabaseServer] = None,
    limit_mb: Optional[float] = None,
    tenant_prefix: Optional[str] = None,
) -> Dict[str, Any]:
    settings = get_settings()
    server = server or get_database_server()
    limit_mb = limit_mb if limit_mb is not None else settings.STORAGE_LIMIT_MB
    tenant_prefix = tenant_prefix if tenant_prefix is not None else settings.TENANT_DB_PREFIX

    databases: List[Dict[str, Any]] = []
    for name in server.list_databases():
        try:
            size = server.database_size(name)
        except Exception as exc:
            logger.warning(f"Could not size database {name}: {exc}")
            databases.append({"name": name, "size_mb": 0.0, "tables": 0, "error": str(exc)})
            continue
        databases.append({"name": name, "size_mb": size["size_mb"], "tables": size["tables"]})

    total_mb = round(sum(db["size_mb"] for db in databases), 2)
    status = storage_status(total_mb, limit_mb)

    tenant_dbs = sorted(
        (db for db in databases if _is_tenant_database(db["name"], tenant_prefix)),
        key=lambda db: db["size_mb"],
        reverse=True,
    )
    tenant_analysis = None
    if tenant_dbs:
        sizes = [db["size_mb"] for db in tenant_dbs]
        tenant_analysis = {
            "count": len(tenant_dbs),
            "average_mb": round(sum(sizes) / len(sizes), 2),
            "largest_mb": max(sizes),
            "smallest_mb": min(sizes),
            "largest": tenant_dbs[:5],
        }

    report = {
        "databases": databases,
        "total_mb": total_mb,
        "total_tables": sum(db["tables"] for db in databases),
        "limit_mb": limit_mb,
        "remaining_mb": round(limit_mb - total_mb, 2),
        "usage_percent": round(total_mb / limit_mb * 100, 1) if limit_mb else 0.0,
        "status": status,
        "tenant_analysis": tenant_analysis,
    }

    log = logger.info if status == "ok" else logger.warning
    log(f"Storage usage {report['usage_percent']}% of {limit_mb} MB ({status})")
    return report
