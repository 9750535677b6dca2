from unittest.mock import MagicMock

import pytest

from ledgerhub.services.storage import EXIT_CODES, build_storage_report, storage_status


@pytest.fixture
def server():
    sizes = {
        "ledgerhub_master": {"size_mb": 10.0, "tables": 6},
        "ledgerhub_acme": {"size_mb": 50.0, "tables": 4},
        "ledgerhub_globex": {"size_mb": 20.0, "tables": 4},
        "analytics": {"size_mb": 5.0, "tables": 2},
    }
    fake = MagicMock()
    fake.list_databases.return_value = list(sizes)
    fake.database_size.side_effect = lambda name: sizes[name]
    return fake


@pytest.mark.parametrize("used,limit,expected", [
    (0, 100, "ok"),
    (79.9, 100, "ok"),
    (80, 100, "warning"),
    (90, 100, "critical"),
    (150, 100, "critical"),
    (10, 0, "ok"),
])
def test_storage_status_thresholds(used, limit, expected):
    assert storage_status(used, limit) == expected


def test_report_totals(server):
    report = build_storage_report(server=server, limit_mb=100, tenant_prefix="ledgerhub_")

    assert report["total_mb"] == 85.0
    assert report["total_tables"] == 16
    assert report["remaining_mb"] == 15.0
    assert report["usage_percent"] == 85.0
    assert report["status"] == "warning"
    assert EXIT_CODES[report["status"]] == 1


def test_tenant_analysis(server):
    analysis = build_storage_report(server=server, limit_mb=1000, tenant_prefix="ledgerhub_")["tenant_analysis"]

    assert analysis["count"] == 3
    assert analysis["largest_mb"] == 50.0
    assert analysis["smallest_mb"] == 10.0
    assert [db["name"] for db in analysis["largest"]] == ["ledgerhub_acme", "ledgerhub_globex", "ledgerhub_master"]


def test_unsizable_database_is_reported_not_fatal(server):
    server.database_size.side_effect = RuntimeError("denied")

    report = build_storage_report(server=server, limit_mb=100, tenant_prefix="ledgerhub_")

    assert report["total_mb"] == 0
    assert all(db["error"] == "denied" for db in report["databases"])


def test_report_on_sqlite_server(db_server, make_tenant):
    make_tenant("acme")

    report = build_storage_report(server=db_server, limit_mb=1024)

    names = [db["name"] for db in report["databases"]]
    assert "ledgerhub_acme" in names
    assert report["status"] == "ok"
