from unittest.mock import MagicMock

import pytest

from ledgerhub.api.endpoints import auth as auth_endpoints
from ledgerhub.api.endpoints.maintenance import get_cron_service
from ledgerhub.config import get_settings
from ledgerhub.core.security import get_password_hash
from ledgerhub.models.user import User, UserRole
from ledgerhub.services.cron import TRIAL_CLEANUP_JOB, CronService

API = "/api/v1"
TEST_PASSWORD = "correct-horse-battery"


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def register(client, email, company_name, password=TEST_PASSWORD):
    return client.post(f"{API}/auth/register", json={
        "email": email,
        "password": password,
        "full_name": "Owner",
        "company_name": company_name,
    })


@pytest.fixture
def acme(client):
    response = register(client, "owner@acme.in", "Acme Traders")
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def globex(client):
    response = register(client, "owner@globex.in", "Globex")
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


class TestAuth:

    def test_register_creates_company_and_admin(self, client, acme):
        assert acme["user"]["role"] == "tenant_admin"
        assert acme["token_type"] == "bearer"

        response = client.get(f"{API}/tenant", headers=bearer(acme["access_token"]))
        assert response.status_code == 200
        tenant = response.json()
        assert tenant["subdomain"] == "acmetraders"
        assert tenant["db_name"] == "ledgerhub_acmetraders"
        assert tenant["db_provisioned"] is True
        assert tenant["id"] == acme["user"]["tenant_id"]

    def test_register_duplicate_email(self, client, acme):
        response = register(client, "OWNER@acme.in", "Another Company")
        assert response.status_code == 409

    def test_same_company_name_gets_next_subdomain(self, client, acme):
        second = register(client, "other@acme.in", "Acme Traders").json()

        response = client.get(f"{API}/tenant", headers=bearer(second["access_token"]))
        assert response.json()["subdomain"] == "acmetraders1"

    def test_login(self, client, acme):
        bad = client.post(f"{API}/auth/login", json={"email": "owner@acme.in", "password": "wrong-password"})
        unknown = client.post(f"{API}/auth/login", json={"email": "nobody@acme.in", "password": TEST_PASSWORD})
        good = client.post(f"{API}/auth/login", json={"email": "owner@acme.in", "password": TEST_PASSWORD})

        assert bad.status_code == 401
        assert unknown.status_code == 401
        assert bad.json()["detail"] == unknown.json()["detail"]
        assert good.status_code == 200
        assert good.json()["user"]["email"] == "owner@acme.in"

    def test_logout_revokes_token(self, client, acme):
        headers = bearer(acme["access_token"])

        assert client.post(f"{API}/auth/logout", headers=headers).status_code == 200
        assert client.get(f"{API}/tenant", headers=headers).status_code == 401

    def test_refresh_rotates_tokens(self, client, acme):
        response = client.post(f"{API}/auth/refresh", json={"refresh_token": acme["refresh_token"]})
        assert response.status_code == 200
        rotated = response.json()

        assert client.get(f"{API}/tenant", headers=bearer(acme["access_token"])).status_code == 401
        assert client.get(f"{API}/tenant", headers=bearer(rotated["access_token"])).status_code == 200

        reused = client.post(f"{API}/auth/refresh", json={"refresh_token": acme["refresh_token"]})
        assert reused.status_code == 401

    def test_refresh_rejects_access_token(self, client, acme):
        response = client.post(f"{API}/auth/refresh", json={"refresh_token": acme["access_token"]})
        assert response.status_code == 401

    def test_invalid_token(self, client):
        response = client.get(f"{API}/tenant", headers=bearer("not-a-jwt"))
        assert response.status_code == 401

    def test_forgot_password_does_not_reveal_accounts(self, client, acme):
        known = client.post(f"{API}/auth/forgot-password", json={"email": "owner@acme.in"})
        unknown = client.post(f"{API}/auth/forgot-password", json={"email": "nobody@acme.in"})

        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()
        assert known.json()["reset_token"] is None

    def test_password_reset_flow(self, client, acme, monkeypatch):
        monkeypatch.setattr(auth_endpoints.settings, "ENVIRONMENT", "development")

        token = client.post(f"{API}/auth/forgot-password", json={"email": "owner@acme.in"}).json()["reset_token"]
        assert token

        status = client.get(f"{API}/auth/reset-password/{token}")
        assert status.json() == {"valid": True, "email": "owner@acme.in"}

        response = client.post(f"{API}/auth/reset-password", json={"token": token, "password": "brand-new-pass"})
        assert response.status_code == 200

        # Every existing session is signed out
        assert client.get(f"{API}/tenant", headers=bearer(acme["access_token"])).status_code == 401

        login = client.post(f"{API}/auth/login", json={"email": "owner@acme.in", "password": "brand-new-pass"})
        assert login.status_code == 200

        reused = client.post(f"{API}/auth/reset-password", json={"token": token, "password": "another-pass"})
        assert reused.status_code == 400

    def test_unknown_reset_token(self, client):
        assert client.get(f"{API}/auth/reset-password/does-not-exist").status_code == 400


class TestTenantResolution:

    def test_unknown_tenant_header(self, client, acme):
        response = client.get(
            f"{API}/tenant",
            headers={**bearer(acme["access_token"]), "X-Tenant-Slug": "nosuchcompany"},
        )
        assert response.status_code == 404

    def test_token_for_other_tenant_is_rejected(self, client, acme, globex):
        response = client.get(
            f"{API}/tenant",
            headers={**bearer(acme["access_token"]), "X-Tenant-Slug": "globex"},
        )
        assert response.status_code == 403
        assert response.json()["type"] == "tenant_isolation_error"

    def test_tenant_resolved_from_host(self, client, acme):
        response = client.get(
            f"{API}/tenant",
            headers={**bearer(acme["access_token"]), "Host": "acmetraders.ledgerhub.app"},
        )
        assert response.status_code == 200
        assert response.json()["subdomain"] == "acmetraders"

    def test_platform_admin_may_address_any_tenant(self, client, acme, admin_headers):
        response = client.get(f"{API}/tenant", headers={**admin_headers, "X-Tenant-Slug": "acmetraders"})
        assert response.status_code == 200

    def test_suspended_tenant_is_locked_out(self, client, acme, admin_headers):
        tenant_id = acme["user"]["tenant_id"]
        client.post(f"{API}/admin/tenants/{tenant_id}/suspend", json={"reason": "unpaid"}, headers=admin_headers)

        own = client.get(f"{API}/tenant", headers=bearer(acme["access_token"]))
        by_header = client.get(
            f"{API}/tenant",
            headers={**bearer(acme["access_token"]), "X-Tenant-Slug": "acmetraders"},
        )
        login = client.post(f"{API}/auth/login", json={"email": "owner@acme.in", "password": TEST_PASSWORD})

        assert own.status_code == 403
        assert by_header.status_code == 403
        assert login.status_code == 401

    def test_stats_require_tenant_admin(self, client, acme, db, session_store):
        member = User(
            tenant_id=acme["user"]["tenant_id"],
            email="clerk@acme.in",
            hashed_password=get_password_hash(TEST_PASSWORD),
            role=UserRole.USER,
        )
        db.add(member)
        db.commit()
        member_tokens = session_store.issue_tokens(member)

        assert client.get(f"{API}/tenant/stats", headers=bearer(member_tokens["access_token"])).status_code == 403

        stats = client.get(f"{API}/tenant/stats", headers=bearer(acme["access_token"]))
        assert stats.status_code == 200
        assert stats.json()["db_name"] == "ledgerhub_acmetraders"


class TestAdminTenants:

    payload = {
        "company_name": "Initech",
        "email": "owner@initech.in",
        "subdomain": "initech",
        "gstin": "29AAACI1234F1Z5",
    }

    def test_requires_platform_admin(self, client, acme):
        response = client.get(f"{API}/admin/tenants", headers=bearer(acme["access_token"]))
        assert response.status_code == 403

    def test_create_and_fetch(self, client, admin_headers):
        created = client.post(f"{API}/admin/tenants", json=self.payload, headers=admin_headers)
        assert created.status_code == 201, created.text
        tenant = created.json()
        assert tenant["db_name"] == "ledgerhub_initech"
        assert tenant["db_provisioned"] is True
        assert tenant["is_trial"] is True

        fetched = client.get(f"{API}/admin/tenants/{tenant['id']}", headers=admin_headers)
        assert fetched.json()["subdomain"] == "initech"

        duplicate = client.post(f"{API}/admin/tenants", json=self.payload, headers=admin_headers)
        assert duplicate.status_code == 409

    def test_invalid_subdomain(self, client, admin_headers):
        response = client.post(
            f"{API}/admin/tenants",
            json={**self.payload, "subdomain": "bad name;"},
            headers=admin_headers,
        )
        assert response.status_code == 422

    def test_list_and_filter(self, client, acme, globex, admin_headers):
        client.post(f"{API}/admin/tenants/{globex['user']['tenant_id']}/suspend", json={}, headers=admin_headers)

        everything = client.get(f"{API}/admin/tenants", headers=admin_headers).json()
        suspended = client.get(f"{API}/admin/tenants?status=suspended", headers=admin_headers).json()
        searched = client.get(f"{API}/admin/tenants?search=acme", headers=admin_headers).json()

        assert everything["total"] == 2
        assert [t["subdomain"] for t in suspended["tenants"]] == ["globex"]
        assert [t["subdomain"] for t in searched["tenants"]] == ["acmetraders"]

        invalid = client.get(f"{API}/admin/tenants?status=archived", headers=admin_headers)
        assert invalid.status_code == 400

    def test_update_suspend_reactivate(self, client, acme, admin_headers):
        tenant_id = acme["user"]["tenant_id"]

        updated = client.put(
            f"{API}/admin/tenants/{tenant_id}",
            json={"company_name": "Acme Holdings", "storage_limit_mb": 2048},
            headers=admin_headers,
        ).json()
        assert updated["company_name"] == "Acme Holdings"
        assert updated["storage_limit_mb"] == 2048
        assert updated["db_name"] == "ledgerhub_acmetraders"

        suspended = client.post(
            f"{API}/admin/tenants/{tenant_id}/suspend", json={"reason": "unpaid"}, headers=admin_headers
        ).json()
        assert suspended["is_suspended"] is True
        assert suspended["suspended_reason"] == "unpaid"

        reactivated = client.post(f"{API}/admin/tenants/{tenant_id}/reactivate", headers=admin_headers).json()
        assert reactivated["is_suspended"] is False

    def test_stats_and_reprovision(self, client, acme, admin_headers):
        tenant_id = acme["user"]["tenant_id"]

        stats = client.get(f"{API}/admin/tenants/{tenant_id}/stats", headers=admin_headers)
        assert stats.status_code == 200
        assert stats.json()["tables"] == 4

        reprovisioned = client.post(f"{API}/admin/tenants/{tenant_id}/provision", headers=admin_headers)
        assert reprovisioned.status_code == 200
        assert reprovisioned.json()["db_provisioned"] is True

    def test_delete_requires_confirmation(self, client, acme, admin_headers, db_server):
        tenant_id = acme["user"]["tenant_id"]
        url = f"{API}/admin/tenants/{tenant_id}"

        refused = client.request("DELETE", url, json={"confirm": "yes"}, headers=admin_headers)
        assert refused.status_code == 400
        assert db_server.database_exists("ledgerhub_acmetraders")

        deleted = client.request("DELETE", url, json={"confirm": "DELETE"}, headers=admin_headers)
        assert deleted.status_code == 204
        assert not db_server.database_exists("ledgerhub_acmetraders")
        assert client.get(url, headers=admin_headers).status_code == 404

    def test_unknown_tenant(self, client, admin_headers):
        assert client.get(f"{API}/admin/tenants/missing", headers=admin_headers).status_code == 404


class TestMaintenance:

    @pytest.fixture
    def cron(self, client):
        cleanup_factory = MagicMock()
        cleanup_factory.return_value.run.return_value.to_dict.return_value = {
            "dry_run": True, "candidates": 0, "deleted": 0, "kept": 0,
            "marked_inactive": 0, "errors": 0, "results": [],
        }
        service = CronService(session_factory=MagicMock(), settings=get_settings(), cleanup_factory=cleanup_factory)
        service.initialize()
        client.app.dependency_overrides[get_cron_service] = lambda: service
        yield service
        service.shutdown()

    def test_cron_status_and_control(self, client, cron, admin_headers):
        status = client.get(f"{API}/admin/maintenance/cron", headers=admin_headers).json()
        assert status[TRIAL_CLEANUP_JOB]["running"] is True

        stopped = client.post(f"{API}/admin/maintenance/cron/{TRIAL_CLEANUP_JOB}/stop", headers=admin_headers)
        assert stopped.json()[TRIAL_CLEANUP_JOB]["running"] is False

        started = client.post(f"{API}/admin/maintenance/cron/{TRIAL_CLEANUP_JOB}/start", headers=admin_headers)
        assert started.json()[TRIAL_CLEANUP_JOB]["running"] is True

        unknown = client.post(f"{API}/admin/maintenance/cron/nightly-report/stop", headers=admin_headers)
        assert unknown.status_code == 400

    def test_trial_cleanup_defaults_to_dry_run(self, client, cron, admin_headers):
        response = client.post(f"{API}/admin/maintenance/trial-cleanup", json={}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert cron._cleanup_factory.call_args.kwargs["dry_run"] is True

    def test_schema_sync(self, client, acme, admin_headers):
        result = client.post(f"{API}/admin/maintenance/schema-sync", headers=admin_headers).json()
        assert result["total"] == 1
        assert result["errors"] == 0

    def test_storage(self, client, acme, admin_headers):
        report = client.get(f"{API}/admin/maintenance/storage", headers=admin_headers).json()
        assert report["status"] in ("ok", "warning", "critical")
        assert "ledgerhub_acmetraders" in [db["name"] for db in report["databases"]]

    def test_requires_platform_admin(self, client, acme):
        response = client.get(f"{API}/admin/maintenance/storage", headers=bearer(acme["access_token"]))
        assert response.status_code == 403
