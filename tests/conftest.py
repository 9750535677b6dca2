"""
Shared fixtures.

Settings are read at import time, so the environment is pointed at a
throwaway SQLite master database before anything from ledgerhub is
imported. Tenant databases are SQLite files in the same directory.
"""
import fnmatch
import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="ledgerhub-tests-")

os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'ledgerhub_master.db')}"
os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["CRON_ENABLED"] = "false"
os.environ["CLEANUP_LOG_FILE"] = os.path.join(_TMP_DIR, "logs", "trial-cleanup.log")
os.environ["CLEANUP_BACKUP_DIR"] = os.path.join(_TMP_DIR, "backups")
os.environ["CLEANUP_TENANT_DELAY_SECONDS"] = "0"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import ledgerhub.models  # noqa: E402,F401
from ledgerhub.core.security import get_password_hash  # noqa: E402
from ledgerhub.core.sessions import SessionStore, get_session_store  # noqa: E402
from ledgerhub.database import Base, SessionLocal, engine  # noqa: E402
from ledgerhub.main import app  # noqa: E402
from ledgerhub.models.user import User, UserRole  # noqa: E402
from ledgerhub.services.db_server import get_database_server  # noqa: E402
from ledgerhub.services.master_init import seed_master_data  # noqa: E402
from ledgerhub.services.provisioning import TenantProvisioningService  # noqa: E402
from ledgerhub.services.tenant_connections import TenantConnectionManager, tenant_connections  # noqa: E402

TEST_PASSWORD = "correct-horse-battery"


class FakeRedis:
    """In-memory stand-in for the redis client calls the app makes."""

    def __init__(self):
        self.store = {}

    def ping(self):
        return True

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value):
        self.store[key] = str(value)
        return True

    def setex(self, key, ttl, value):
        self.store[key] = str(value)
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    def exists(self, key):
        return int(key in self.store)

    def scan_iter(self, match="*"):
        return [key for key in list(self.store) if fnmatch.fnmatchcase(key, match)]


@pytest.fixture(autouse=True)
def reset_databases():
    """Fresh master tables with seeded master data, and no tenant databases."""
    tenant_connections.close_all()
    server = get_database_server()
    for name in server.list_databases():
        if name != server.master_database:
            server.drop_database(name)

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_master_data(db)
    finally:
        db.close()

    yield

    tenant_connections.close_all()
    app.dependency_overrides.clear()


@pytest.fixture
def db_server():
    return get_database_server()


@pytest.fixture
def db():
    """Master database session."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def connections(db_server):
    manager = TenantConnectionManager(server=db_server)
    yield manager
    manager.close_all()


@pytest.fixture
def provisioning(db, db_server, connections):
    return TenantProvisioningService(db, server=db_server, connections=connections)


@pytest.fixture
def make_tenant(provisioning):
    """Factory: create and provision a tenant."""

    def _make(subdomain, **overrides):
        data = {
            "company_name": f"{subdomain.title()} Traders",
            "subdomain": subdomain,
            "email": f"owner@{subdomain}.in",
        }
        data.update(overrides)
        now = data.pop("now", None)
        return provisioning.create_tenant(data, now=now)["tenant"]

    return _make


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def session_store(fake_redis):
    return SessionStore(fake_redis)


@pytest.fixture
def client(session_store):
    """API client with Redis replaced by FakeRedis. Lifespan does not run."""
    app.dependency_overrides[get_session_store] = lambda: session_store
    return TestClient(app)


@pytest.fixture
def platform_admin(db):
    admin = User(
        email="admin@ledgerhub.in",
        hashed_password=get_password_hash(TEST_PASSWORD),
        full_name="Platform Administrator",
        role=UserRole.PLATFORM_ADMIN,
        tenant_id=None,
    )
    db.add(admin)
    db.commit()
    return admin


@pytest.fixture
def admin_headers(platform_admin, session_store):
    tokens = session_store.issue_tokens(platform_admin)
    return {"Authorization": f"Bearer {tokens['access_token']}"}
