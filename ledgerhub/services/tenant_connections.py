"""
Tenant Connection Manager

One SQLAlchemy engine per tenant, created on first use and cached by
tenant id. Engines for dropped databases must be closed before the drop.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from ledgerhub.config import get_settings
from ledgerhub.models.tenant import TenantMaster
from ledgerhub.services.db_server import DatabaseServer, get_database_server

logger = logging.getLogger(__name__)


class TenantConnectionManager:

    def __init__(self, server: Optional[DatabaseServer] = None, pool_size: Optional[int] = None):
        self._server = server
        self._pool_size = pool_size or get_settings().TENANT_POOL_SIZE
        self._engines: Dict[str, Engine] = {}
        self._lock = threading.Lock()

    @property
    def server(self) -> DatabaseServer:
        if self._server is None:
            self._server = get_database_server()
        return self._server

    def _create_engine(self, db_name: str) -> Engine:
        url = self.server.url_for(db_name)
        if self.server.dialect == "sqlite":
            return create_engine(url, connect_args={"check_same_thread": False})
        return create_engine(
            url,
            pool_size=self._pool_size,
            max_overflow=self._pool_size,
            pool_pre_ping=True,
            pool_recycle=3600,
        )

    def get_engine(self, tenant: TenantMaster) -> Engine:
        if not tenant.db_name:
            raise ValueError(f"Tenant {tenant.id} has no database")

        with self._lock:
            engine = self._engines.get(tenant.id)
            if engine is None:
                engine = self._create_engine(tenant.db_name)
                self._engines[tenant.id] = engine
                logger.debug(
                    f"Opened tenant engine for {tenant.db_name}",
                    extra={"tenant_id": tenant.id, "db_name": tenant.db_name}
                )
            return engine

    @contextmanager
    def session(self, tenant: TenantMaster) -> Iterator[Session]:
        """Session on the tenant database; commits on success, rolls back on error."""
        factory = sessionmaker(bind=self.get_engine(tenant), autoflush=False, expire_on_commit=False)
        db = factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def close(self, tenant_id: str) -> None:
        with self._lock:
            engine = self._engines.pop(tenant_id, None)
        if engine is not None:
            engine.dispose()
            logger.debug("Closed tenant engine", extra={"tenant_id": tenant_id})

    def close_all(self) -> None:
        with self._lock:
            engines = list(self._engines.values())
            self._engines.clear()
        for engine in engines:
            engine.dispose()

    def __contains__(self, tenant_id: str) -> bool:
        return tenant_id in self._engines


tenant_connections = TenantConnectionManager()
