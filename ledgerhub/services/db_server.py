"""
Database Server

Lifecycle primitives for the server that hosts tenant databases: create,
drop, list, size, grant and back up. The MySQL implementation runs against
the managed server named by DATABASE_URL. The SQLite implementation keeps
each database as a file next to the master database file and is used for
local development and tests.

SECURITY: Database names are interpolated into DDL (identifiers cannot be
bound parameters), so every name is validated before it reaches SQL.
"""
import logging
import os
import re
import shutil
import subprocess
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Union

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.exc import DBAPIError

from ledgerhub.config import get_settings
from ledgerhub.core.exceptions import BackupError, DatabasePrivilegeError, InvalidDatabaseName

logger = logging.getLogger(__name__)

DATABASE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]{1,64}$")

# MySQL server error numbers
ER_DBACCESS_DENIED_ERROR = 1044
ER_BAD_DB_ERROR = 1049
ER_CANT_CREATE_USER_WITH_GRANT = 1410


def validate_database_name(name: str) -> str:
    if not name or not DATABASE_NAME_PATTERN.match(name):
        raise InvalidDatabaseName(f"Invalid database name: {name!r}")
    return name


def mysql_errno(exc: BaseException) -> Optional[int]:
    """Server error number from a wrapped DBAPI error, if there is one."""
    orig = getattr(exc, "orig", None)
    args = getattr(orig, "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    return None


def _backup_filename(name: str, suffix: str) -> str:
    stamp = datetime.utcnow().strftime("%Y%m%dT%H%M%S")
    return f"{name}_{stamp}{suffix}"


class DatabaseServer:
    """Operations shared by every server implementation."""

    dialect = ""

    def __init__(self, url: Union[str, URL]):
        self.url = make_url(url)

    @property
    def master_database(self) -> Optional[str]:
        return self.url.database

    @property
    def host(self) -> str:
        return self.url.host or "localhost"

    @property
    def port(self) -> Optional[int]:
        return self.url.port

    @property
    def app_user(self) -> Optional[str]:
        return self.url.username

    def url_for(self, name: str) -> URL:
        raise NotImplementedError

    def database_exists(self, name: str) -> bool:
        raise NotImplementedError

    def create_database(self, name: str) -> None:
        raise NotImplementedError

    def drop_database(self, name: str) -> None:
        raise NotImplementedError

    def list_databases(self) -> List[str]:
        raise NotImplementedError

    def database_size(self, name: str) -> Dict[str, float]:
        """Returns {"size_mb": float, "tables": int}."""
        raise NotImplementedError

    def grant_hosts(self) -> List[str]:
        """Host patterns the application user must be granted on."""
        return []

    def grant_privileges(self, name: str, user: str, host: str) -> bool:
        return True

    def flush_privileges(self) -> None:
        return None

    def backup_database(self, name: str, dest_dir: Union[str, Path]) -> Path:
        raise NotImplementedError

    def dispose(self) -> None:
        return None


class MySQLServer(DatabaseServer):
    """
    MySQL / MariaDB server, including managed instances (RDS).

    DDL runs as DB_ROOT_USER when configured, otherwise as the user in
    DATABASE_URL.
    """

    dialect = "mysql"

    SYSTEM_DATABASES = frozenset({"information_schema", "mysql", "performance_schema", "sys"})

    def __init__(
        self,
        url: Union[str, URL],
        root_user: Optional[str] = None,
        root_password: Optional[str] = None,
    ):
        super().__init__(url)
        self.root_user = root_user or self.url.username
        self.root_password = root_password if root_password is not None else self.url.password
        self._admin_engine: Optional[Engine] = None

    @property
    def is_rds(self) -> bool:
        return "rds." in self.host

    def _admin(self) -> Engine:
        if self._admin_engine is None:
            admin_url = self.url.set(
                username=self.root_user,
                password=self.root_password,
                database=None,
            )
            self._admin_engine = create_engine(
                admin_url,
                isolation_level="AUTOCOMMIT",
                pool_pre_ping=True,
                pool_size=2,
                max_overflow=2,
            )
        return self._admin_engine

    def url_for(self, name: str) -> URL:
        return self.url.set(database=validate_database_name(name))

    def database_exists(self, name: str) -> bool:
        validate_database_name(name)
        with self._admin().connect() as conn:
            row = conn.execute(
                text("SELECT SCHEMA_NAME FROM INFORMATION_SCHEMA.SCHEMATA WHERE SCHEMA_NAME = :name"),
                {"name": name},
            ).first()
        return row is not None

    def create_privilege_grants(self) -> List[str]:
        return [
            f"GRANT CREATE DATABASE ON *.* TO '{self.root_user}'@'localhost';",
            f"GRANT CREATE DATABASE ON *.* TO '{self.root_user}'@'%';",
            "FLUSH PRIVILEGES;",
        ]

    def create_database(self, name: str) -> None:
        validate_database_name(name)
        try:
            with self._admin().connect() as conn:
                conn.execute(text(
                    f"CREATE DATABASE IF NOT EXISTS `{name}` "
                    "CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
                ))
        except DBAPIError as exc:
            if mysql_errno(exc) == ER_DBACCESS_DENIED_ERROR:
                statements = self.create_privilege_grants()
                logger.error(
                    f"User '{self.root_user}' lacks CREATE DATABASE privilege. "
                    f"Run as an administrator: {' '.join(statements)}"
                )
                raise DatabasePrivilegeError(
                    f"User '{self.root_user}' does not have CREATE DATABASE privilege",
                    grant_statements=statements,
                ) from exc
            raise
        logger.info(f"Database created: {name}", extra={"db_name": name})

    def drop_database(self, name: str) -> None:
        validate_database_name(name)
        with self._admin().connect() as conn:
            conn.execute(text(f"DROP DATABASE IF EXISTS `{name}`"))
        logger.info(f"Database dropped: {name}", extra={"db_name": name})

    def list_databases(self) -> List[str]:
        with self._admin().connect() as conn:
            rows = conn.execute(text("SHOW DATABASES")).fetchall()
        return [row[0] for row in rows if row[0] not in self.SYSTEM_DATABASES]

    def database_size(self, name: str) -> Dict[str, float]:
        validate_database_name(name)
        with self._admin().connect() as conn:
            row = conn.execute(
                text(
                    "SELECT COUNT(*) AS tables, "
                    "ROUND(COALESCE(SUM(data_length + index_length), 0) / 1024 / 1024, 2) AS size_mb "
                    "FROM information_schema.tables WHERE table_schema = :name"
                ),
                {"name": name},
            ).first()
        return {
            "size_mb": float(row.size_mb or 0) if row else 0.0,
            "tables": int(row.tables or 0) if row else 0,
        }

    def grant_hosts(self) -> List[str]:
        # RDS rejects grants to 'localhost'
        if self.is_rds:
            return ["%"]
        return ["%", "localhost"]

    def grant_privileges(self, name: str, user: str, host: str) -> bool:
        validate_database_name(name)
        try:
            with self._admin().connect() as conn:
                conn.execute(
                    text(f"GRANT ALL PRIVILEGES ON `{name}`.* TO :user@:host"),
                    {"user": user, "host": host},
                )
        except DBAPIError as exc:
            if mysql_errno(exc) == ER_CANT_CREATE_USER_WITH_GRANT:
                logger.warning(f"Cannot GRANT to '{user}'@'{host}' on {name}: {exc.orig}")
                return False
            raise
        logger.info(f"Privileges granted to '{user}'@'{host}' on {name}")
        return True

    def flush_privileges(self) -> None:
        try:
            with self._admin().connect() as conn:
                conn.execute(text("FLUSH PRIVILEGES"))
        except DBAPIError as exc:
            logger.warning(f"Could not FLUSH PRIVILEGES: {exc.orig}")

    def backup_database(self, name: str, dest_dir: Union[str, Path]) -> Path:
        validate_database_name(name)
        dest = Path(dest_dir)
        dest.mkdir(parents=True, exist_ok=True)
        target = dest / _backup_filename(name, ".sql")

        command = [
            "mysqldump",
            f"--host={self.host}",
            f"--port={self.port or 3306}",
            f"--user={self.root_user}",
            "--single-transaction",
            "--routines",
            "--triggers",
            name,
        ]
        env = dict(os.environ)
        if self.root_password:
            env["MYSQL_PWD"] = self.root_password

        try:
            with open(target, "wb") as out:
                result = subprocess.run(command, stdout=out, stderr=subprocess.PIPE, env=env, check=False)
        except OSError as exc:
            target.unlink(missing_ok=True)
            raise BackupError(f"Backup of {name} failed: {exc}") from exc

        if result.returncode != 0:
            target.unlink(missing_ok=True)
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise BackupError(f"mysqldump exited with {result.returncode} for {name}: {stderr}")

        logger.info(f"Backup created: {target}", extra={"db_name": name})
        return target

    def dispose(self) -> None:
        if self._admin_engine is not None:
            self._admin_engine.dispose()
            self._admin_engine = None


class SQLiteServer(DatabaseServer):
    """
    Directory of SQLite files standing in for a database server.

    The master database file decides the directory; database `name` lives
    at `<dir>/<name>.db`.
    """

    dialect = "sqlite"

    def __init__(self, url: Union[str, URL]):
        super().__init__(url)
        if not self.url.database or self.url.database == ":memory:":
            raise ValueError("SQLite database server needs a file-backed master database")
        self.directory = Path(self.url.database).resolve().parent

    @property
    def master_database(self) -> Optional[str]:
        return Path(self.url.database).stem

    def path_for(self, name: str) -> Path:
        return self.directory / f"{validate_database_name(name)}.db"

    def url_for(self, name: str) -> URL:
        return self.url.set(database=str(self.path_for(name)))

    def database_exists(self, name: str) -> bool:
        return self.path_for(name).exists()

    def create_database(self, name: str) -> None:
        path = self.path_for(name)
        self.directory.mkdir(parents=True, exist_ok=True)
        path.touch(exist_ok=True)
        logger.info(f"Database created: {name}", extra={"db_name": name})

    def drop_database(self, name: str) -> None:
        self.path_for(name).unlink(missing_ok=True)
        logger.info(f"Database dropped: {name}", extra={"db_name": name})

    def list_databases(self) -> List[str]:
        if not self.directory.exists():
            return []
        return sorted(path.stem for path in self.directory.glob("*.db"))

    def database_size(self, name: str) -> Dict[str, float]:
        path = self.path_for(name)
        if not path.exists():
            return {"size_mb": 0.0, "tables": 0}

        engine = create_engine(self.url_for(name))
        try:
            with engine.connect() as conn:
                tables = conn.execute(
                    text("SELECT COUNT(*) FROM sqlite_master WHERE type = 'table'")
                ).scalar()
        finally:
            engine.dispose()
        return {
            "size_mb": round(path.stat().st_size / 1024 / 1024, 2),
            "tables": int(tables or 0),
        }

    def backup_database(self, name: str, dest_dir: Union[str, Path]) -> Path:
        source = self.path_for(name)
        if not source.exists():
            raise BackupError(f"Database file not found: {source}")

        dest = Path(dest_dir)
        try:
            dest.mkdir(parents=True, exist_ok=True)
            target = dest / _backup_filename(name, ".db")
            shutil.copy2(source, target)
        except OSError as exc:
            raise BackupError(f"Backup of {name} failed: {exc}") from exc

        logger.info(f"Backup created: {target}", extra={"db_name": name})
        return target


def create_database_server(
    url: Union[str, URL],
    root_user: Optional[str] = None,
    root_password: Optional[str] = None,
) -> DatabaseServer:
    """Pick the server implementation from the URL's backend."""
    parsed = make_url(url)
    backend = parsed.get_backend_name()
    if backend == "sqlite":
        return SQLiteServer(parsed)
    if backend in ("mysql", "mariadb"):
        return MySQLServer(parsed, root_user=root_user, root_password=root_password)
    raise ValueError(f"Unsupported database backend: {backend}")


@lru_cache()
def get_database_server() -> DatabaseServer:
    """Server for the configured DATABASE_URL."""
    settings = get_settings()
    return create_database_server(
        settings.DATABASE_URL,
        root_user=settings.DB_ROOT_USER,
        root_password=settings.DB_ROOT_PASSWORD,
    )
