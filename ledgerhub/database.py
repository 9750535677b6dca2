"""
Database Configuration and Session Management

SQLAlchemy setup for the master database, which stores tenant metadata,
platform users and shared accounting master data. Tenant databases get
their own engines from services.tenant_connections.
"""
import logging

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from ledgerhub.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def _engine_options(url: str) -> dict:
    """Pool options; SQLite does not accept QueuePool sizing arguments."""
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }


engine = create_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    **_engine_options(settings.DATABASE_URL),
)

# expire_on_commit=False so tenant records stay readable after commit
# while provisioning continues on other connections.
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False
)

Base = declarative_base()


@event.listens_for(engine, "connect")
def set_session_timezone(dbapi_connection, connection_record):
    """Pin every MySQL connection to UTC."""
    if settings.DATABASE_URL.startswith("mysql"):
        cursor = dbapi_connection.cursor()
        cursor.execute("SET time_zone = '+00:00'")
        cursor.close()
    logger.debug("New master database connection established")


def get_db() -> Session:
    """
    Dependency function that provides a master database session.

    The session is closed after the request completes.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create master tables that do not exist yet."""
    # Import models so they register on Base.metadata
    import ledgerhub.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
