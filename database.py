# database.py
# Establishes connection to SQL database (Postgres, or SQLite for local runs and tests) and ORM setup.

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from config import settings

SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL


def build_engine(database_url: str) -> AsyncEngine:
    """Create the async engine for ``database_url``.

    SQLite gets the driver-level BEGIN handling SQLAlchemy recommends so that
    SAVEPOINTs (used when staging notifications) behave.
    """
    connect_args = {}
    if database_url.startswith("postgresql"):
        connect_args = {
            "timeout": 30,  # 30 second connection timeout
            "server_settings": {"application_name": "ddfinance_backoffice"}
        }

    async_engine = create_async_engine(
        database_url,
        echo=False,
        poolclass=NullPool,  # Avoid connection pool issues with async
        connect_args=connect_args,
    )

    if async_engine.dialect.name == "sqlite":
        @event.listens_for(async_engine.sync_engine, "connect")
        def _disable_driver_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(async_engine.sync_engine, "begin")
        def _emit_begin(conn):
            conn.exec_driver_sql("BEGIN")

    return async_engine


engine = build_engine(SQLALCHEMY_DATABASE_URL)

SessionLocal = async_sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False  # Better for read-heavy operations
)

Base = declarative_base()

