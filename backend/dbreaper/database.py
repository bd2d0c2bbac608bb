from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from functools import lru_cache
import logging
from dbreaper.config import get_settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def create_reaper_engine(database_url: str, **kwargs) -> Engine:
    """
    Create an engine suitable for reaping.

    pysqlite runs DDL outside of transactions by default, which would let a
    rolled back reap leave its backup table behind. For SQLite we take over
    BEGIN ourselves so CREATE/DROP TABLE are part of the transaction.
    """
    if database_url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        engine = create_engine(database_url, **kwargs)

        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            if ":memory:" not in database_url and database_url != "sqlite://":
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.close()

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN")

        return engine

    kwargs.setdefault("pool_pre_ping", True)
    if "poolclass" not in kwargs:
        kwargs.setdefault("pool_size", 5)
        kwargs.setdefault("max_overflow", 10)
    return create_engine(database_url, **kwargs)


@lru_cache()
def get_engine() -> Engine:
    return create_reaper_engine(get_settings().database_url)


@lru_cache()
def get_session_factory() -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def get_db():
    """Dependency for FastAPI routes to get database session"""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def init_db(engine: Engine = None):
    """Initialize database tables"""
    Base.metadata.create_all(bind=engine or get_engine())


def check_db_connection(engine: Engine = None) -> bool:
    """Check if database connection is working"""
    try:
        with (engine or get_engine()).connect() as connection:
            connection.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("Database connection check failed: %s", e)
        return False
