import logging
import os
import time
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import DATABASE_URL, DB_STATEMENT_TIMEOUT_MS
from .errors import StoreUnavailableError

logger = logging.getLogger(__name__)

# Get environment-specific pool settings
POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "20"))
MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "30"))
POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))
POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "300"))
ENABLE_QUERY_LOGGING = os.getenv("DB_LOG_SLOW_QUERIES", "true").lower() == "true"
SLOW_QUERY_THRESHOLD = float(os.getenv("DB_SLOW_QUERY_THRESHOLD", "1.0"))


def postgres_connect_args(statement_timeout_ms: int = DB_STATEMENT_TIMEOUT_MS) -> dict:
    """libpq options that bound every statement on a connection (0 = unbounded)"""
    if statement_timeout_ms <= 0:
        return {}
    return {"options": f"-c statement_timeout={int(statement_timeout_ms)}"}


def create_db_engine(url: str):
    """
    Build an engine for the given URL.

    PostgreSQL gets the pooled configuration, with every statement bounded by
    DB_STATEMENT_TIMEOUT_MS. SQLite starts every transaction with BEGIN
    IMMEDIATE so concurrent writers queue on the database lock instead of
    failing halfway through a booking.
    """
    if url.startswith("sqlite"):
        db_engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": POOL_TIMEOUT},
            echo=False,
        )

        @event.listens_for(db_engine, "connect")
        def _sqlite_connect(dbapi_connection, _connection_record):
            # Let SQLAlchemy emit BEGIN itself
            dbapi_connection.isolation_level = None

        @event.listens_for(db_engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    else:
        db_engine = create_engine(
            url,
            pool_pre_ping=True,  # Test connections before using
            pool_recycle=POOL_RECYCLE,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            connect_args=postgres_connect_args(),
            echo=False,  # Don't log all SQL (use slow query logging instead)
        )

    # Slow query logging for performance monitoring
    if ENABLE_QUERY_LOGGING:

        @event.listens_for(db_engine, "before_cursor_execute")
        def before_cursor_execute(conn, _cursor, statement, _parameters, context, _executemany):
            conn.info.setdefault("query_start_time", []).append(time.time())

        @event.listens_for(db_engine, "after_cursor_execute")
        def after_cursor_execute(conn, _cursor, statement, _parameters, context, _executemany):
            total = time.time() - conn.info["query_start_time"].pop(-1)
            if total > SLOW_QUERY_THRESHOLD:
                logger.warning(f"🐌 Slow query ({total:.2f}s): {statement[:200]}...")

    return db_engine


try:
    engine = create_db_engine(DATABASE_URL)
    logger.info(f"✅ Database engine created ({engine.dialect.name})")
    if engine.dialect.name != "sqlite":
        logger.info(
            f"📊 Connection pool: size={POOL_SIZE}, max_overflow={MAX_OVERFLOW}, timeout={POOL_TIMEOUT}s"
        )
except Exception as e:
    logger.error(f"❌ Failed to create database engine: {e}")
    raise

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def dialect_insert(db, model):
    """Return an INSERT construct that supports ON CONFLICT for the session's dialect"""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Upserts are not supported on {dialect}")
    return insert(model)


@contextmanager
def store_errors(db, message: str):
    """
    Roll back and raise StoreUnavailableError when the database fails inside
    the block. Booking engine errors pass through untouched.
    """
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"❌ {message}: {e}")
        try:
            db.rollback()
        except SQLAlchemyError as rollback_error:
            logger.error(f"❌ Rollback failed: {rollback_error}")
        raise StoreUnavailableError(message) from e


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
