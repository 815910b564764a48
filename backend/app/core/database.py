"""
Database configuration and session management
"""
import logging
import time
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.core.config import get_settings
from app.core.logging_config import LoggingConfig
from app.core.metrics import (db_connection_pool_size, db_queries_total,
                              db_query_duration_seconds)

# Lazy initialization - engine is created once, on first use
_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None

# Base class for models (can be created immediately)
Base = declarative_base()

_TABLE_KEYWORDS = {"select": "FROM", "insert": "INTO", "delete": "FROM"}


def _statement_table(operation: str, statement: str) -> str:
    """Best-effort table name for metric labels"""
    words = statement.split()
    if operation == "update" and len(words) > 1:
        return words[1].lower().strip(';"')
    keyword = _TABLE_KEYWORDS.get(operation)
    if keyword is None:
        return "unknown"
    for i, word in enumerate(words[:-1]):
        if word.upper() == keyword:
            return words[i + 1].lower().strip(';"')
    return "unknown"


def _setup_db_metrics(engine: Engine):
    """Setup SQLAlchemy event listeners for database metrics"""

    @event.listens_for(engine, "before_cursor_execute")
    def receive_before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        """Record query start time"""
        conn.info.setdefault('query_start_time', []).append(time.time())

    @event.listens_for(engine, "after_cursor_execute")
    def receive_after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        """Record query metrics"""
        if not conn.info.get('query_start_time'):
            return
        duration = time.time() - conn.info['query_start_time'].pop()
        stripped = statement.strip()
        operation = stripped.split()[0].lower() if stripped else "unknown"
        table = _statement_table(operation, stripped)
        db_queries_total.labels(operation=operation, table=table).inc()
        db_query_duration_seconds.labels(operation=operation, table=table).observe(duration)

    @event.listens_for(engine, "checkout")
    def receive_checkout(dbapi_conn, connection_record, connection_proxy):
        """Update connection pool metrics on checkout"""
        _record_pool_state(engine)

    @event.listens_for(engine, "checkin")
    def receive_checkin(dbapi_conn, connection_record):
        """Update connection pool metrics on checkin"""
        _record_pool_state(engine)


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


def _setup_sqlite_functions(engine: Engine):
    """Replace SQLite's ASCII-only lower() with a Unicode-aware one"""

    @event.listens_for(engine, "connect")
    def receive_connect(dbapi_conn, connection_record):
        dbapi_conn.create_function("lower", 1, _unicode_lower, deterministic=True)


def _record_pool_state(engine: Engine):
    pool = engine.pool
    if not hasattr(pool, "checkedout"):
        return
    checked_out = pool.checkedout()
    db_connection_pool_size.labels(state="active").set(checked_out)
    db_connection_pool_size.labels(state="idle").set(max(pool.size() - checked_out, 0))


def get_engine() -> Engine:
    """Get or create database engine (lazy initialization)"""
    global _engine
    if _engine is None:
        settings = get_settings()
        LoggingConfig.configure()

        url = settings.database_url
        if url.startswith("sqlite"):
            # Request handlers run in a threadpool; sessions never share connections
            engine_kwargs = {
                "connect_args": {"check_same_thread": False, "timeout": 5},
            }
        else:
            engine_kwargs = {
                "pool_size": settings.database_pool_size,
                "max_overflow": settings.database_max_overflow,
                "pool_pre_ping": True,
                "connect_args": {
                    "connect_timeout": 5,
                    "options": "-c statement_timeout=5000",
                },
            }

        _engine = create_engine(url, echo=settings.log_sqlalchemy, **engine_kwargs)

        sqlalchemy_logger = logging.getLogger("sqlalchemy.engine")
        if not settings.log_sqlalchemy:
            sqlalchemy_logger.setLevel(logging.WARNING)
            sqlalchemy_logger.propagate = False

        _setup_db_metrics(_engine)
        if url.startswith("sqlite"):
            _setup_sqlite_functions(_engine)

    return _engine


def get_session_local() -> sessionmaker:
    """Get or create session factory (lazy initialization)"""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _SessionLocal


def __getattr__(name):
    """Module-level access to the lazily created engine and SessionLocal"""
    if name == 'engine':
        return get_engine()
    elif name == 'SessionLocal':
        return get_session_local()
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database session
    """
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
