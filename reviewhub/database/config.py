"""
Database configuration and connection management for reviewhub.

The backing store holds shops, flash-sale vouchers with their durable stock
and persisted voucher orders. Supported backends:
- SQLite (default; in-memory for tests)
- MySQL/MariaDB
- PostgreSQL

The URL comes from DATABASE_URL, or is assembled from DB_* variables.
"""

import os
import logging
import threading
from typing import Optional, Dict, Any, Iterator
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool, QueuePool
from sqlalchemy.exc import SQLAlchemyError
from contextlib import contextmanager, nullcontext
from pathlib import Path

from .models import create_all_tables

logger = logging.getLogger(__name__)

# DB_TYPE -> (driver prefix, default port, default user)
_SERVER_BACKENDS = {
    'mysql': ('mysql+pymysql', '3306', 'root'),
    'mariadb': ('mysql+pymysql', '3306', 'root'),
    'postgresql': ('postgresql', '5432', 'postgres'),
}


def build_database_url() -> str:
    """
    Assemble a database URL from the environment.

    Environment variables:
    - DATABASE_URL: Complete URL, used as-is when set
    - DB_TYPE: sqlite (default), mysql, mariadb or postgresql
    - DB_HOST / DB_PORT / DB_NAME / DB_USER / DB_PASSWORD

    Raises:
        ValueError: For an unsupported DB_TYPE
    """
    database_url = os.getenv('DATABASE_URL')
    if database_url:
        return database_url

    db_type = os.getenv('DB_TYPE', 'sqlite').lower()
    if db_type == 'sqlite':
        db_path = Path(__file__).parent.parent.parent / os.getenv('DB_NAME', 'reviewhub.db')
        return f"sqlite:///{db_path}"

    if db_type not in _SERVER_BACKENDS:
        raise ValueError(f"Unsupported database type: {db_type}")

    driver, default_port, default_user = _SERVER_BACKENDS[db_type]
    user = os.getenv('DB_USER', default_user)
    password = os.getenv('DB_PASSWORD', '')
    host = os.getenv('DB_HOST', 'localhost')
    port = os.getenv('DB_PORT', default_port)
    name = os.getenv('DB_NAME', 'reviewhub')
    url = f"{driver}://{user}:{password}@{host}:{port}/{name}"
    return f"{url}?charset=utf8mb4" if driver.startswith('mysql') else url


class DatabaseConfig:
    """
    Owns the engine and session factory for the backing store.

    Sessions are handed out through get_session_context, which commits on
    success and rolls back on error. Repositories accept an open session so
    the order worker can decrement stock and insert the order atomically.
    """

    def __init__(self, database_url: Optional[str] = None, echo: bool = False):
        """
        Args:
            database_url: Optional URL override; defaults to build_database_url()
            echo: Log every SQL statement
        """
        self.database_url = database_url or build_database_url()
        self.echo = echo
        url = make_url(self.database_url)
        self.db_type = url.get_backend_name()
        self.in_memory = self.db_type == 'sqlite' and url.database in (None, '', ':memory:')
        # An in-memory database lives on a single shared connection, which
        # sqlite3 cannot use from two threads at once
        self._memory_lock = threading.RLock() if self.in_memory else None
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None

        logger.info(f"Database configuration initialized for {self.db_type}")

    @property
    def is_initialized(self) -> bool:
        return self.engine is not None

    def _engine_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {'echo': self.echo}

        if self.in_memory:
            # Every session must reach the same in-memory database
            kwargs['poolclass'] = StaticPool
            kwargs['connect_args'] = {'check_same_thread': False}
        elif self.db_type == 'sqlite':
            # Default pool: each thread checks out its own connection
            kwargs['connect_args'] = {'check_same_thread': False, 'timeout': 30}
        else:
            kwargs.update(
                poolclass=QueuePool,
                pool_size=int(os.getenv('DB_POOL_SIZE', '10')),
                max_overflow=int(os.getenv('DB_MAX_OVERFLOW', '20')),
                pool_timeout=int(os.getenv('DB_POOL_TIMEOUT', '30')),
                pool_recycle=int(os.getenv('DB_POOL_RECYCLE', '3600')),
                pool_pre_ping=True,
            )
        return kwargs

    def initialize(self) -> None:
        """
        Create the engine, verify it with a round trip and build the session factory.

        Raises:
            SQLAlchemyError: If the database cannot be reached
        """
        if self.is_initialized:
            return

        engine = create_engine(self.database_url, **self._engine_kwargs())
        if self.db_type == 'sqlite':
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)

        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            engine.dispose()
            logger.error(f"Failed to initialize database: {e}")
            raise

        self.engine = engine
        self.SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        logger.info(f"Database engine initialized ({self.db_type})")

    def create_tables(self) -> None:
        """Create all tables that do not exist yet."""
        self.initialize()
        with self._serialized():
            create_all_tables(self.engine)
        logger.info("Database tables created successfully")

    def get_session(self) -> Session:
        """A new session; the caller closes it."""
        self.initialize()
        return self.SessionLocal()

    def _serialized(self):
        """Hold the shared-connection lock for in-memory SQLite, no-op otherwise."""
        return self._memory_lock if self._memory_lock is not None else nullcontext()

    @contextmanager
    def get_session_context(self) -> Iterator[Session]:
        """
        Session scope with commit on success and rollback on error.

        Usage:
            with db_config.get_session_context() as session:
                session.add(row)
        """
        with self._serialized():
            session = self.get_session()
            try:
                yield session
                session.commit()
            except Exception as e:
                session.rollback()
                logger.error(f"Database session error: {e}")
                raise
            finally:
                session.close()

    def test_connection(self) -> bool:
        """Whether a trivial query succeeds."""
        try:
            self.initialize()
            with self._serialized(), self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error(f"Database connection test failed: {e}")
            return False
        return True

    def get_connection_info(self) -> Dict[str, Any]:
        """Connection details for the check command, credentials stripped."""
        return {
            'database_type': self.db_type,
            'database_url': self.database_url.rsplit('@', 1)[-1],
            'is_initialized': self.is_initialized,
            'echo_enabled': self.echo,
        }

    def close(self) -> None:
        """Dispose of the engine and its pooled connections."""
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None
            self.SessionLocal = None
            logger.info("Database connections closed")


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
