"""
SQL Execution Layer

The lock executor talks to the database only through the small SqlCaller
interface defined here. PostgresSqlCaller implements it on top of a psycopg2
connection pool, giving every thread its own connection so that a session
lock is released on the same backend that acquired it.
"""

import importlib
import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Generator, Optional, Protocol, Union, runtime_checkable

import psycopg2
from psycopg2 import pool, sql
from psycopg2.extensions import TRANSACTION_STATUS_IDLE, TRANSACTION_STATUS_UNKNOWN

logger = logging.getLogger(__name__)


@runtime_checkable
class SqlCaller(Protocol):
    """Capabilities the lock executor needs from the database layer."""

    def execute(self, statement: str) -> None:
        """Run a statement, ignoring its result."""

    def select_value(self, statement: str) -> Any:
        """Run a statement and return the first column of the first row."""

    def transaction(self):
        """Context manager: commit on normal exit, roll back on error."""

    def transaction_open(self) -> bool:
        """Whether a transaction is open on the current connection."""

    def quote(self, value: Any) -> str:
        """Render value as a SQL string literal."""


def resolve_sql_caller(target: Union[str, Any]) -> Any:
    """
    Resolve a SQL caller given as an object or a 'module:attribute' path.

    Args:
        target: SqlCaller object, or dotted path such as 'myapp.db:sql_caller'

    Returns:
        The SqlCaller object

    Raises:
        ImportError: If the module can't be imported
        AttributeError: If the attribute doesn't exist
    """
    if not isinstance(target, str):
        return target

    module_path, _, attribute = target.partition(':')
    if not attribute:
        module_path, _, attribute = target.rpartition('.')
    if not module_path or not attribute:
        raise ImportError(f"Invalid SQL caller path '{target}', expected 'module:attribute'")

    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise ImportError(f"Failed to load SQL caller module '{module_path}': {e}")

    if not hasattr(module, attribute):
        raise AttributeError(f"Module '{module_path}' has no SQL caller '{attribute}'")
    return getattr(module, attribute)


def create_sql_caller_with_retry(
    connection_string: str,
    max_attempts: int = 5,
    delay: float = 2.0,
    **kwargs
) -> 'PostgresSqlCaller':
    """
    Create a PostgresSqlCaller, retrying while PostgreSQL is not ready.

    Useful at container or application startup, before the database
    accepts connections.

    Args:
        connection_string: PostgreSQL connection string
        max_attempts: Maximum number of connection attempts (default: 5)
        delay: Delay in seconds between attempts (default: 2.0)
        **kwargs: Additional arguments passed to PostgresSqlCaller

    Raises:
        ValueError: If parameters are invalid
        psycopg2.OperationalError: If all connection attempts fail
    """
    PostgresSqlCaller._validate_connection_string(connection_string)

    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    if delay < 0:
        raise ValueError(f"delay must be >= 0, got {delay}")

    for attempt in range(1, max_attempts + 1):
        try:
            logger.info(f"Connecting to PostgreSQL (attempt {attempt}/{max_attempts})...")
            return PostgresSqlCaller(connection_string, **kwargs)
        except psycopg2.OperationalError as e:
            if attempt == max_attempts:
                logger.error(
                    f"Failed to connect after {max_attempts} attempts. Last error: {e}"
                )
                raise
            logger.warning(
                f"Connection attempt {attempt}/{max_attempts} failed: {e}. "
                f"Retrying in {delay}s..."
            )
            time.sleep(delay)

    raise RuntimeError("Failed to create SQL caller")


class PostgresSqlCaller:
    """
    psycopg2-backed SqlCaller.

    Connections run in autocommit mode; transaction() wraps work in an
    explicit BEGIN/COMMIT and joins a transaction that is already open.

    Example:
        >>> with PostgresSqlCaller(conn_string) as caller:
        ...     with caller.transaction():
        ...         caller.execute("SELECT pg_advisory_xact_lock(1000)")
    """

    def __init__(self, connection_string: str, min_conn: int = 1, max_conn: int = 10):
        """
        Args:
            connection_string: PostgreSQL connection string
            min_conn: Minimum connections in pool (must be >= 1)
            max_conn: Maximum connections in pool (must be >= min_conn)

        Raises:
            ValueError: If any parameter is invalid
        """
        self._validate_connection_string(connection_string)

        if min_conn < 1:
            raise ValueError(f"min_conn must be >= 1, got {min_conn}")

        if max_conn < min_conn:
            raise ValueError(
                f"min_conn ({min_conn}) cannot be greater than max_conn ({max_conn})"
            )

        self.connection_string = connection_string
        self.connection_pool = pool.ThreadedConnectionPool(min_conn, max_conn, connection_string)
        self._local = threading.local()
        self._closed = False
        logger.debug(f"PostgresSqlCaller initialized with pool size {min_conn}-{max_conn}")

    @staticmethod
    def _validate_connection_string(connection_string: str) -> None:
        if not connection_string or not connection_string.strip():
            raise ValueError("connection_string cannot be empty")

    def connection(self):
        """Return this thread's connection, checking one out of the pool if needed."""
        if self._closed:
            raise RuntimeError("PostgresSqlCaller has been closed and cannot be used")

        conn = getattr(self._local, 'connection', None)
        if conn is None or conn.closed:
            conn = self.connection_pool.getconn()
            conn.autocommit = True
            self._local.connection = conn
        return conn

    def release_connection(self) -> None:
        """
        Return this thread's connection to the pool.

        Session locks still held on it stay held by the pooled connection,
        so call this only once all of the thread's locks are released.
        """
        conn = getattr(self._local, 'connection', None)
        self._local.connection = None
        if conn is None:
            return
        if self.transaction_status(conn) != TRANSACTION_STATUS_IDLE:
            logger.warning("Releasing connection with an open transaction, rolling back")
            conn.rollback()
        self.connection_pool.putconn(conn, close=bool(conn.closed))

    @staticmethod
    def transaction_status(conn) -> int:
        if conn.closed:
            return TRANSACTION_STATUS_UNKNOWN
        return conn.get_transaction_status()

    def execute(self, statement: str) -> None:
        logger.debug(statement)
        with self.connection().cursor() as cursor:
            cursor.execute(statement)

    def select_value(self, statement: str) -> Any:
        logger.debug(statement)
        with self.connection().cursor() as cursor:
            cursor.execute(statement)
            row = cursor.fetchone()
        return row[0] if row else None

    def transaction_open(self) -> bool:
        conn = getattr(self._local, 'connection', None)
        if conn is None:
            return False
        return self.transaction_status(conn) != TRANSACTION_STATUS_IDLE

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        """Run the with-block in a transaction, joining an open one."""
        if self.transaction_open():
            yield
            return

        self.execute("BEGIN")
        try:
            yield
        except BaseException:
            self._rollback()
            raise
        self.execute("COMMIT")

    def _rollback(self) -> None:
        conn = self.connection()
        if self.transaction_status(conn) == TRANSACTION_STATUS_UNKNOWN:
            # Connection is gone; the server already ended the transaction.
            return
        self.execute("ROLLBACK")

    def quote(self, value: Any) -> str:
        return sql.Literal(str(value)).as_string(self.connection())

    def close(self) -> None:
        """Close every connection in the pool."""
        if self._closed:
            return
        self._closed = True
        self.connection_pool.closeall()
        logger.debug("Connection pool closed")

    def __enter__(self) -> 'PostgresSqlCaller':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False
