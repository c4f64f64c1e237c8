"""
pg_advisory_lock
Named PostgreSQL advisory locks for mutual exclusion across processes that
share one database
"""

from pg_advisory_lock.exceptions import (
    AdvisoryLockError,
    InvalidDefinition,
    UnknownLockName,
    KeyArityExceeded,
    KeyOutOfRange,
    BlockRequiredError,
    LockNotObtained,
    ConfigurationError
)

from pg_advisory_lock.registry import LockRegistry

from pg_advisory_lock.keys import (
    AdvisoryFunction,
    TextKey,
    build_lock_keys,
    build_statement,
    select_lock_function,
    select_unlock_function
)

from pg_advisory_lock.sql_caller import (
    SqlCaller,
    PostgresSqlCaller,
    create_sql_caller_with_retry,
    resolve_sql_caller
)

from pg_advisory_lock.lock import (
    AdvisoryLock,
    LockRequest
)

from pg_advisory_lock.decorators import with_advisory_lock

from pg_advisory_lock.config import (
    load_config,
    build_registry,
    create_sql_caller
)

from pg_advisory_lock.observability import init_observability

__all__ = [
    # Errors
    'AdvisoryLockError',
    'InvalidDefinition',
    'UnknownLockName',
    'KeyArityExceeded',
    'KeyOutOfRange',
    'BlockRequiredError',
    'LockNotObtained',
    'ConfigurationError',
    # Registry & keys
    'LockRegistry',
    'AdvisoryFunction',
    'TextKey',
    'build_lock_keys',
    'build_statement',
    'select_lock_function',
    'select_unlock_function',
    # SQL execution
    'SqlCaller',
    'PostgresSqlCaller',
    'create_sql_caller_with_retry',
    'resolve_sql_caller',
    # Locking
    'AdvisoryLock',
    'LockRequest',
    'with_advisory_lock',
    # Configuration
    'load_config',
    'build_registry',
    'create_sql_caller',
    # Observability
    'init_observability',
]
