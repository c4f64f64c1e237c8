"""
PostgreSQL Advisory Lock Executor

Runs the acquire -> work -> release protocol for named advisory locks.
https://www.postgresql.org/docs/current/functions-admin.html#FUNCTIONS-ADVISORY-LOCKS

Two scopes are supported:
- transaction scope: the lock is taken as the first statement of a
  transaction and released by PostgreSQL when that transaction ends
- session scope: the lock is released explicitly in a finally block once
  the caller's work returns or raises
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Generator, Optional, TypeVar, Union

from .exceptions import BlockRequiredError, LockNotObtained
from .keys import (
    ResolvedKeys,
    build_lock_keys,
    build_statement,
    select_lock_function,
    select_unlock_function,
)
from .observability import lock_span, record_acquisition
from .registry import LockRegistry, normalize_lock_name
from .sql_caller import resolve_sql_caller

# Outside the logging tree, used when logging is turned off
_null_logger = logging.Logger(f"{__name__}.null")
_null_logger.disabled = True

R = TypeVar('R')

_UNSET = object()


@dataclass(frozen=True)
class LockRequest:
    """One acquisition attempt."""

    name: str
    wait: bool = True
    shared: bool = False
    transaction: bool = True
    id: Union[int, str, None] = None


class _TaggedLogger(logging.LoggerAdapter):
    """Prefixes every message with the executor class and lock name."""

    def process(self, msg, kwargs):
        return f"[{self.extra['tag']}] [{self.extra['lock_name']!r}] {msg}", kwargs


class AdvisoryLock:
    """
    Issues advisory locks for the names defined in a LockRegistry.

    Example:
        >>> registry = LockRegistry().register("nightly_report", 1000)
        >>> locker = AdvisoryLock(registry, sql_caller)
        >>> locker.with_lock("nightly_report", build_report)
        >>> locker.try_lock("nightly_report", build_report, transaction=False)
        >>> with locker.locked("nightly_report", id=customer.id):
        ...     rebuild(customer)
    """

    def __init__(
        self,
        registry: LockRegistry,
        sql_caller: Any,
        logger: Optional[logging.Logger] = _UNSET,  # type: ignore[assignment]
    ):
        """
        Args:
            registry: Lock definitions this executor may lock
            sql_caller: SqlCaller object, or 'module:attribute' path resolved on first use
            logger: Logger for lock activity (None disables logging)
        """
        if registry is None:
            raise TypeError("registry cannot be None")
        if not isinstance(registry, LockRegistry):
            raise TypeError(
                f"registry must be a LockRegistry instance, got {type(registry).__name__}"
            )

        self.registry = registry
        self._sql_caller_target = sql_caller
        self._sql_caller = None
        self.logger = logging.getLogger(__name__) if logger is _UNSET else logger

    @property
    def sql_caller(self):
        if self._sql_caller is None:
            self._sql_caller = resolve_sql_caller(self._sql_caller_target)
        return self._sql_caller

    def with_lock(
        self,
        name: Any,
        func: Optional[Callable[[], R]] = None,
        *,
        transaction: bool = True,
        shared: bool = False,
        id: Union[int, str, None] = None,
    ) -> Union[R, bool]:
        """
        Acquire the lock, waiting as long as needed, and run func while holding it.

        Args:
            name: Registered lock name
            func: Work to run while the lock is held. Required unless
                transaction=True and a transaction is already open.
            transaction: Release at the end of the transaction (True) or when
                func returns (False)
            shared: Take a shared lock instead of an exclusive one
            id: Optional sub-identifier paired with a single-key lock

        Returns:
            func's return value, or True when no func was given

        Raises:
            UnknownLockName, KeyArityExceeded, BlockRequiredError
        """
        request = LockRequest(
            normalize_lock_name(name), wait=True, shared=shared, transaction=transaction, id=id
        )
        return self.lock(request, func)

    def try_lock(
        self,
        name: Any,
        func: Optional[Callable[[], R]] = None,
        *,
        transaction: bool = True,
        shared: bool = False,
        id: Union[int, str, None] = None,
    ) -> Union[R, bool]:
        """
        Like with_lock, but fail immediately if the lock is held elsewhere.

        Raises:
            LockNotObtained: If the lock is held by another session
        """
        request = LockRequest(
            normalize_lock_name(name), wait=False, shared=shared, transaction=transaction, id=id
        )
        return self.lock(request, func)

    @contextmanager
    def locked(
        self,
        name: Any,
        *,
        wait: bool = True,
        transaction: bool = True,
        shared: bool = False,
        id: Union[int, str, None] = None,
    ) -> Generator[None, None, None]:
        """Context manager form; the with-block is the work run under the lock."""
        request = LockRequest(
            normalize_lock_name(name), wait=wait, shared=shared, transaction=transaction, id=id
        )
        keys = build_lock_keys(self.registry, request.name, request.id)
        log = self._tagged(request)
        with lock_span(request):
            with self._hold(request, keys, log):
                yield

    def lock(self, request: LockRequest, func: Optional[Callable[[], R]] = None) -> Union[R, bool]:
        """Run a prebuilt LockRequest."""
        keys = build_lock_keys(self.registry, request.name, request.id)
        log = self._tagged(request)

        if func is None:
            return self._lock_without_block(request, keys, log)

        with lock_span(request):
            with self._hold(request, keys, log):
                return func()

    def _lock_without_block(self, request: LockRequest, keys: ResolvedKeys, log) -> bool:
        if not request.transaction:
            raise BlockRequiredError(
                request.name, 'work is required for a session-scoped lock (transaction=False)'
            )

        if not self.sql_caller.transaction_open():
            raise BlockRequiredError(request.name, 'work is required when no transaction is open')

        with lock_span(request):
            self._perform_lock(request, keys, log)
        log.debug("held until the current transaction ends")
        return True

    @contextmanager
    def _hold(self, request: LockRequest, keys: ResolvedKeys, log) -> Generator[None, None, None]:
        if request.transaction:
            with self.sql_caller.transaction():
                self._perform_lock(request, keys, log)
                yield
            return

        self._perform_lock(request, keys, log)
        try:
            yield
        except BaseException:
            try:
                self._perform_unlock(request, keys, log)
            except Exception:
                log.exception("✗ release failed after the work raised")
            raise
        self._perform_unlock(request, keys, log)

    def _perform_lock(self, request: LockRequest, keys: ResolvedKeys, log) -> None:
        function = select_lock_function(request.wait, request.transaction, request.shared)
        statement = build_statement(function, keys, self.sql_caller.quote)

        with record_acquisition(request):
            if request.wait:
                log.debug(f"waiting for lock: {statement}")
                self.sql_caller.execute(statement)
            else:
                log.debug(f"trying lock: {statement}")
                if not self.sql_caller.select_value(statement):
                    log.warning("✗ lock is held by another session")
                    raise LockNotObtained(request.name, request.id)

        log.info(f"✓ acquired ({function.value})")

    def _perform_unlock(self, request: LockRequest, keys: ResolvedKeys, log) -> None:
        function = select_unlock_function(request.shared)
        statement = build_statement(function, keys, self.sql_caller.quote)

        log.debug(f"releasing lock: {statement}")
        if self.sql_caller.select_value(statement):
            log.info("✓ released")
        else:
            log.warning("✗ release failed, lock was not held by this session")

    def _tagged(self, request: LockRequest):
        return _TaggedLogger(self.logger or _null_logger, {'tag': type(self).__name__, 'lock_name': request.name})
