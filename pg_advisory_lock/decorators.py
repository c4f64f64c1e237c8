"""
Lock Decorators

Wrap any function so that every call runs under an advisory lock, without
touching the function's code.
"""

import logging
from functools import wraps
from typing import Any, Callable, TypeVar, Union

from .lock import AdvisoryLock, LockRequest
from .registry import normalize_lock_name

logger = logging.getLogger(__name__)

R = TypeVar('R')


def with_advisory_lock(
    locker: AdvisoryLock,
    name: Any,
    *,
    wait: bool = True,
    transaction: bool = True,
    shared: bool = False,
    id: Union[int, str, None, Callable[..., Any]] = None,
):
    """
    Decorator to run every call of a function under an advisory lock.

    Args:
        locker: AdvisoryLock instance
        name: Registered lock name
        wait: Block until the lock is free (True) or raise LockNotObtained (False)
        transaction: Hold the lock for a transaction around the call (True)
            or for the call itself (False)
        shared: Take a shared lock
        id: Sub-identifier, or a callable receiving the call's arguments and
            returning the sub-identifier for that call

    Example:
        >>> @with_advisory_lock(locker, "customer_sync", id=lambda customer_id: customer_id)
        ... def sync_customer(customer_id: int) -> None:
        ...     ...

    Raises:
        TypeError: If locker is not an AdvisoryLock instance
    """
    if locker is None:
        raise TypeError("locker cannot be None")

    if not isinstance(locker, AdvisoryLock):
        raise TypeError(
            f"locker must be an AdvisoryLock instance, got {type(locker).__name__}"
        )

    lock_name = normalize_lock_name(name)

    def decorator(func: Callable[..., R]) -> Callable[..., R]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> R:
            lock_id = id(*args, **kwargs) if callable(id) else id
            request = LockRequest(
                lock_name, wait=wait, shared=shared, transaction=transaction, id=lock_id
            )
            logger.debug(f"Calling '{func.__name__}' under lock {lock_name!r}")
            return locker.lock(request, lambda: func(*args, **kwargs))

        return wrapper

    return decorator
