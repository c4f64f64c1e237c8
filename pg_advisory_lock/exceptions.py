"""
Advisory Lock Exceptions

Errors raised while configuring locks or running lock requests.
Argument-style failures also subclass ValueError so callers can catch them
the same way they catch bad arguments elsewhere.
"""

from typing import Any, Optional


class AdvisoryLockError(Exception):
    """Base exception for all advisory lock errors."""
    pass


class InvalidDefinition(AdvisoryLockError, ValueError):
    """Raised when a lock is registered with something other than 1-2 integer keys."""

    def __init__(self, name: Any, value: Any, reason: Optional[str] = None):
        self.name = name
        self.value = value
        message = f"invalid lock definition for {name!r}: {value!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class UnknownLockName(AdvisoryLockError, ValueError):
    """Raised when a request references a name that was never registered."""

    def __init__(self, name: Any):
        self.name = name
        super().__init__(f"lock name {name!r} is invalid, it was never registered")


class KeyArityExceeded(AdvisoryLockError, ValueError):
    """Raised when an id is given for a lock that is already defined by two keys."""

    def __init__(self, name: Any, id: Any):
        self.name = name
        self.id = id
        super().__init__(f"can't use lock name {name!r} with id {id!r}")


class KeyOutOfRange(AdvisoryLockError, ValueError):
    """Raised when a key or integer id does not fit the 32-bit two-key form."""

    def __init__(self, name: Any, keys: Any):
        self.name = name
        self.keys = keys
        super().__init__(
            f"lock {name!r} resolved to keys {keys!r}, two-key locks take 32-bit integers"
        )


class BlockRequiredError(AdvisoryLockError, ValueError):
    """Raised when a lock would have no bounded lifetime."""

    def __init__(self, name: Any, message: str):
        self.name = name
        super().__init__(message)


class LockNotObtained(AdvisoryLockError):
    """
    Raised when a non-blocking acquisition finds the lock held elsewhere.

    Attributes:
        name: Lock name that was requested
        id: Sub-identifier of the request, if any
    """

    def __init__(self, name: Any, id: Any = None):
        self.name = name
        self.id = id
        message = f"lock {name!r} was not obtained"
        if id is not None:
            message = f"lock {name!r} with id {id!r} was not obtained"
        super().__init__(message)


class ConfigurationError(AdvisoryLockError):
    """Raised when the configuration file can't be read or has the wrong shape."""

    def __init__(self, message: str, path: Optional[str] = None, details: Optional[str] = None):
        self.message = message
        self.path = path
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.path:
            parts.append(f"in {self.path}")
        if self.details:
            parts.append(self.details)
        return " - ".join(parts)
