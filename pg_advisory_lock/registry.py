"""
Lock Name Registry

Maps symbolic lock names to the integer keys PostgreSQL advisory lock
functions accept. One registry is built at startup and handed to every
AdvisoryLock that issues locks from it.
"""

import enum
from typing import Any, Dict, Iterator, List, Mapping, Tuple, Union

from .exceptions import InvalidDefinition, UnknownLockName

# pg_advisory_lock(bigint)
MIN_KEY = -(2 ** 63)
MAX_KEY = 2 ** 63 - 1

# pg_advisory_lock(int, int)
MIN_PAIR_KEY = -(2 ** 31)
MAX_PAIR_KEY = 2 ** 31 - 1

LockKeys = Tuple[int, ...]
LockValue = Union[int, List[int], Tuple[int, ...]]


def normalize_lock_name(name: Any) -> str:
    """Return the symbolic form of a lock name (enum members use their value)."""
    if isinstance(name, enum.Enum):
        name = name.value
    return str(name)


def _is_key(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def fits_pair_key(key: int) -> bool:
    """Whether key can be one half of the two-key form."""
    return MIN_PAIR_KEY <= key <= MAX_PAIR_KEY


def _coerce_keys(name: str, value: Any) -> LockKeys:
    if _is_key(value):
        keys: LockKeys = (value,)
    elif isinstance(value, (list, tuple)):
        if not 1 <= len(value) <= 2:
            raise InvalidDefinition(name, value, "expected one or two keys")
        if not all(_is_key(key) for key in value):
            raise InvalidDefinition(name, value, "keys must be integers")
        keys = tuple(value)
    else:
        raise InvalidDefinition(name, value, "expected an integer or a sequence of integers")

    for key in keys:
        if not MIN_KEY <= key <= MAX_KEY:
            raise InvalidDefinition(name, value, "key is outside the 64-bit range")
    if len(keys) == 2 and not all(fits_pair_key(key) for key in keys):
        raise InvalidDefinition(name, value, "keys of a two-key lock must fit in 32 bits")
    return keys


class LockRegistry:
    """
    Registry of lock definitions.

    Registration is expected to happen once at startup; after that the
    registry is only read and can be shared between threads.

    Example:
        >>> registry = LockRegistry()
        >>> _ = registry.register("nightly_report", 1000)
        >>> _ = registry.register("import_batch", [1001, 1002])
        >>> registry.resolve("import_batch")
        (1001, 1002)
    """

    def __init__(self):
        self._lock_names: Dict[str, LockKeys] = {}

    @classmethod
    def from_mapping(cls, mapping: Mapping[Any, LockValue]) -> 'LockRegistry':
        """Build a registry from a {name: keys} mapping."""
        registry = cls()
        for name, value in mapping.items():
            registry.register(name, value)
        return registry

    def register(self, name: Any, value: LockValue) -> 'LockRegistry':
        """
        Register a lock name.

        Args:
            name: Lock name (str or Enum member)
            value: Integer key or a sequence of one or two integer keys

        Returns:
            The registry, so registrations can be chained

        Raises:
            InvalidDefinition: If value is not an integer or 1-2 integers
        """
        lock_name = normalize_lock_name(name)
        self._lock_names[lock_name] = _coerce_keys(lock_name, value)
        return self

    def resolve(self, name: Any) -> LockKeys:
        """
        Return the keys registered for name.

        Raises:
            UnknownLockName: If name was never registered on this registry
        """
        lock_name = normalize_lock_name(name)
        try:
            return self._lock_names[lock_name]
        except KeyError:
            raise UnknownLockName(lock_name) from None

    def specialize(self) -> 'LockRegistry':
        """Return a new empty registry; entries of this one are not inherited."""
        return type(self)()

    def names(self) -> List[str]:
        return sorted(self._lock_names)

    def items(self) -> Iterator[Tuple[str, LockKeys]]:
        return iter(sorted(self._lock_names.items()))

    def __contains__(self, name: Any) -> bool:
        return normalize_lock_name(name) in self._lock_names

    def __len__(self) -> int:
        return len(self._lock_names)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._lock_names!r})"
