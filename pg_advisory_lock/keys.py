"""
Lock Key Builder

Turns a lock name plus optional id into the argument list of a PostgreSQL
advisory lock function, and picks which of those functions a request needs.
"""

import enum
from dataclasses import dataclass
from typing import Any, Callable, Dict, Sequence, Tuple, Union

from .exceptions import KeyArityExceeded, KeyOutOfRange
from .registry import LockRegistry, fits_pair_key, normalize_lock_name

Quote = Callable[[str], str]


@dataclass(frozen=True)
class TextKey:
    """
    Non-integer id, hashed by PostgreSQL's hashtext() at execution time.

    The hash is never computed locally so that every client sharing the
    database gets the same key for the same text.
    """

    text: str

    def render(self, quote: Quote) -> str:
        return f"hashtext({quote(self.text)})"


LockKey = Union[int, TextKey]
ResolvedKeys = Tuple[LockKey, ...]


class AdvisoryFunction(str, enum.Enum):
    """PostgreSQL advisory lock functions used by this package."""

    LOCK = "pg_advisory_lock"
    LOCK_SHARED = "pg_advisory_lock_shared"
    TRY_LOCK = "pg_try_advisory_lock"
    TRY_LOCK_SHARED = "pg_try_advisory_lock_shared"
    XACT_LOCK = "pg_advisory_xact_lock"
    XACT_LOCK_SHARED = "pg_advisory_xact_lock_shared"
    TRY_XACT_LOCK = "pg_try_advisory_xact_lock"
    TRY_XACT_LOCK_SHARED = "pg_try_advisory_xact_lock_shared"
    UNLOCK = "pg_advisory_unlock"
    UNLOCK_SHARED = "pg_advisory_unlock_shared"


# (wait, transaction, shared) -> function
_LOCK_FUNCTIONS: Dict[Tuple[bool, bool, bool], AdvisoryFunction] = {
    (True, True, False): AdvisoryFunction.XACT_LOCK,
    (True, True, True): AdvisoryFunction.XACT_LOCK_SHARED,
    (True, False, False): AdvisoryFunction.LOCK,
    (True, False, True): AdvisoryFunction.LOCK_SHARED,
    (False, True, False): AdvisoryFunction.TRY_XACT_LOCK,
    (False, True, True): AdvisoryFunction.TRY_XACT_LOCK_SHARED,
    (False, False, False): AdvisoryFunction.TRY_LOCK,
    (False, False, True): AdvisoryFunction.TRY_LOCK_SHARED,
}


def select_lock_function(wait: bool, transaction: bool, shared: bool) -> AdvisoryFunction:
    """Return the acquisition function for a combination of request flags."""
    return _LOCK_FUNCTIONS[(bool(wait), bool(transaction), bool(shared))]


def select_unlock_function(shared: bool) -> AdvisoryFunction:
    return AdvisoryFunction.UNLOCK_SHARED if shared else AdvisoryFunction.UNLOCK


def _has_id(id: Any) -> bool:
    # None, False and blank strings mean "no id"
    if id is None or id is False:
        return False
    if isinstance(id, str):
        return bool(id.strip())
    return True


def build_lock_keys(registry: LockRegistry, name: Any, id: Any = None) -> ResolvedKeys:
    """
    Resolve the keys for one lock request.

    Args:
        registry: Registry holding the lock definition
        name: Lock name
        id: Optional sub-identifier. Integers are used verbatim as the second
            key, anything else is hashed by the database. None, False and
            blank strings are treated as no id.

    Returns:
        Tuple of one or two keys

    Raises:
        UnknownLockName: If name is not registered
        KeyArityExceeded: If id is given for a two-key definition
        KeyOutOfRange: If the key or an integer id does not fit the 32-bit
            two-key form
    """
    keys: Tuple[LockKey, ...] = registry.resolve(name)

    if _has_id(id):
        if len(keys) == 2:
            raise KeyArityExceeded(normalize_lock_name(name), id)
        if isinstance(id, int) and not isinstance(id, bool):
            keys = keys + (id,)
        else:
            keys = keys + (TextKey(str(id)),)
        if not all(isinstance(key, TextKey) or fits_pair_key(key) for key in keys):
            raise KeyOutOfRange(normalize_lock_name(name), keys)

    if not 1 <= len(keys) <= 2:
        raise RuntimeError(f"lock {name!r} resolved to {len(keys)} keys")
    return keys


def render_lock_arguments(keys: Sequence[LockKey], quote: Quote) -> str:
    """Render keys as a function argument list, e.g. '1000, 123'."""
    rendered = []
    for key in keys:
        if isinstance(key, TextKey):
            rendered.append(key.render(quote))
        else:
            rendered.append(str(int(key)))
    return ", ".join(rendered)


def build_statement(function: AdvisoryFunction, keys: Sequence[LockKey], quote: Quote) -> str:
    """Build 'SELECT <function>(<keys>)'."""
    return f"SELECT {function.value}({render_lock_arguments(keys, quote)})"
