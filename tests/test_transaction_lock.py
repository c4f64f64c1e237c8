"""Tests for transaction-scoped locks."""

import pytest

from pg_advisory_lock import (
    BlockRequiredError,
    KeyArityExceeded,
    LockNotObtained,
    UnknownLockName,
)


def test_with_one_number(locker, sql_caller):
    seen = {}

    def work():
        seen["transaction_open"] = sql_caller.transaction_open()
        seen["statements"] = list(sql_caller.statements)
        return "done"

    assert locker.with_lock("test1", work) == "done"

    assert seen["transaction_open"] is True
    assert seen["statements"] == ["SELECT pg_advisory_xact_lock(1000)"]
    assert sql_caller.transactions == 1
    assert sql_caller.events == ["BEGIN", "SELECT pg_advisory_xact_lock(1000)", "COMMIT"]
    assert sql_caller.transaction_open() is False


def test_with_shared(locker, sql_caller):
    locker.with_lock("test1", lambda: None, shared=True)

    assert sql_caller.statements == ["SELECT pg_advisory_xact_lock_shared(1000)"]


def test_with_two_numbers(locker, sql_caller):
    locker.with_lock("test2", lambda: None)

    assert sql_caller.statements == ["SELECT pg_advisory_xact_lock(1001, 1002)"]


def test_with_number_and_id(locker, sql_caller):
    locker.with_lock("test1", lambda: None, id=123)

    assert sql_caller.statements == ["SELECT pg_advisory_xact_lock(1000, 123)"]


def test_with_text_id(locker, sql_caller):
    locker.with_lock("test1", lambda: None, id="abc")

    assert sql_caller.statements == ["SELECT pg_advisory_xact_lock(1000, hashtext('abc'))"]


def test_never_issues_unlock(locker, sql_caller):
    locker.with_lock("test1", lambda: None)
    locker.with_lock("test1", lambda: None, shared=True)

    assert not any("unlock" in statement for statement in sql_caller.statements)


def test_work_error_rolls_back_and_propagates(locker, sql_caller):
    def work():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        locker.with_lock("test1", work)

    assert sql_caller.events == ["BEGIN", "SELECT pg_advisory_xact_lock(1000)", "ROLLBACK"]
    assert sql_caller.transaction_open() is False


def test_joins_ambient_transaction(locker, sql_caller):
    with sql_caller.transaction():
        locker.with_lock("test1", lambda: None)
        assert sql_caller.transaction_open() is True

    assert sql_caller.transactions == 1
    assert sql_caller.events == ["BEGIN", "SELECT pg_advisory_xact_lock(1000)", "COMMIT"]


def test_without_work_inside_transaction(locker, sql_caller):
    with sql_caller.transaction():
        assert locker.with_lock("test1") is True
        assert sql_caller.statements == ["SELECT pg_advisory_xact_lock(1000)"]

    assert sql_caller.transactions == 1


def test_without_work_outside_transaction(locker, sql_caller):
    with pytest.raises(BlockRequiredError):
        locker.with_lock("test1")

    assert sql_caller.statements == []


def test_unknown_name_never_reaches_database(locker, sql_caller):
    with pytest.raises(UnknownLockName):
        locker.with_lock("missing", lambda: None)

    assert sql_caller.events == []


def test_id_on_two_key_lock_never_reaches_database(locker, sql_caller):
    with pytest.raises(KeyArityExceeded):
        locker.with_lock("test2", lambda: None, id=5)

    assert sql_caller.events == []


def test_try_lock_not_obtained(locker, sql_caller):
    sql_caller.select_results = [False]
    ran = []

    with pytest.raises(LockNotObtained) as exc_info:
        locker.try_lock("test1", lambda: ran.append(True), id=7)

    assert ran == []
    assert exc_info.value.name == "test1"
    assert exc_info.value.id == 7
    assert sql_caller.events == ["BEGIN", "SELECT pg_try_advisory_xact_lock(1000, 7)", "ROLLBACK"]


def test_try_lock_obtained(locker, sql_caller):
    assert locker.try_lock("test1", lambda: 42, shared=True) == 42

    assert sql_caller.statements == ["SELECT pg_try_advisory_xact_lock_shared(1000)"]


def test_locked_context_manager(locker, sql_caller):
    with locker.locked("test1", id=9):
        assert sql_caller.transaction_open() is True

    assert sql_caller.events == ["BEGIN", "SELECT pg_advisory_xact_lock(1000, 9)", "COMMIT"]
