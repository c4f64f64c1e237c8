"""
Advisory lock tests against a real PostgreSQL.

Requires PostgreSQL at $POSTGRES_CONNECTION; skipped otherwise.
"""

import threading
import time

import pytest

from pg_advisory_lock import AdvisoryLock, LockNotObtained, LockRegistry

pytestmark = pytest.mark.requires_db

HELD_LOCKS = (
    "SELECT count(*) FROM pg_locks "
    "WHERE locktype = 'advisory' AND pid = pg_backend_pid()"
)


@pytest.fixture
def pg_locker(pg_sql_caller):
    registry = (
        LockRegistry()
        .register("integration_single", 917_001)
        .register("integration_pair", [917_002, 917_003])
    )
    return AdvisoryLock(registry, pg_sql_caller)


def _in_thread(pg_sql_caller, func):
    """Run func on its own pooled connection and hand back its result."""
    outcome = {}

    def target():
        try:
            outcome["result"] = func()
        except Exception as e:
            outcome["error"] = e
        finally:
            pg_sql_caller.release_connection()

    thread = threading.Thread(target=target)
    thread.start()
    return thread, outcome


def test_transaction_lock_is_held_inside_the_work(pg_locker, pg_sql_caller):
    held = pg_locker.with_lock("integration_single", lambda: pg_sql_caller.select_value(HELD_LOCKS))

    assert held == 1
    assert pg_sql_caller.select_value(HELD_LOCKS) == 0
    assert not pg_sql_caller.transaction_open()


def test_session_lock_is_released_after_the_work(pg_locker, pg_sql_caller):
    held = pg_locker.with_lock(
        "integration_pair", lambda: pg_sql_caller.select_value(HELD_LOCKS), transaction=False
    )

    assert held == 1
    assert pg_sql_caller.select_value(HELD_LOCKS) == 0


def test_session_lock_is_released_when_the_work_raises(pg_locker, pg_sql_caller):
    def fail():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        pg_locker.with_lock("integration_single", fail, transaction=False, id="eu-west")

    assert pg_sql_caller.select_value(HELD_LOCKS) == 0


def test_transaction_lock_joins_open_transaction(pg_locker, pg_sql_caller):
    with pg_sql_caller.transaction():
        assert pg_locker.with_lock("integration_single", id=7) is True
        assert pg_sql_caller.select_value(HELD_LOCKS) == 1

    assert pg_sql_caller.select_value(HELD_LOCKS) == 0


def test_try_lock_fails_while_another_session_holds_it(pg_locker, pg_sql_caller):
    acquired = threading.Event()
    finish = threading.Event()

    def hold():
        acquired.set()
        finish.wait(timeout=10)
        return "done"

    thread, outcome = _in_thread(
        pg_sql_caller,
        lambda: pg_locker.with_lock("integration_single", hold, transaction=False, id="tenant-1"),
    )
    try:
        assert acquired.wait(timeout=10)

        with pytest.raises(LockNotObtained):
            pg_locker.try_lock("integration_single", lambda: None, id="tenant-1")

        # A different text id maps to a different key
        assert pg_locker.try_lock("integration_single", lambda: "other", id="tenant-2") == "other"
    finally:
        finish.set()
        thread.join(timeout=10)

    assert outcome == {"result": "done"}
    assert pg_locker.try_lock("integration_single", lambda: "free", id="tenant-1") == "free"


def test_shared_locks_do_not_block_each_other(pg_locker, pg_sql_caller):
    acquired = threading.Event()
    finish = threading.Event()

    def hold():
        acquired.set()
        finish.wait(timeout=10)

    thread, outcome = _in_thread(
        pg_sql_caller,
        lambda: pg_locker.with_lock("integration_pair", hold, shared=True),
    )
    try:
        assert acquired.wait(timeout=10)

        assert pg_locker.try_lock("integration_pair", lambda: "reader", shared=True) == "reader"
        with pytest.raises(LockNotObtained):
            pg_locker.try_lock("integration_pair", lambda: None)
    finally:
        finish.set()
        thread.join(timeout=10)

    assert "error" not in outcome


@pytest.mark.slow
@pytest.mark.parametrize("transaction", [True, False], ids=["transaction", "session"])
def test_blocking_locks_serialize_work(pg_locker, pg_sql_caller, transaction):
    timeline = []
    timeline_lock = threading.Lock()

    def work(label):
        with timeline_lock:
            timeline.append(f"{label}-start")
        time.sleep(0.2)
        with timeline_lock:
            timeline.append(f"{label}-end")

    threads = [
        _in_thread(pg_sql_caller, lambda label=label: pg_locker.with_lock(
            "integration_single", lambda: work(label), transaction=transaction
        ))
        for label in ("a", "b")
    ]
    for thread, _ in threads:
        thread.join(timeout=10)

    assert all("error" not in outcome for _, outcome in threads)
    assert len(timeline) == 4
    # Work never interleaves: every start is immediately followed by its end
    for start, end in zip(timeline[::2], timeline[1::2]):
        assert start.endswith("-start")
        assert end == start.replace("-start", "-end")
