"""Tests for the per-email lockout state machine."""

import pytest

from security.bruteforce import LockoutGuard
from security.errors import AccountLocked

KEY = "a" * 64


@pytest.fixture
def guard(store, clock):
    return LockoutGuard(store, max_failures=5, lockout_minutes=15, clock=clock)


def test_unknown_email_is_open(guard):
    assert guard.is_locked(KEY) == (False, 0)
    assert guard.status(KEY) == (0, None)


def test_locks_on_exactly_the_fifth_failure(guard, clock):
    for expected in range(1, 5):
        fail_count, locked_now = guard.register_failure(KEY)
        assert (fail_count, locked_now) == (expected, False)
        assert guard.is_locked(KEY)[0] is False

    fail_count, locked_now = guard.register_failure(KEY)
    assert (fail_count, locked_now) == (5, True)

    locked, seconds = guard.is_locked(KEY)
    assert locked
    assert seconds == 15 * 60
    with pytest.raises(AccountLocked):
        guard.ensure_open(KEY)


def test_lock_is_lazily_cleared_after_window(guard, clock):
    for _ in range(5):
        guard.register_failure(KEY)

    clock.advance(minutes=14, seconds=59)
    assert guard.is_locked(KEY)[0] is True

    clock.advance(seconds=1)
    assert guard.is_locked(KEY) == (False, 0)
    assert guard.status(KEY) == (0, None)


def test_repeated_lock_write_does_not_extend_window(guard, store, clock):
    for _ in range(5):
        guard.register_failure(KEY)
    first_until = guard.status(KEY).locked_until

    clock.advance(minutes=5)
    # a straggling failure from a request that was already in flight
    guard.register_failure(KEY)

    assert guard.status(KEY).locked_until == first_until


def test_reset_clears_everything(guard):
    for _ in range(5):
        guard.register_failure(KEY)

    guard.reset(KEY)

    assert guard.status(KEY) == (0, None)
    assert guard.is_locked(KEY) == (False, 0)
