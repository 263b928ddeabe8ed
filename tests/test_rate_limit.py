"""Tests for the sliding-window rate limiter."""

from datetime import timedelta

from models.rate_limit_window import ACTION_CODE_REQUEST, ACTION_VERIFY_ATTEMPT, KIND_EMAIL, KIND_IP
from security.rate_limit import RateLimiter, retry_after_seconds


def test_allows_up_to_max_then_denies(store, clock):
    limiter = RateLimiter(store, clock=clock)

    results = [limiter.check("10.0.0.1", KIND_IP, ACTION_CODE_REQUEST, 900, 3) for _ in range(4)]

    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.current_count for r in results] == [1, 2, 3, 4]
    assert results[-1].reset_at > clock()


def test_denied_calls_still_count(store, clock):
    limiter = RateLimiter(store, clock=clock)
    for _ in range(5):
        limiter.check("10.0.0.1", KIND_IP, ACTION_CODE_REQUEST, 900, 3)

    decision = limiter.check("10.0.0.1", KIND_IP, ACTION_CODE_REQUEST, 900, 3)
    assert decision.current_count == 6
    assert not decision.allowed


def test_window_rolls_over_exactly_at_duration(store, clock):
    limiter = RateLimiter(store, clock=clock)
    first = limiter.check("10.0.0.1", KIND_IP, ACTION_CODE_REQUEST, 60, 1)
    assert limiter.check("10.0.0.1", KIND_IP, ACTION_CODE_REQUEST, 60, 1).allowed is False

    clock.advance(seconds=59)
    assert limiter.check("10.0.0.1", KIND_IP, ACTION_CODE_REQUEST, 60, 1).allowed is False

    clock.advance(seconds=1)
    rolled = limiter.check("10.0.0.1", KIND_IP, ACTION_CODE_REQUEST, 60, 1)
    assert rolled.allowed
    assert rolled.current_count == 1
    assert rolled.reset_at == clock() + timedelta(seconds=60)
    assert rolled.reset_at > first.reset_at


def test_keys_are_independent(store, clock):
    limiter = RateLimiter(store, clock=clock)
    limiter.check("10.0.0.1", KIND_IP, ACTION_CODE_REQUEST, 900, 1)

    assert limiter.check("10.0.0.2", KIND_IP, ACTION_CODE_REQUEST, 900, 1).allowed
    assert limiter.check("10.0.0.1", KIND_IP, ACTION_VERIFY_ATTEMPT, 900, 1).allowed
    assert limiter.check("10.0.0.1", KIND_EMAIL, ACTION_CODE_REQUEST, 900, 1).allowed


def test_retry_after_rounds_up(clock):
    now = clock()
    assert retry_after_seconds(now + timedelta(seconds=40, milliseconds=500), now) == 41
    assert retry_after_seconds(now + timedelta(seconds=40), now) == 40
    assert retry_after_seconds(now, now) == 1
