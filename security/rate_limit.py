import math
from collections import namedtuple
from datetime import timedelta

from utils.clock import utcnow
from utils.logging import get_logger

log = get_logger(__name__)

RateDecision = namedtuple("RateDecision", ["allowed", "current_count", "reset_at"])


class RateLimiter:
    """
    Sliding-window counters keyed by (identifier, kind, action).

    A denied call still counts: extra attempts keep pushing against the
    same window instead of being refunded.
    """

    def __init__(self, store, clock=utcnow):
        self.store = store
        self.clock = clock

    def check(self, identifier: str, kind: str, action: str, window_seconds: int, max_count: int) -> RateDecision:
        now = self.clock()
        window = timedelta(seconds=window_seconds)
        state = self.store.hit_rate_limit(identifier, kind, action, now, window)
        reset_at = state.window_start + window

        allowed = state.count <= max_count
        if not allowed:
            log.warning(
                "rate_limited",
                kind=kind,
                action=action,
                count=state.count,
                max_count=max_count,
                reset_at=reset_at.isoformat(),
            )
        return RateDecision(allowed, state.count, reset_at)


def retry_after_seconds(until, now) -> int:
    return max(math.ceil((until - now).total_seconds()), 1)
